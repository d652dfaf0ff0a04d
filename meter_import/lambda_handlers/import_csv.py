# meter_import/lambda_handlers/import_csv.py
"""
Lambda function answering 'importCSV' requests
Invoked synchronously (RequestResponse) by the import dispatcher
"""
import json

from meter_import.config import ImportSettings
from meter_import.lib.dynamodb_service import DynamoDBService
from meter_import.lib.import_core.importer import ImportManager

# Created on first use and reused by warm invocations
_manager = None


def get_manager() -> ImportManager:
    global _manager
    if _manager is None:
        _manager = ImportManager(DynamoDBService(), ImportSettings.from_env())
    return _manager


def lambda_handler(event, context):
    """
    Import one CSV file.

    Event: {"command": "importCSV", "message": {type, meterName, content, format}}
    Returns {success, count, first, last} or {error}.
    """
    event = event or {}
    message = event.get('message') or {}
    # the file content itself is not logged
    summary = {
        'command': event.get('command'),
        'type': message.get('type'),
        'meterName': message.get('meterName'),
    }
    print(f"Received event: {json.dumps(summary)}")

    try:
        result = get_manager().handle_message(event)
    except Exception as e:
        print(f"Error processing import: {str(e)}")
        return {'error': str(e)}

    print(f"Result: {result}")
    return result

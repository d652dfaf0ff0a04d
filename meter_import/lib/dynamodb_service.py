"""
=============================================================================
DYNAMODB SERVICE - Yearly meter history in Amazon DynamoDB
=============================================================================

What we store
-------------
Every import writes the aggregated history of one meter. Items are grouped
by meter and keyed by record:

    meter_path (partition key)   record (sort key)   attributes
    --------------------------   -----------------   -------------------------
    gas.historic                 meta                type, meterName, lastImport
    gas.historic                 2022                consumption, volume, costs, count
    gas.historic                 2023                consumption, volume, costs, count

Re-importing a year overwrites its item, so an import with an unchanged
name replaces the earlier numbers instead of adding to them.

DynamoDB only accepts Decimal for numbers, never float, so every value is
converted through str() on the way in.
=============================================================================
"""

# boto3 - AWS SDK for Python
import boto3

# ClientError - Exception class for AWS API errors
from botocore.exceptions import ClientError

# Key - builds KeyConditionExpressions for queries
from boto3.dynamodb.conditions import Key

import logging
import os
from decimal import Decimal
from typing import Dict

logger = logging.getLogger(__name__)

META_RECORD = "meta"


def _to_number(value):
    """DynamoDB returns Decimal; hand plain ints/floats back to callers."""
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


class DynamoDBService:
    """
    Stores imported meter history in a DynamoDB table.

    Usage:
        db = DynamoDBService()
        db.create_table_if_not_exists()
        db.ensure_meter("gas", "historic")
        db.write_year("gas", "historic", 2022, stats, include_volume=True)
    """

    def __init__(self, table_name: str = None, dynamodb=None):
        """
        Initialize the DynamoDB service.

        Credentials and region come from the same environment variables the
        other AWS services use (AWS_REGION, AWS_ACCESS_KEY_ID,
        AWS_SECRET_ACCESS_KEY, AWS_SESSION_TOKEN).

        Args:
            table_name: Optional custom table name. Defaults to
                        DYNAMODB_TABLE_NAME or 'UtilityHistory'.
            dynamodb: Optional boto3 DynamoDB resource (used by tests).
        """
        self.table_name = table_name or os.getenv('DYNAMODB_TABLE_NAME', 'UtilityHistory')
        self.region = os.getenv('AWS_REGION', 'us-east-1')

        if dynamodb is None:
            # Session token for temporary credentials
            session_token = os.getenv('AWS_SESSION_TOKEN')
            dynamodb = boto3.resource(
                'dynamodb',
                region_name=self.region,
                aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
                aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
                aws_session_token=session_token if session_token else None
            )
        self.dynamodb = dynamodb

        # The low-level client behind the resource, for describe_table
        self.client = self.dynamodb.meta.client
        self.table = self.dynamodb.Table(self.table_name)

    def create_table_if_not_exists(self) -> bool:
        """
        Create the history table if it doesn't exist.

        Table Schema:
        - meter_path (String): Partition Key, '{type}.{meterName}'
        - record (String): Sort Key, 'meta' or the year

        Returns:
            bool: True if table exists or was created successfully
        """
        try:
            self.client.describe_table(TableName=self.table_name)
            logger.info("DynamoDB table '%s' exists", self.table_name)
            return True

        except ClientError as e:
            if e.response['Error']['Code'] != 'ResourceNotFoundException':
                logger.error("Error checking table: %s", e)
                return False

        try:
            table = self.dynamodb.create_table(
                TableName=self.table_name,
                KeySchema=[
                    {'AttributeName': 'meter_path', 'KeyType': 'HASH'},
                    {'AttributeName': 'record', 'KeyType': 'RANGE'}
                ],
                AttributeDefinitions=[
                    {'AttributeName': 'meter_path', 'AttributeType': 'S'},
                    {'AttributeName': 'record', 'AttributeType': 'S'}
                ],
                # On-demand pricing, no capacity planning needed
                BillingMode='PAY_PER_REQUEST'
            )
            # Wait for table to be fully created
            table.wait_until_exists()
            self.table = table
            logger.info("Created DynamoDB table '%s'", self.table_name)
            return True

        except ClientError as create_error:
            logger.error("Failed to create table: %s", create_error)
            return False

    def ensure_meter(self, utility_type: str, meter_name: str) -> None:
        """
        Create the meta item of a meter unless it is already there.
        """
        try:
            self.table.put_item(
                Item={
                    'meter_path': f"{utility_type}.{meter_name}",
                    'record': META_RECORD,
                    'type': utility_type,
                    'meterName': meter_name,
                    'lastImport': 0
                },
                ConditionExpression='attribute_not_exists(meter_path)'
            )
        except ClientError as e:
            if e.response['Error']['Code'] == 'ConditionalCheckFailedException':
                return
            logger.error("Failed to create meter %s.%s: %s", utility_type, meter_name, e)
            raise

    def write_year(self, utility_type: str, meter_name: str, year: int, stats,
                   include_volume: bool = False) -> None:
        """
        Store (or replace) the aggregated numbers of one year.

        Args:
            stats: YearStats with consumption, volume, costs, count
            include_volume: gas meters also store the volume in m³
        """
        item = {
            'meter_path': f"{utility_type}.{meter_name}",
            'record': str(year),
            'consumption': Decimal(str(stats.consumption)),
            'costs': Decimal(str(stats.costs)),
            'count': stats.count
        }
        if include_volume:
            item['volume'] = Decimal(str(stats.volume))

        try:
            self.table.put_item(Item=item)
        except ClientError as e:
            logger.error("Failed to write history %s.%s/%s: %s", utility_type, meter_name, year, e)
            raise

    def set_last_import(self, utility_type: str, meter_name: str, timestamp_ms: int) -> None:
        try:
            self.table.update_item(
                Key={'meter_path': f"{utility_type}.{meter_name}", 'record': META_RECORD},
                UpdateExpression='SET lastImport = :ts',
                ExpressionAttributeValues={':ts': timestamp_ms}
            )
        except ClientError as e:
            logger.error("Failed to update lastImport of %s.%s: %s", utility_type, meter_name, e)
            raise

    def get_history(self, utility_type: str, meter_name: str) -> Dict:
        """
        Read back everything stored for a meter.

        Returns:
            dict: {"lastImport": ms, "history": {"2022": {...}, ...}},
                  or {} if the meter is unknown
        """
        meter_path = f"{utility_type}.{meter_name}"
        try:
            result = self.table.query(KeyConditionExpression=Key('meter_path').eq(meter_path))
            items = result.get('Items', [])

            # Handle pagination (query returns at most 1 MB per call)
            while 'LastEvaluatedKey' in result:
                result = self.table.query(
                    KeyConditionExpression=Key('meter_path').eq(meter_path),
                    ExclusiveStartKey=result['LastEvaluatedKey']
                )
                items.extend(result.get('Items', []))

        except ClientError as e:
            logger.error("Failed to read history of %s: %s", meter_path, e)
            raise

        if not items:
            return {}

        history = {}
        last_import = 0
        for item in items:
            if item['record'] == META_RECORD:
                last_import = _to_number(item.get('lastImport', 0))
                continue
            history[item['record']] = {
                k: _to_number(v) for k, v in item.items() if k not in ('meter_path', 'record')
            }
        return {"lastImport": last_import, "history": history}

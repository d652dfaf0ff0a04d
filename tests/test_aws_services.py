# tests/test_aws_services.py
import io
import json
from decimal import Decimal

import boto3
import pytest
from botocore.response import StreamingBody
from botocore.stub import ANY, Stubber

from meter_import.lib.dynamodb_service import DynamoDBService
from meter_import.lib.import_core.dispatcher import ImportDispatcher
from meter_import.lib.import_core.errors import BackendError, TransportError
from meter_import.lib.import_core.history import YearStats
from meter_import.lib.import_core.models import AdapterAddress, ImportRequest, UtilityType
from meter_import.lib.lambda_service import LambdaService

AWS_TEST_CREDENTIALS = {
    "region_name": "us-east-1",
    "aws_access_key_id": "testing",
    "aws_secret_access_key": "testing",
}
INVOKE_PARAMS = {"FunctionName": "utility-monitor-0", "InvocationType": "RequestResponse", "Payload": ANY}


def streaming(obj):
    raw = json.dumps(obj).encode("utf-8")
    return StreamingBody(io.BytesIO(raw), len(raw))


def make_lambda():
    client = boto3.client("lambda", **AWS_TEST_CREDENTIALS)
    return LambdaService(lambda_client=client, function_prefix=""), Stubber(client)


def make_request():
    return ImportRequest(utility_type=UtilityType.GAS, import_name="historic", content="data:text/csv;base64,eA==")


def test_function_name_from_address():
    service, _ = make_lambda()
    assert service.function_name("utility-monitor.0") == "utility-monitor-0"
    assert service.function_name(AdapterAddress("utility-monitor", 2)) == "utility-monitor-2"
    prefixed = LambdaService(lambda_client=service.lambda_client, function_prefix="prod-")
    assert prefixed.function_name("utility-monitor.1") == "prod-utility-monitor-1"


def test_send_returns_decoded_answer():
    service, stubber = make_lambda()
    answer = {"success": True, "count": 42, "first": "2023-01-01", "last": "2023-12-31"}
    stubber.add_response("invoke", {"StatusCode": 200, "Payload": streaming(answer)}, INVOKE_PARAMS)

    with stubber:
        assert service.send("utility-monitor.0", "importCSV", {"type": "gas"}) == answer
    stubber.assert_no_pending_responses()


def test_dispatch_over_lambda_surfaces_backend_error():
    service, stubber = make_lambda()
    stubber.add_response("invoke", {"StatusCode": 200, "Payload": streaming({"error": "bad format"})}, INVOKE_PARAMS)

    dispatcher = ImportDispatcher(service, AdapterAddress("utility-monitor", 0))
    with stubber:
        with pytest.raises(BackendError) as exc:
            dispatcher.dispatch(make_request())
    assert exc.value.message == "bad format"


def test_client_error_becomes_transport_error():
    service, stubber = make_lambda()
    stubber.add_client_error(
        "invoke",
        service_error_code="ResourceNotFoundException",
        service_message="Function not found: utility-monitor-0",
        http_status_code=404,
    )

    with stubber:
        with pytest.raises(TransportError, match="Function not found"):
            service.send("utility-monitor.0", "importCSV", {})


def test_function_crash_becomes_transport_error():
    service, stubber = make_lambda()
    crash = {"errorMessage": "Task timed out after 60.00 seconds", "errorType": "TimeoutError"}
    stubber.add_response(
        "invoke",
        {"StatusCode": 200, "FunctionError": "Unhandled", "Payload": streaming(crash)},
        INVOKE_PARAMS,
    )

    dispatcher = ImportDispatcher(service, AdapterAddress("utility-monitor", 0))
    with stubber:
        with pytest.raises(TransportError, match="Task timed out"):
            dispatcher.dispatch(make_request())


def test_invalid_address_is_a_transport_error():
    service, _ = make_lambda()
    with pytest.raises(TransportError):
        service.send("no-instance", "importCSV", {})


def make_dynamodb():
    resource = boto3.resource("dynamodb", **AWS_TEST_CREDENTIALS)
    return DynamoDBService(table_name="UtilityHistory", dynamodb=resource), Stubber(resource.meta.client)


def test_write_year_puts_one_item():
    db, stubber = make_dynamodb()
    stubber.add_response("put_item", {})

    with stubber:
        db.write_year("gas", "historic", 2022, YearStats(1500.0, 137.3, 150.0, 2), include_volume=True)
    stubber.assert_no_pending_responses()


def test_ensure_meter_ignores_existing_meter():
    db, stubber = make_dynamodb()
    stubber.add_client_error("put_item", service_error_code="ConditionalCheckFailedException")

    with stubber:
        db.ensure_meter("gas", "historic")
    stubber.assert_no_pending_responses()


def test_get_history_groups_items():
    db, stubber = make_dynamodb()
    stubber.add_response("query", {
        "Items": [
            {"meter_path": {"S": "gas.historic"}, "record": {"S": "2022"},
             "consumption": {"N": "1500.5"}, "count": {"N": "2"}},
            {"meter_path": {"S": "gas.historic"}, "record": {"S": "meta"},
             "lastImport": {"N": "1700000000000"}},
        ]
    })

    with stubber:
        history = db.get_history("gas", "historic")
    assert history == {
        "lastImport": 1700000000000,
        "history": {"2022": {"consumption": 1500.5, "count": 2}},
    }


def test_decimal_conversion_on_write():
    db, _ = make_dynamodb()
    captured = {}

    def put_item(Item):
        captured.update(Item)

    db.table = type("FakeTable", (), {"put_item": staticmethod(put_item)})()
    db.write_year("water", "cold", 2023, YearStats(10.1, 0.0, 1.01, 3))
    assert captured["consumption"] == Decimal("10.1")
    assert captured["record"] == "2023"
    assert "volume" not in captured

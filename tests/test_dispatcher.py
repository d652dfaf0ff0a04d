# tests/test_dispatcher.py
import threading

import pytest

from meter_import.lib.import_core.dispatcher import DispatchState, ImportDispatcher, decode_response
from meter_import.lib.import_core.errors import (
    BackendError,
    ImportInProgressError,
    TransportError,
    ValidationError,
    ValidationErrorKind,
)
from meter_import.lib.import_core.models import AdapterAddress, ImportRequest, ImportResult, UtilityType

ENDPOINT = AdapterAddress("utility-monitor", 0)


class FakeTransport:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def send(self, address, command, message):
        self.calls.append((address, command, message))
        if self.error:
            raise self.error
        return self.response


class BlockingTransport:
    def __init__(self, response):
        self.response = response
        self.started = threading.Event()
        self.release = threading.Event()

    def send(self, address, command, message):
        self.started.set()
        self.release.wait(timeout=5)
        return self.response


def make_request(name="meter_1"):
    return ImportRequest(utility_type=UtilityType.GAS, import_name=name, content="data:text/csv;base64,eA==")


def test_summary_round_trips_unchanged():
    transport = FakeTransport({"count": 42, "first": "2023-01-01", "last": "2023-12-31"})
    dispatcher = ImportDispatcher(transport, ENDPOINT)
    result = dispatcher.dispatch(make_request())
    assert result == ImportResult(count=42, first="2023-01-01", last="2023-12-31")
    assert dispatcher.outcome is DispatchState.SUCCESS
    assert dispatcher.state is DispatchState.IDLE


def test_sends_exactly_one_request_to_the_endpoint():
    transport = FakeTransport({"success": True, "count": 1, "first": "2023-01-01", "last": "2023-01-01"})
    ImportDispatcher(transport, ENDPOINT).dispatch(make_request())
    assert transport.calls == [("utility-monitor.0", "importCSV", make_request().to_message())]


def test_explicit_endpoint_overrides_default():
    transport = FakeTransport({"count": 0, "first": "", "last": ""})
    ImportDispatcher(transport, ENDPOINT).dispatch(make_request(), endpoint=AdapterAddress("utility-monitor", 3))
    assert transport.calls[0][0] == "utility-monitor.3"


def test_backend_error_is_surfaced_verbatim():
    dispatcher = ImportDispatcher(FakeTransport({"error": "bad format"}), ENDPOINT)
    with pytest.raises(BackendError) as exc:
        dispatcher.dispatch(make_request())
    assert exc.value.message == "bad format"
    assert dispatcher.outcome is DispatchState.BACKEND_REJECTED
    assert dispatcher.state is DispatchState.IDLE


def test_error_wins_over_summary_fields():
    with pytest.raises(BackendError):
        decode_response({"error": "duplicate", "count": 3, "first": "a", "last": "b"})


@pytest.mark.parametrize("payload", [{"error": ""}, {"error": None}])
def test_empty_error_field_is_still_a_rejection(payload):
    with pytest.raises(BackendError) as exc:
        decode_response(payload)
    assert exc.value.message == "The backend rejected the import."


@pytest.mark.parametrize("payload", [
    None,
    "ok",
    {},
    {"count": -1, "first": "2023-01-01", "last": "2023-01-02"},
    {"count": "3", "first": "2023-01-01", "last": "2023-01-02"},
    {"count": True, "first": "2023-01-01", "last": "2023-01-02"},
    {"count": 3},
])
def test_malformed_responses_are_transport_errors(payload):
    with pytest.raises(TransportError):
        decode_response(payload)


@pytest.mark.parametrize("error", [
    TransportError("no adapter"),
    ConnectionError("connection reset"),
    TimeoutError("timed out"),
])
def test_transport_failure(error):
    dispatcher = ImportDispatcher(FakeTransport(error=error), ENDPOINT)
    with pytest.raises(TransportError) as exc:
        dispatcher.dispatch(make_request())
    assert str(error) in exc.value.message
    assert exc.value.message.startswith("Communication error")
    assert dispatcher.outcome is DispatchState.TRANSPORT_FAILED
    assert dispatcher.state is DispatchState.IDLE
    assert not dispatcher.in_flight


def test_invalid_input_never_reaches_transport():
    transport = FakeTransport({"count": 1, "first": "a", "last": "a"})
    dispatcher = ImportDispatcher(transport, ENDPOINT)

    def build():
        raise ValidationError(ValidationErrorKind.INVALID_NAME, "bad name")

    with pytest.raises(ValidationError):
        dispatcher.run(build)
    assert transport.calls == []
    assert dispatcher.outcome is DispatchState.INVALID_INPUT
    assert dispatcher.state is DispatchState.IDLE


def test_second_dispatch_while_pending_is_rejected():
    transport = BlockingTransport({"count": 5, "first": "2022-01-01", "last": "2022-12-31"})
    dispatcher = ImportDispatcher(transport, ENDPOINT)
    results = []

    worker = threading.Thread(target=lambda: results.append(dispatcher.dispatch(make_request())))
    worker.start()
    assert transport.started.wait(timeout=5)
    assert dispatcher.in_flight
    assert dispatcher.state is DispatchState.TRANSMITTING

    with pytest.raises(ImportInProgressError):
        dispatcher.dispatch(make_request("other"))

    transport.release.set()
    worker.join(timeout=5)
    assert results == [ImportResult(count=5, first="2022-01-01", last="2022-12-31")]
    assert not dispatcher.in_flight

    # the guard is free again once the first attempt resolved
    transport.release.set()
    assert dispatcher.dispatch(make_request()).count == 5


def test_address_parsing():
    assert AdapterAddress.parse("utility-monitor.0") == ENDPOINT
    assert str(AdapterAddress.parse("my.adapter.12")) == "my.adapter.12"
    with pytest.raises(ValueError):
        AdapterAddress.parse("utility-monitor")

# meter_import/lib/import_core/dispatcher.py
import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from .errors import BackendError, ImportInProgressError, TransportError, ValidationError
from .models import IMPORT_COMMAND, AdapterAddress, ImportRequest, ImportResult

logger = logging.getLogger(__name__)


class DispatchState(Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    INVALID_INPUT = "invalid_input"
    TRANSMITTING = "transmitting"
    SUCCESS = "success"
    TRANSPORT_FAILED = "transport_failed"
    BACKEND_REJECTED = "backend_rejected"


def decode_response(payload: Any) -> ImportResult:
    """
    Turn the backend's reply into an ImportResult or raise.

    The reply is either {count, first, last} or {error}. When both are
    present the error wins. Anything else is a broken exchange and is
    reported as a TransportError.
    """
    if not isinstance(payload, dict):
        raise TransportError(f"Unexpected response from backend: {payload!r}")
    if "error" in payload:
        raise BackendError(str(payload["error"] or "The backend rejected the import."))

    count = payload.get("count")
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise TransportError(f"Response carries no valid record count: {payload!r}")
    if "first" not in payload or "last" not in payload:
        raise TransportError(f"Response carries no time range: {payload!r}")
    return ImportResult(count=count, first=payload["first"], last=payload["last"])


class ImportDispatcher:
    """
    Sends one import request to a backend adapter instance and waits for its
    single response.

    The transport is any object with send(address, command, message) -> dict.
    At most one attempt runs at a time; a second attempt started while one is
    pending raises ImportInProgressError instead of waiting.
    """

    def __init__(self, transport, endpoint: AdapterAddress):
        self.transport = transport
        self.endpoint = endpoint
        self.state = DispatchState.IDLE
        self.outcome: Optional[DispatchState] = None
        self._in_flight = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def dispatch(self, request: ImportRequest, endpoint: Optional[AdapterAddress] = None) -> ImportResult:
        return self.run(lambda: request, endpoint=endpoint)

    def run(self, build: Callable[[], ImportRequest], endpoint: Optional[AdapterAddress] = None) -> ImportResult:
        """
        One guarded attempt: build the request, transmit it, decode the reply.

        Whatever the outcome, the dispatcher is back in IDLE afterwards and
        `outcome` holds the terminal state of the attempt.
        """
        if not self._in_flight.acquire(blocking=False):
            raise ImportInProgressError("An import is already in progress.")
        try:
            self.state = DispatchState.VALIDATING
            try:
                request = build()
            except ValidationError:
                self.outcome = DispatchState.INVALID_INPUT
                raise

            self.state = DispatchState.TRANSMITTING
            try:
                result = self._exchange(request, endpoint or self.endpoint)
            except TransportError:
                self.outcome = DispatchState.TRANSPORT_FAILED
                raise
            except BackendError:
                self.outcome = DispatchState.BACKEND_REJECTED
                raise

            self.outcome = DispatchState.SUCCESS
            return result
        finally:
            self.state = DispatchState.IDLE
            self._in_flight.release()

    def _exchange(self, request: ImportRequest, endpoint: AdapterAddress) -> ImportResult:
        logger.info(
            "Sending %s for %s.%s to %s",
            IMPORT_COMMAND, request.utility_type.value, request.import_name, endpoint,
        )
        try:
            response = self.transport.send(str(endpoint), IMPORT_COMMAND, request.to_message())
        except (TransportError, OSError) as e:
            logger.warning("Transport failed for %s: %s", endpoint, e)
            raise TransportError(f"Communication error: {e}") from e

        try:
            result = decode_response(response)
        except BackendError as e:
            logger.info("Backend rejected import %s: %s", request.import_name, e)
            raise
        logger.info("Imported %d records (%s - %s)", result.count, result.first, result.last)
        return result

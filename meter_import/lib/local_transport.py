"""
In-process request/response channel.

Used when Lambda is disabled: the backend ImportManager runs inside the
same process and is registered under its adapter address. Requests and
responses are pushed through JSON so that anything the real channel could
not carry fails here too.
"""
import json
import logging
from typing import Any, Callable, Dict

from meter_import.lib.import_core.errors import TransportError

logger = logging.getLogger(__name__)


class LocalTransport:
    def __init__(self):
        self.handlers: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {}

    def register(self, address, handler: Callable[[Dict[str, Any]], Dict[str, Any]]) -> None:
        self.handlers[str(address)] = handler

    def send(self, address: str, command: str, message: Dict[str, Any]) -> Any:
        handler = self.handlers.get(address)
        if handler is None:
            raise TransportError(f"No adapter instance registered at {address}")

        try:
            event = json.loads(json.dumps({"command": command, "message": message}))
        except (TypeError, ValueError) as e:
            raise TransportError(f"Request is not serializable: {e}") from e

        logger.debug("Delivering %s to local adapter %s", command, address)
        try:
            response = handler(event)
        except Exception as e:
            logger.error("Local adapter %s failed: %s", address, e)
            raise TransportError(f"Adapter {address} failed: {e}") from e

        try:
            return json.loads(json.dumps(response))
        except (TypeError, ValueError) as e:
            raise TransportError(f"Response is not serializable: {e}") from e

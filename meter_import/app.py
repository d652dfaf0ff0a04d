"""
=============================================================================
UTILITY METER IMPORT - FLASK APPLICATION
=============================================================================

HTTP front for importing historical meter readings (gas, water,
electricity, PV) from CSV files.

Endpoints:
- POST /import          upload a CSV file with its utility type and name
- GET  /import/status   state of the caller's import session
- GET  /history         yearly history stored for a meter

How an import travels:
    browser --(multipart form)--> ImportSession --(ImportRequest)-->
    ImportDispatcher --(importCSV)--> backend adapter instance

The backend adapter instance is either a Lambda function (USE_LAMBDA=true)
or an ImportManager running inside this process.

How to run:
    python -m meter_import.app

Then POST a file:
    curl -F file=@readings.csv -F type=gas -F meterName=historic \
         http://127.0.0.1:5000/import
=============================================================================
"""

import logging
import os
import threading
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, request, session

from meter_import.config import Config, ImportSettings, configure_logging
from meter_import.lib.import_core.dispatcher import DispatchState, ImportDispatcher
from meter_import.lib.import_core.errors import ImportInProgressError, ValidationError
from meter_import.lib.import_core.importer import ImportManager
from meter_import.lib.import_core.payload import coerce_utility_type, validate_import_name
from meter_import.lib.import_core.session import ImportSession
from meter_import.lib.local_store import LocalHistoryStore
from meter_import.lib.local_transport import LocalTransport

configure_logging()
logger = logging.getLogger(__name__)

config = Config()

# =============================================================================
# STORAGE - where the backend keeps imported history
# =============================================================================
# DynamoDB when enabled, otherwise a JSON file in DATA_DIR


def make_store(use_dynamodb: bool, data_dir):
    if use_dynamodb:
        try:
            from meter_import.lib.dynamodb_service import DynamoDBService
            dynamodb_store = DynamoDBService()
            if dynamodb_store.create_table_if_not_exists():
                logger.info("DynamoDB storage enabled")
                return dynamodb_store
            logger.warning("DynamoDB table is not available. Using local storage.")
        except Exception as e:
            # If DynamoDB fails, we fall back to local storage
            logger.warning("DynamoDB initialization failed: %s. Using local storage.", e)
    return LocalHistoryStore(data_dir)


store = make_store(config.USE_DYNAMODB, config.DATA_DIR)
USE_DYNAMODB = not isinstance(store, LocalHistoryStore)

# =============================================================================
# TRANSPORT - how import requests reach the adapter instance
# =============================================================================

USE_LAMBDA = config.USE_LAMBDA
transport = None

if USE_LAMBDA:
    try:
        from meter_import.lib.lambda_service import LambdaService
        transport = LambdaService()
        logger.info("Lambda transport enabled")
    except Exception as e:
        logger.warning("Lambda initialization failed: %s. Importing in-process.", e)
        USE_LAMBDA = False
        transport = None

if transport is None:
    transport = LocalTransport()
    transport.register(config.endpoint, ImportManager(store, ImportSettings.from_env()).handle_message)

# =============================================================================
# FLASK APPLICATION
# =============================================================================

app = Flask(__name__)
app.secret_key = config.SECRET_KEY or os.urandom(24)

# One ImportSession per browser session, keyed by a UUID in the cookie.
# Least recently used sessions are dropped beyond MAX_SESSIONS.
SESSIONS: "OrderedDict[str, ImportSession]" = OrderedDict()
MAX_SESSIONS = config.MAX_SESSIONS
SESSIONS_LOCK = threading.Lock()

ERROR_STATUS = {
    DispatchState.INVALID_INPUT: 400,
    DispatchState.BACKEND_REJECTED: 422,
    DispatchState.TRANSPORT_FAILED: 502,
}
IN_PROGRESS_MESSAGE = "An import is already in progress."


@dataclass
class SelectedUpload:
    """An uploaded file kept in memory so it can be re-read on resubmit."""

    filename: str
    data: bytes

    def read(self) -> bytes:
        return self.data


def get_import_session() -> ImportSession:
    session_id = session.get("import_session")
    if not session_id:
        session_id = uuid.uuid4().hex
        session["import_session"] = session_id

    with SESSIONS_LOCK:
        import_session = SESSIONS.get(session_id)
        if import_session is None:
            import_session = ImportSession(ImportDispatcher(transport, config.endpoint))
            SESSIONS[session_id] = import_session
        SESSIONS.move_to_end(session_id)
        evict_sessions(keep=session_id)
    return import_session


def evict_sessions(keep: Optional[str] = None) -> None:
    """Drop the oldest sessions over MAX_SESSIONS. Sessions with an import running stay."""
    for session_id in list(SESSIONS):
        if len(SESSIONS) <= MAX_SESSIONS:
            break
        if session_id != keep and not SESSIONS[session_id].dispatcher.in_flight:
            del SESSIONS[session_id]


@app.route("/import", methods=["POST"])
def import_csv():
    """
    Import a CSV file of historical readings.

    Form fields:
        file:       the CSV file (if several are sent, the last one is used)
        type:       gas | water | electricity | pv
        meterName:  letters, digits and underscores only

    Returns:
        200 {"count", "first", "last"} on success
        400 invalid input, 409 import already running,
        422 rejected by the backend, 502 backend unreachable
    """
    import_session = get_import_session()
    if import_session.dispatcher.in_flight:
        # the pending attempt keeps its file and name
        return jsonify({"error": IN_PROGRESS_MESSAGE}), 409

    uploads = [
        SelectedUpload(filename=f.filename, data=f.read())
        for f in request.files.getlist("file")
        if f and f.filename
    ]
    import_session.select_files(uploads)

    if "type" in request.form:
        import_session.utility_type = request.form["type"]
    if "meterName" in request.form:
        import_session.import_name = request.form["meterName"]

    if import_session.selection.current is None:
        return jsonify({"error": "No file selected"}), 400

    try:
        result = import_session.submit()
    except ImportInProgressError as e:
        return jsonify({"error": e.message}), 409

    if result is None:
        status = ERROR_STATUS.get(import_session.dispatcher.outcome, 500)
        return jsonify({"error": import_session.error}), status

    return jsonify(result.to_dict())


@app.route("/import/status", methods=["GET"])
def import_status():
    """
    Show the caller's import session: selected file, form values and the
    last result or error.
    """
    return jsonify(get_import_session().status())


@app.route("/history", methods=["GET"])
def history():
    """
    Get the yearly history stored for a meter.

    Query Parameters:
        type (required): gas | water | electricity | pv
        meterName (required): the import name

    Example Response:
        {
            "type": "gas",
            "meterName": "historic",
            "lastImport": 1700000000000,
            "history": {"2022": {"consumption": 1234.5, "volume": 113.0, "costs": 0.0, "count": 12}}
        }
    """
    try:
        utility_type = coerce_utility_type(request.args.get("type", ""))
        meter_name = validate_import_name(request.args.get("meterName"))
    except ValidationError as e:
        return jsonify({"error": e.message}), 400

    data = store.get_history(utility_type.value, meter_name)
    if not data:
        return jsonify({"error": f"No history for {utility_type.value}.{meter_name}"}), 404

    response = {"type": utility_type.value, "meterName": meter_name}
    response.update(data)
    return jsonify(response)


if __name__ == "__main__":
    app.run(debug=True)

"""
=============================================================================
LAMBDA SERVICE - Request/response channel to the import backend
=============================================================================

The import backend runs as an AWS Lambda function. Each adapter instance
is one function, named after its address:

    adapter address        Lambda function name
    ---------------        --------------------
    utility-monitor.0      utility-monitor-0
    utility-monitor.1      utility-monitor-1

(Lambda names allow letters, digits, '-' and '_' only, so the dot becomes
a dash. LAMBDA_FUNCTION_PREFIX is prepended when set.)

Invocation Type:
---------------
We always invoke synchronously ('RequestResponse'): one request goes out,
we wait for exactly one answer. The event the function receives is

    {"command": "importCSV", "message": {type, meterName, content, format}}

and it answers with {count, first, last} or {error}.

Failures:
---------
Anything that keeps the answer from arriving is raised as TransportError:
- ClientError: AWS rejected the call (unknown function, throttling, ...)
- BotoCoreError: connection problems, read timeout
- FunctionError: the function crashed instead of answering
=============================================================================
"""

# boto3 - AWS SDK for Python
import boto3

# Config - client settings such as the read timeout
from botocore.config import Config

# Exceptions raised by boto3 calls
from botocore.exceptions import BotoCoreError, ClientError

import json
import logging
import os
from typing import Any, Dict

from meter_import.lib.import_core.errors import TransportError
from meter_import.lib.import_core.models import AdapterAddress

logger = logging.getLogger(__name__)


class LambdaService:
    """
    Sends import requests to a Lambda-hosted adapter instance.

    Usage:
        transport = LambdaService()
        response = transport.send("utility-monitor.0", "importCSV", message)
    """

    def __init__(self, lambda_client=None, function_prefix: str = None):
        """
        Initialize the Lambda channel.

        Args:
            lambda_client: Optional boto3 Lambda client (used by tests).
            function_prefix: Prepended to every function name; defaults to
                             LAMBDA_FUNCTION_PREFIX.
        """
        self.region = os.getenv('AWS_REGION', 'us-east-1')
        self.function_prefix = function_prefix if function_prefix is not None \
            else os.getenv('LAMBDA_FUNCTION_PREFIX', '')

        if lambda_client is None:
            # Imports can take a while for large files
            timeout = int(os.getenv('IMPORT_TIMEOUT_SECONDS', '60'))
            session_token = os.getenv('AWS_SESSION_TOKEN')
            lambda_client = boto3.client(
                'lambda',
                region_name=self.region,
                aws_access_key_id=os.getenv('AWS_ACCESS_KEY_ID'),
                aws_secret_access_key=os.getenv('AWS_SECRET_ACCESS_KEY'),
                aws_session_token=session_token if session_token else None,
                # no retries: a failed import is reported, never repeated
                config=Config(read_timeout=timeout, retries={'max_attempts': 0})
            )
        self.lambda_client = lambda_client

    def function_name(self, address) -> str:
        if not isinstance(address, AdapterAddress):
            address = AdapterAddress.parse(str(address))
        return f"{self.function_prefix}{address.adapter_name}-{address.instance_id}"

    def send(self, address, command: str, message: Dict[str, Any]) -> Any:
        """
        Invoke the adapter instance and wait for its answer.

        Args:
            address: 'utility-monitor.0' or an AdapterAddress
            command: e.g. 'importCSV'
            message: the request object (must be JSON serializable)

        Returns:
            The decoded JSON answer of the function.

        Raises:
            TransportError: the answer did not arrive or was unreadable
        """
        try:
            function_name = self.function_name(address)
        except ValueError as e:
            raise TransportError(str(e)) from e

        try:
            response = self.lambda_client.invoke(
                FunctionName=function_name,
                InvocationType='RequestResponse',
                # Payload must be bytes or str, so we JSON serialize
                Payload=json.dumps({"command": command, "message": message})
            )
        except ClientError as e:
            logger.error("Failed to invoke Lambda %s: %s", function_name, e)
            raise TransportError(e.response['Error'].get('Message') or str(e)) from e
        except BotoCoreError as e:
            logger.error("Failed to reach Lambda %s: %s", function_name, e)
            raise TransportError(str(e)) from e

        # The Payload is a StreamingBody object
        raw = response['Payload'].read().decode('utf-8')
        try:
            body = json.loads(raw) if raw else None
        except ValueError as e:
            raise TransportError(f"Unreadable response from {function_name}") from e

        if response.get('FunctionError'):
            detail = body.get('errorMessage') if isinstance(body, dict) else None
            logger.error("Lambda %s failed: %s", function_name, detail or response['FunctionError'])
            raise TransportError(detail or f"{function_name} failed ({response['FunctionError']})")

        return body

"""
Oblivious evaluation against a remote VOPRF service.

OprfEvaluator.process_input() runs blind -> evaluate -> finalize as one
unit. Client state lives only for the duration of the call; on any failure
it is dropped and the caller must start again from blind.

The service is any object with ``evaluate(evaluation_request: str) -> str``
taking and returning base64-serialized protocol messages:
    HTTPEvaluationService  — POST {"evaluationRequest"} -> {"evaluation"}
    LocalEvaluationService — in-process VOPRFServer (tests, single-node setups)
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import urllib.error
import urllib.request
from typing import Protocol

from gperm.errors import OprfFinalizeError, OprfProcessingError
from gperm.voprf.protocol import Evaluation, EvaluationRequest, VOPRFClient, VOPRFServer

logger = logging.getLogger(__name__)


def encode_message(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_message(value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, TypeError) as e:
        raise ValueError(f"Invalid base64 message: {e}") from e


class EvaluationService(Protocol):
    """Anything that can blind-evaluate a serialized request."""

    def evaluate(self, evaluation_request: str) -> str: ...


class HTTPEvaluationService:
    """Evaluation service reached over HTTP POST with JSON bodies.

    Usage:
        service = HTTPEvaluationService("https://oprf.example/evaluate")
        evaluation = service.evaluate(serialized_request)
    """

    def __init__(self, url: str, api_key: str = "", timeout: float = 30) -> None:
        if not url:
            raise ValueError("Evaluation URL cannot be empty")
        self.url = url
        self.timeout = timeout
        self._api_key = api_key

    def evaluate(self, evaluation_request: str) -> str:
        """POST the request and return the serialized evaluation.

        Raises:
            OprfProcessingError: On transport failure, non-2xx status, or a
                body that is not JSON.
            OprfFinalizeError: If the body carries no evaluation.
        """
        payload = json.dumps({"evaluationRequest": evaluation_request}).encode()
        req = urllib.request.Request(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        if self._api_key:
            req.add_header("Authorization", f"Bearer {self._api_key}")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            raise OprfProcessingError(f"Evaluation service returned HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise OprfProcessingError(f"Evaluation service unreachable: {e.reason}") from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise OprfProcessingError(f"Evaluation service returned malformed JSON: {e}") from e
        except OSError as e:
            raise OprfProcessingError(f"Evaluation request failed: {e}") from e

        evaluation = body.get("evaluation") if isinstance(body, dict) else None
        if not evaluation or not isinstance(evaluation, str):
            raise OprfFinalizeError("Evaluation service returned no evaluation")
        return evaluation


class LocalEvaluationService:
    """Evaluation service backed by an in-process VOPRFServer."""

    def __init__(self, server: VOPRFServer) -> None:
        self.server = server

    def evaluate(self, evaluation_request: str) -> str:
        request = EvaluationRequest.deserialize(decode_message(evaluation_request))
        return encode_message(self.server.blind_evaluate(request).serialize())


class OprfEvaluator:
    """Turns input bytes into a VOPRF output with one service round trip.

    Usage:
        evaluator = OprfEvaluator(HTTPEvaluationService(url), public_key=pk)
        output = evaluator.process_input(proof_bytes)
    """

    def __init__(self, service: EvaluationService, public_key: bytes | None = None) -> None:
        self.service = service
        self.public_key = public_key

    def process_input(self, input_bytes: bytes) -> bytes:
        """Run blind, remote evaluate, and finalize for one input.

        Raises:
            OprfProcessingError: If the exchange fails at any phase.
            OprfFinalizeError: If the evaluation is malformed, fails
                verification, or finalize yields no output.
        """
        client = VOPRFClient(self.public_key)
        try:
            data, request = client.blind([input_bytes])
        except Exception as e:
            raise OprfProcessingError(f"VOPRF blinding failed: {e}") from e

        try:
            serialized = self.service.evaluate(encode_message(request.serialize()))
        except OprfProcessingError:
            raise
        except Exception as e:
            raise OprfProcessingError(f"VOPRF processing failed: {e}") from e

        if not serialized:
            raise OprfFinalizeError("VOPRF evaluation is empty")

        try:
            evaluation = Evaluation.deserialize(decode_message(serialized))
            outputs = client.finalize(data, evaluation)
        except ValueError as e:
            raise OprfFinalizeError(f"VOPRF finalization failed: {e}") from e

        if not outputs or not outputs[0]:
            raise OprfFinalizeError("VOPRF finalization returned no output")

        logger.debug("VOPRF exchange completed (mode %#04x)", client.mode)
        return outputs[0]

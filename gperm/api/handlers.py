"""
Request handlers for the evaluation API.

Each handler is a pure function: (request_data, dependencies) → (status_code, response_dict).
No HTTP plumbing — that lives in server.py.
"""

from __future__ import annotations

import json
import logging

from gperm import API_MAX_BATCH, API_MAX_REQUEST_BYTES, __version__
from gperm.voprf.evaluator import decode_message, encode_message
from gperm.voprf.protocol import MODE_VOPRF, EvaluationRequest, VOPRFServer
from gperm.voprf.group import GroupError

logger = logging.getLogger(__name__)


def handle_evaluate(body: bytes, server: VOPRFServer) -> tuple[int, dict]:
    """POST /evaluate — blind-evaluate a serialized request.

    Body: {"evaluationRequest": "<base64>"}
    Response: {"evaluation": "<base64>"}
    """
    if not body:
        return 400, {"error": "Empty request body"}
    if len(body) > API_MAX_REQUEST_BYTES:
        return 413, {"error": f"Payload too large (max {API_MAX_REQUEST_BYTES} bytes)"}

    try:
        payload = json.loads(body.decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return 400, {"error": "Body must be JSON"}

    serialized = payload.get("evaluationRequest") if isinstance(payload, dict) else None
    if not isinstance(serialized, str) or not serialized:
        return 400, {"error": "Missing 'evaluationRequest'"}

    try:
        request = EvaluationRequest.deserialize(decode_message(serialized))
    except ValueError as e:
        return 400, {"error": f"Malformed evaluation request: {e}"}

    if len(request.blinded) > API_MAX_BATCH:
        return 413, {"error": f"Too many elements (max {API_MAX_BATCH})"}

    try:
        evaluation = server.blind_evaluate(request)
    except GroupError as e:
        logger.warning("Evaluation failed: %s", e)
        return 500, {"error": "Evaluation failed"}

    logger.debug("Evaluated %d element(s)", len(request.blinded))
    return 200, {"evaluation": encode_message(evaluation.serialize())}


def handle_status(server: VOPRFServer) -> tuple[int, dict]:
    """GET /status — service health and the public key clients verify against."""
    return 200, {
        "service": "gperm-oprf",
        "version": __version__,
        "mode": "voprf" if server.mode == MODE_VOPRF else "oprf",
        "publicKey": server.public_key.hex(),
    }

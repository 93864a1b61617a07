"""
Tests for the VOPRF exchange and evaluation service transports.

TestGroup             — hash-to-group, element validation
TestProtocol          — blind/evaluate/finalize, proofs, wire format
TestOprfEvaluator     — process_input error mapping
TestHTTPEvaluationService — urllib transport with a patched urlopen
"""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from gperm.errors import OprfFinalizeError, OprfProcessingError
from gperm.voprf import (
    MODE_OPRF,
    Evaluation,
    EvaluationRequest,
    HTTPEvaluationService,
    LocalEvaluationService,
    OprfEvaluator,
    VOPRFClient,
    VOPRFServer,
    derive_key_pair,
    generate_key_pair,
)
from gperm.voprf import group
from gperm.voprf.evaluator import decode_message, encode_message
from gperm.voprf.protocol import Proof


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def key_pair():
    return derive_key_pair(b"\x42" * 32, b"test-key")


@pytest.fixture
def server(key_pair):
    return VOPRFServer(key_pair.private_key)


@pytest.fixture
def evaluator(server):
    return OprfEvaluator(LocalEvaluationService(server), public_key=server.public_key)


def _mock_response(body: bytes) -> MagicMock:
    resp = MagicMock()
    resp.read.return_value = body
    resp.__enter__ = MagicMock(return_value=resp)
    resp.__exit__ = MagicMock(return_value=False)
    return resp


# ---------------------------------------------------------------------------
# TestGroup
# ---------------------------------------------------------------------------

class TestGroup:
    def test_hash_to_group_valid_and_deterministic(self):
        a = group.hash_to_group(b"input", b"dst")
        assert group.is_valid_element(a)
        assert a == group.hash_to_group(b"input", b"dst")
        assert a != group.hash_to_group(b"input", b"other-dst")

    def test_generator_is_valid(self):
        assert group.is_valid_element(group.GENERATOR)

    def test_rejects_bad_elements(self):
        assert not group.is_valid_element(b"\x00" * 31)
        assert not group.is_valid_element(b"\x00" * 32)
        with pytest.raises(group.GroupError):
            group.deserialize_element(b"\xff" * 32)

    def test_scalar_inverse(self):
        r = group.random_scalar()
        p = group.hash_to_group(b"x", b"dst")
        assert group.element_mul(group.scalar_invert(r), group.element_mul(r, p)) == p

    def test_invert_zero(self):
        with pytest.raises(group.GroupError):
            group.scalar_invert(b"\x00" * 32)

    def test_random_scalar_skips_zero(self):
        one = b"\x01" + bytes(63)
        with patch("gperm.voprf.group.os.urandom", side_effect=[bytes(64), one]):
            assert group.random_scalar() == b"\x01" + bytes(31)

    def test_random_scalar_is_reduced(self):
        # 2^512 - 1 reduced mod L is a canonical 32-byte scalar
        with patch("gperm.voprf.group.os.urandom", return_value=b"\xff" * 64):
            scalar = group.random_scalar()
        assert len(scalar) == 32
        assert scalar[31] < 0x10


# ---------------------------------------------------------------------------
# TestProtocol
# ---------------------------------------------------------------------------

class TestProtocol:
    def test_derive_key_pair_deterministic(self):
        a = derive_key_pair(b"\x01" * 32, b"info")
        b = derive_key_pair(b"\x01" * 32, b"info")
        c = derive_key_pair(b"\x01" * 32, b"other")
        assert a == b
        assert a.private_key != c.private_key
        assert group.base_mul(a.private_key) == a.public_key

    def test_derive_key_pair_short_seed(self):
        with pytest.raises(ValueError):
            derive_key_pair(b"short", b"info")

    def test_generate_key_pair(self):
        pair = generate_key_pair()
        assert len(pair.private_key) == 32
        assert group.is_valid_element(pair.public_key)

    def test_output_matches_direct_evaluation(self, server):
        client = VOPRFClient(server.public_key)
        data, request = client.blind([b"proof-bytes"])
        (output,) = client.finalize(data, server.blind_evaluate(request))
        assert output == server.evaluate(b"proof-bytes")
        assert len(output) == 64

    def test_deterministic_across_blinds(self, server):
        outputs = set()
        blinded = set()
        for _ in range(3):
            client = VOPRFClient(server.public_key)
            data, request = client.blind([b"same input"])
            blinded.add(request.blinded[0])
            outputs.add(client.finalize(data, server.blind_evaluate(request))[0])
        assert len(outputs) == 1
        assert len(blinded) == 3

    def test_batch(self, server):
        client = VOPRFClient(server.public_key)
        inputs = [b"a", b"b", b"c"]
        data, request = client.blind(inputs)
        outputs = client.finalize(data, server.blind_evaluate(request))
        assert outputs == [server.evaluate(x) for x in inputs]

    def test_different_keys_different_outputs(self, server):
        other = VOPRFServer(generate_key_pair().private_key)
        assert server.evaluate(b"x") != other.evaluate(b"x")

    def test_proof_rejected_for_wrong_public_key(self, server):
        other = generate_key_pair()
        client = VOPRFClient(other.public_key)
        data, request = client.blind([b"x"])
        with pytest.raises(ValueError, match="proof"):
            client.finalize(data, server.blind_evaluate(request))

    def test_missing_proof_rejected(self, server):
        client = VOPRFClient(server.public_key)
        data, request = client.blind([b"x"])
        evaluation = server.blind_evaluate(request)
        with pytest.raises(ValueError):
            client.finalize(data, Evaluation(evaluated=evaluation.evaluated))

    def test_oprf_mode_has_no_proof(self, key_pair):
        server = VOPRFServer(key_pair.private_key, mode=MODE_OPRF)
        client = VOPRFClient()
        data, request = client.blind([b"x"])
        evaluation = server.blind_evaluate(request)
        assert evaluation.proof is None
        assert client.finalize(data, evaluation)[0] == server.evaluate(b"x")

    def test_count_mismatch(self, server):
        client = VOPRFClient(server.public_key)
        data, request = client.blind([b"a", b"b"])
        evaluation = server.blind_evaluate(EvaluationRequest(blinded=request.blinded[:1]))
        with pytest.raises(ValueError):
            client.finalize(data, evaluation)

    def test_blind_requires_input(self):
        with pytest.raises(ValueError):
            VOPRFClient().blind([])

    def test_wire_format(self, server):
        client = VOPRFClient(server.public_key)
        _, request = client.blind([b"a", b"b"])
        raw = request.serialize()
        assert raw[:2] == b"\x00\x02"
        assert len(raw) == 2 + 2 * 32
        assert EvaluationRequest.deserialize(raw) == request

        evaluation = server.blind_evaluate(request)
        raw = evaluation.serialize()
        assert len(raw) == 2 + 2 * 32 + 64
        assert Evaluation.deserialize(raw) == evaluation

    def test_deserialize_rejects_malformed(self):
        with pytest.raises(ValueError):
            EvaluationRequest.deserialize(b"")
        with pytest.raises(ValueError):
            EvaluationRequest.deserialize(b"\x00\x00")
        with pytest.raises(ValueError):
            EvaluationRequest.deserialize(b"\x00\x01" + b"\x00" * 16)
        with pytest.raises(ValueError):
            Proof.deserialize(b"\x00" * 10)

    def test_invalid_private_key(self):
        with pytest.raises(ValueError):
            VOPRFServer(b"\x00" * 32)
        with pytest.raises(ValueError):
            VOPRFServer(b"\xff" * 32)
        with pytest.raises(ValueError):
            VOPRFServer(b"\x01" * 16)


# ---------------------------------------------------------------------------
# TestOprfEvaluator
# ---------------------------------------------------------------------------

class TestOprfEvaluator:
    def test_process_input(self, evaluator, server):
        assert evaluator.process_input(b"proof") == server.evaluate(b"proof")

    def test_service_exception_wrapped(self):
        service = MagicMock()
        service.evaluate.side_effect = ConnectionError("refused")
        with pytest.raises(OprfProcessingError):
            OprfEvaluator(service).process_input(b"x")

    def test_blind_failure_wrapped(self):
        service = MagicMock()
        with patch("gperm.voprf.group.random_scalar", side_effect=RuntimeError("no entropy")):
            with pytest.raises(OprfProcessingError, match="blinding failed"):
                OprfEvaluator(service).process_input(b"x")
        service.evaluate.assert_not_called()

    def test_empty_evaluation(self):
        service = MagicMock()
        service.evaluate.return_value = ""
        with pytest.raises(OprfFinalizeError):
            OprfEvaluator(service).process_input(b"x")

    def test_malformed_evaluation(self):
        service = MagicMock()
        service.evaluate.return_value = encode_message(b"\x00\x01garbage")
        with pytest.raises(OprfFinalizeError):
            OprfEvaluator(service).process_input(b"x")

    def test_not_base64(self):
        service = MagicMock()
        service.evaluate.return_value = "***"
        with pytest.raises(OprfFinalizeError):
            OprfEvaluator(service).process_input(b"x")

    def test_wrong_server_key(self, server):
        other = generate_key_pair()
        evaluator = OprfEvaluator(LocalEvaluationService(server), public_key=other.public_key)
        with pytest.raises(OprfFinalizeError):
            evaluator.process_input(b"x")

    def test_finalize_error_is_processing_error(self):
        assert issubclass(OprfFinalizeError, OprfProcessingError)

    def test_fresh_client_per_call(self, server):
        service = MagicMock(wraps=LocalEvaluationService(server))
        evaluator = OprfEvaluator(service, public_key=server.public_key)
        evaluator.process_input(b"x")
        evaluator.process_input(b"x")
        first, second = [call.args[0] for call in service.evaluate.call_args_list]
        assert first != second


# ---------------------------------------------------------------------------
# TestHTTPEvaluationService
# ---------------------------------------------------------------------------

class TestHTTPEvaluationService:
    URL = "http://127.0.0.1:8787/evaluate"

    def test_empty_url(self):
        with pytest.raises(ValueError):
            HTTPEvaluationService("")

    @patch("gperm.voprf.evaluator.urllib.request.urlopen")
    def test_success(self, mock_urlopen, server):
        def respond(req, timeout=None):
            body = json.loads(req.data.decode())
            request = EvaluationRequest.deserialize(decode_message(body["evaluationRequest"]))
            evaluation = encode_message(server.blind_evaluate(request).serialize())
            return _mock_response(json.dumps({"evaluation": evaluation}).encode())

        mock_urlopen.side_effect = respond
        service = HTTPEvaluationService(self.URL, api_key="secret")
        evaluator = OprfEvaluator(service, public_key=server.public_key)

        assert evaluator.process_input(b"x") == server.evaluate(b"x")
        req = mock_urlopen.call_args[0][0]
        assert req.get_header("Authorization") == "Bearer secret"
        assert req.get_method() == "POST"

    @patch("gperm.voprf.evaluator.urllib.request.urlopen")
    def test_http_error(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.HTTPError(
            self.URL, 500, "Internal Server Error", {}, io.BytesIO(b"")
        )
        with pytest.raises(OprfProcessingError, match="HTTP 500"):
            HTTPEvaluationService(self.URL).evaluate("AAAA")

    @patch("gperm.voprf.evaluator.urllib.request.urlopen")
    def test_unreachable(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("Connection refused")
        with pytest.raises(OprfProcessingError, match="unreachable"):
            HTTPEvaluationService(self.URL).evaluate("AAAA")

    @patch("gperm.voprf.evaluator.urllib.request.urlopen")
    def test_malformed_json(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(b"<html>")
        with pytest.raises(OprfProcessingError, match="malformed"):
            HTTPEvaluationService(self.URL).evaluate("AAAA")

    @patch("gperm.voprf.evaluator.urllib.request.urlopen")
    def test_missing_evaluation(self, mock_urlopen):
        mock_urlopen.return_value = _mock_response(b'{"result": "nope"}')
        with pytest.raises(OprfFinalizeError):
            HTTPEvaluationService(self.URL).evaluate("AAAA")

"""
OPRF / VOPRF protocol (RFC 9497 construction) over edwards25519-SHA512.

Three phases, one round trip:

    client.blind(inputs)          -> FinalizeData (kept), EvaluationRequest (sent)
    server.blind_evaluate(req)    -> Evaluation (k * blinded, + DLEQ proof in VOPRF mode)
    client.finalize(data, eval)   -> outputs

The server never sees the inputs; the client never sees k. For a fixed
server key the output for an input is deterministic, which is what lets a
reader re-derive the same key later.

Wire formats:
    EvaluationRequest: u16 count || count * element
    Evaluation:        u16 count || count * element || [c || s]   (proof in VOPRF mode)
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass

from gperm.voprf import group
from gperm.voprf.group import (
    ELEMENT_SIZE,
    GENERATOR,
    SCALAR_SIZE,
    GroupError,
    i2osp,
    length_prefixed,
)

MODE_OPRF = 0x00
MODE_VOPRF = 0x01

SUITE_NAME = b"edwards25519-SHA512"

_COUNT_SIZE = 2
_PROOF_SIZE = 2 * SCALAR_SIZE


def context_string(mode: int) -> bytes:
    return b"OPRFV1-" + bytes([mode]) + b"-" + SUITE_NAME


def _check_mode(mode: int) -> None:
    if mode not in (MODE_OPRF, MODE_VOPRF):
        raise ValueError(f"Unsupported mode: {mode:#04x}")


def _serialize_elements(elements: tuple[bytes, ...]) -> bytes:
    return struct.pack(">H", len(elements)) + b"".join(elements)


def _deserialize_elements(data: bytes) -> tuple[tuple[bytes, ...], bytes]:
    """Parse a count-prefixed element list. Returns (elements, trailing bytes)."""
    if len(data) < _COUNT_SIZE:
        raise ValueError("Serialized element list too short")
    (count,) = struct.unpack(">H", data[:_COUNT_SIZE])
    if count == 0:
        raise ValueError("Element list is empty")
    end = _COUNT_SIZE + count * ELEMENT_SIZE
    if len(data) < end:
        raise ValueError(f"Expected {count} elements, got {len(data) - _COUNT_SIZE} bytes")
    elements = tuple(
        group.deserialize_element(data[i : i + ELEMENT_SIZE])
        for i in range(_COUNT_SIZE, end, ELEMENT_SIZE)
    )
    return elements, data[end:]


@dataclass(frozen=True)
class Proof:
    """DLEQ proof that the evaluation used the key behind the public key."""

    c: bytes
    s: bytes

    def serialize(self) -> bytes:
        return self.c + self.s

    @classmethod
    def deserialize(cls, data: bytes) -> Proof:
        if len(data) != _PROOF_SIZE:
            raise ValueError(f"Proof must be {_PROOF_SIZE} bytes")
        return cls(c=data[:SCALAR_SIZE], s=data[SCALAR_SIZE:])


@dataclass(frozen=True)
class EvaluationRequest:
    blinded: tuple[bytes, ...]

    def serialize(self) -> bytes:
        return _serialize_elements(self.blinded)

    @classmethod
    def deserialize(cls, data: bytes) -> EvaluationRequest:
        elements, rest = _deserialize_elements(data)
        if rest:
            raise ValueError("Trailing bytes after evaluation request")
        return cls(blinded=elements)


@dataclass(frozen=True)
class Evaluation:
    evaluated: tuple[bytes, ...]
    proof: Proof | None = None

    def serialize(self) -> bytes:
        data = _serialize_elements(self.evaluated)
        if self.proof is not None:
            data += self.proof.serialize()
        return data

    @classmethod
    def deserialize(cls, data: bytes) -> Evaluation:
        elements, rest = _deserialize_elements(data)
        if not rest:
            return cls(evaluated=elements)
        return cls(evaluated=elements, proof=Proof.deserialize(rest))


@dataclass(frozen=True)
class FinalizeData:
    """Client state between blind and finalize. Never leaves the client."""

    inputs: tuple[bytes, ...]
    blinds: tuple[bytes, ...]
    request: EvaluationRequest


@dataclass(frozen=True)
class KeyPair:
    private_key: bytes
    public_key: bytes


def generate_key_pair() -> KeyPair:
    sk = group.random_scalar()
    return KeyPair(private_key=sk, public_key=group.base_mul(sk))


def derive_key_pair(seed: bytes, info: bytes, mode: int = MODE_VOPRF) -> KeyPair:
    """Deterministic key pair from a seed (RFC 9497 DeriveKeyPair shape)."""
    _check_mode(mode)
    if len(seed) < 32:
        raise ValueError("Seed must be at least 32 bytes")

    dst = b"DeriveKeyPair" + context_string(mode)
    derive_input = seed + length_prefixed(info)
    for counter in range(256):
        sk = group.hash_to_scalar(derive_input + i2osp(counter, 1), dst)
        if not group.is_zero_scalar(sk):
            return KeyPair(private_key=sk, public_key=group.base_mul(sk))
    raise GroupError("DeriveKeyPair failed")


class _Suite:
    """Hash functions bound to one mode's context string."""

    def __init__(self, mode: int) -> None:
        _check_mode(mode)
        self.mode = mode
        self.context = context_string(mode)

    def hash_to_group(self, data: bytes) -> bytes:
        return group.hash_to_group(data, b"HashToGroup-" + self.context)

    def hash_to_scalar(self, data: bytes) -> bytes:
        return group.hash_to_scalar(data, b"HashToScalar-" + self.context)

    @staticmethod
    def finalize_hash(input_bytes: bytes, unblinded: bytes) -> bytes:
        return hashlib.sha512(
            length_prefixed(input_bytes) + length_prefixed(unblinded) + b"Finalize"
        ).digest()

    def composite_weights(self, public_key: bytes, cs: tuple[bytes, ...], ds: tuple[bytes, ...]) -> list[bytes]:
        seed_dst = b"Seed-" + self.context
        seed = hashlib.sha512(length_prefixed(public_key) + length_prefixed(seed_dst)).digest()
        weights = []
        for i, (c, d) in enumerate(zip(cs, ds)):
            transcript = (
                length_prefixed(seed)
                + i2osp(i, 2)
                + length_prefixed(c)
                + length_prefixed(d)
                + b"Composite"
            )
            weights.append(self.hash_to_scalar(transcript))
        return weights

    def challenge(self, public_key: bytes, m: bytes, z: bytes, t2: bytes, t3: bytes) -> bytes:
        transcript = (
            length_prefixed(public_key)
            + length_prefixed(m)
            + length_prefixed(z)
            + length_prefixed(t2)
            + length_prefixed(t3)
            + b"Challenge"
        )
        return self.hash_to_scalar(transcript)


def _weighted_sum(weights: list[bytes], elements: tuple[bytes, ...]) -> bytes:
    total = group.element_mul(weights[0], elements[0])
    for weight, element in zip(weights[1:], elements[1:]):
        total = group.element_add(total, group.element_mul(weight, element))
    return total


class VOPRFClient:
    """Client side of the exchange.

    With a server public key the client runs in VOPRF mode and rejects any
    evaluation whose proof does not verify; without one it runs plain OPRF.
    """

    def __init__(self, public_key: bytes | None = None) -> None:
        if public_key is not None:
            public_key = group.deserialize_element(public_key)
        self.public_key = public_key
        self._suite = _Suite(MODE_OPRF if public_key is None else MODE_VOPRF)

    @property
    def mode(self) -> int:
        return self._suite.mode

    def blind(self, inputs: list[bytes]) -> tuple[FinalizeData, EvaluationRequest]:
        """Blind inputs with fresh random scalars."""
        if not inputs:
            raise ValueError("At least one input is required")

        blinds = []
        blinded = []
        for input_bytes in inputs:
            r = group.random_scalar()
            element = self._suite.hash_to_group(input_bytes)
            blinds.append(r)
            blinded.append(group.element_mul(r, element))

        request = EvaluationRequest(blinded=tuple(blinded))
        data = FinalizeData(inputs=tuple(inputs), blinds=tuple(blinds), request=request)
        return data, request

    def finalize(self, data: FinalizeData, evaluation: Evaluation) -> list[bytes]:
        """Verify (VOPRF mode), unblind, and hash the evaluated elements.

        Raises:
            ValueError: If the evaluation does not match the request or the
                proof fails verification.
        """
        if len(evaluation.evaluated) != len(data.blinds):
            raise ValueError(
                f"Evaluation has {len(evaluation.evaluated)} elements, "
                f"expected {len(data.blinds)}"
            )

        if self.public_key is not None:
            if evaluation.proof is None:
                raise ValueError("Evaluation is missing its proof")
            if not self._verify_proof(data.request.blinded, evaluation):
                raise ValueError("Evaluation proof failed verification")

        outputs = []
        for input_bytes, r, z in zip(data.inputs, data.blinds, evaluation.evaluated):
            unblinded = group.element_mul(group.scalar_invert(r), z)
            outputs.append(self._suite.finalize_hash(input_bytes, unblinded))
        return outputs

    def _verify_proof(self, blinded: tuple[bytes, ...], evaluation: Evaluation) -> bool:
        suite = self._suite
        proof = evaluation.proof
        pk = self.public_key
        weights = suite.composite_weights(pk, blinded, evaluation.evaluated)
        m = _weighted_sum(weights, blinded)
        z = _weighted_sum(weights, evaluation.evaluated)

        try:
            t2 = group.element_add(group.base_mul(proof.s), group.element_mul(proof.c, pk))
            t3 = group.element_add(group.element_mul(proof.s, m), group.element_mul(proof.c, z))
        except GroupError:
            return False

        expected = suite.challenge(pk, m, z, t2, t3)
        return hmac.compare_digest(expected, proof.c)


class VOPRFServer:
    """Server side of the exchange. Holds the private evaluation key."""

    def __init__(self, private_key: bytes, mode: int = MODE_VOPRF) -> None:
        if not group.is_canonical_scalar(private_key) or group.is_zero_scalar(private_key):
            raise ValueError("Invalid private key")
        self._suite = _Suite(mode)
        self._sk = private_key
        self.public_key = group.base_mul(private_key)

    @property
    def mode(self) -> int:
        return self._suite.mode

    def blind_evaluate(self, request: EvaluationRequest) -> Evaluation:
        evaluated = tuple(group.element_mul(self._sk, b) for b in request.blinded)
        if self._suite.mode == MODE_OPRF:
            return Evaluation(evaluated=evaluated)
        return Evaluation(
            evaluated=evaluated,
            proof=self._generate_proof(request.blinded, evaluated),
        )

    def evaluate(self, input_bytes: bytes) -> bytes:
        """Compute the PRF output directly, without blinding."""
        element = self._suite.hash_to_group(input_bytes)
        return self._suite.finalize_hash(input_bytes, group.element_mul(self._sk, element))

    def _generate_proof(self, blinded: tuple[bytes, ...], evaluated: tuple[bytes, ...]) -> Proof:
        suite = self._suite
        weights = suite.composite_weights(self.public_key, blinded, evaluated)
        m = _weighted_sum(weights, blinded)
        z = group.element_mul(self._sk, m)

        r = group.random_scalar()
        t2 = group.base_mul(r)
        t3 = group.element_mul(r, m)

        c = suite.challenge(self.public_key, m, z, t2, t3)
        s = group.scalar_sub(r, group.scalar_mul(c, self._sk))
        return Proof(c=c, s=s)

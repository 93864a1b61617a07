"""
VOPRF — oblivious pseudo-random function over edwards25519-SHA512.

Provides:
    - VOPRFClient / VOPRFServer — blind, blind_evaluate, finalize
    - generate_key_pair / derive_key_pair — server evaluation keys
    - OprfEvaluator — one-call client exchange against an EvaluationService
    - HTTPEvaluationService / LocalEvaluationService — service transports

Group arithmetic requires PyNaCl (libsodium).
"""

from gperm.voprf.protocol import (
    MODE_OPRF,
    MODE_VOPRF,
    Evaluation,
    EvaluationRequest,
    FinalizeData,
    KeyPair,
    VOPRFClient,
    VOPRFServer,
    derive_key_pair,
    generate_key_pair,
)
from gperm.voprf.evaluator import (
    EvaluationService,
    HTTPEvaluationService,
    LocalEvaluationService,
    OprfEvaluator,
)

__all__ = [
    "MODE_OPRF",
    "MODE_VOPRF",
    "Evaluation",
    "EvaluationRequest",
    "FinalizeData",
    "KeyPair",
    "VOPRFClient",
    "VOPRFServer",
    "derive_key_pair",
    "generate_key_pair",
    "EvaluationService",
    "HTTPEvaluationService",
    "LocalEvaluationService",
    "OprfEvaluator",
]

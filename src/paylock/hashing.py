"""
Canonical hashing for input/output binding (MIP-004).

The input hash commits to the purchaser identifier and the canonical JSON
form of the job input; the output hash commits to the purchaser identifier
and the exact output string. Both pre-images join their two parts with a
single ``;``. The decision hash submitted to the settlement service is the
two hex digests concatenated.

These values must match byte-for-byte what the settlement service and any
third-party verifier compute, so nothing here may change shape.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Any

import rfc8785

from paylock.core.exceptions import ValidationError

DELIMITER = ";"
DIGEST_HEX_LENGTH = 64


def canonicalize(value: Any) -> str:
    """
    Serialize ``value`` to RFC 8785 (JCS) canonical JSON.

    Object members sorted by UTF-16 code units, no insignificant whitespace,
    non-ASCII kept literal, numbers in ECMAScript form (``1.0`` is ``1``).
    NaN, infinities and integers beyond 2**53 have no JCS form and are rejected.
    """
    try:
        return rfc8785.dumps(value).decode("utf-8")
    except (rfc8785.CanonicalizationError, TypeError, ValueError) as e:
        raise ValidationError(
            f"Input payload is not JSON-serializable: {e}",
            details={"type": type(value).__name__},
        ) from e


def _sha256_hex(pre_image: str) -> str:
    return hashlib.sha256(pre_image.encode("utf-8")).hexdigest()


def hash_input(purchaser_identifier: str, input_payload: Any) -> str:
    """sha256(purchaser_identifier + ";" + canonical JSON of input_payload)."""
    return _sha256_hex(f"{purchaser_identifier}{DELIMITER}{canonicalize(input_payload)}")


def hash_output(purchaser_identifier: str, output_payload: str) -> str:
    """sha256(purchaser_identifier + ";" + output_payload), output used verbatim."""
    if not isinstance(output_payload, str):
        raise ValidationError(
            "Output payload must be a string; serialize it before hashing",
            details={"type": type(output_payload).__name__},
        )
    return _sha256_hex(f"{purchaser_identifier}{DELIMITER}{output_payload}")


def decision_hash(input_digest: str | None, output_digest: str) -> str:
    """Value submitted to unlock escrow: input digest followed by output digest."""
    return (input_digest or "") + output_digest


def verify_binding(
    purchaser_identifier: str,
    input_payload: Any,
    output_payload: str,
    expected: str,
) -> bool:
    """Recompute the decision hash and compare it to ``expected`` in constant time."""
    input_digest = hash_input(purchaser_identifier, input_payload) if input_payload is not None else None
    actual = decision_hash(input_digest, hash_output(purchaser_identifier, output_payload))
    return hmac.compare_digest(actual, expected.lower())


def generate_purchaser_identifier(length: int = 26) -> str:
    """Random lowercase hex identifier for purchasers that do not bring their own."""
    if length < 1:
        raise ValidationError("Identifier length must be positive")
    return secrets.token_hex((length + 1) // 2)[:length]

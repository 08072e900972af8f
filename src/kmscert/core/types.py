"""Enumerated types shared across kmscert.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that logs and JSON round-trip naturally.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Issuance run
# ---------------------------------------------------------------------------


class IssuanceState(StrEnum):
    UNBUILT = "unbuilt"
    TBS_READY = "tbs_ready"
    DIGEST_COMPUTED = "digest_computed"
    SIGNATURE_PENDING = "signature_pending"
    SIGNED = "signed"
    ASSEMBLED = "assembled"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Signing algorithms
# ---------------------------------------------------------------------------


class SigningAlgorithm(StrEnum):
    """Remote signing algorithms, named as key custody services name them."""

    RS256 = "RS256"  # RSASSA-PKCS1-v1_5 with SHA-256

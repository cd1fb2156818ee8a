"""
Verification Module
===================

Domain: rate-limited proof of ownership of an external account

Services:
- VerificationGate: attempt counting, code issuance, verification quest credit
"""

from .gate import (
    AccountVerifier,
    VerificationGate,
    VerificationResult,
    VerificationStatus,
    bio_contains_code,
    format_time_remaining,
    generate_code,
)

__all__ = [
    "AccountVerifier",
    "VerificationGate",
    "VerificationResult",
    "VerificationStatus",
    "bio_contains_code",
    "format_time_remaining",
    "generate_code",
]

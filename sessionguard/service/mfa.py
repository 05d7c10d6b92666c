"""MFA helpers.

Code verification is owned by an external collaborator; this module only
generates secrets/backup codes and defines the verifier seam.
"""

from __future__ import annotations

import base64
import secrets
from typing import List, Protocol

TOTP_SECRET_BYTES = 20
BACKUP_CODE_BYTES = 6


class MFAVerifier(Protocol):
    def verify(self, secret: str, code: str) -> bool: ...


class RejectingMFAVerifier:
    """Fail-closed default until a real TOTP/backup-code verifier is injected."""

    def verify(self, secret: str, code: str) -> bool:
        return False


def generate_totp_secret() -> str:
    return base64.b32encode(secrets.token_bytes(TOTP_SECRET_BYTES)).decode("ascii").rstrip("=")


def generate_backup_codes(count: int = 10) -> List[str]:
    codes: List[str] = []
    for _ in range(count):
        raw = secrets.token_hex(BACKUP_CODE_BYTES).upper()
        codes.append("-".join(raw[i : i + 2] for i in range(0, len(raw), 2)))
    return codes

"""
PKCE (Proof Key for Code Exchange) utilities.

Used by the redirect flow and, for the device grant, to bind the polling
client to the client that requested the device code.
"""

import base64
import hashlib
import secrets
from dataclasses import dataclass

from .constants import PkceProtocol


@dataclass
class PkceCodes:
    """PKCE code verifier and challenge pair.

    Attributes:
        code_verifier: Cryptographically random string (43-128 chars)
        code_challenge: Base64url-encoded SHA256 hash of verifier
    """

    code_verifier: str
    code_challenge: str


def generate_pkce() -> PkceCodes:
    """Generate an S256 PKCE verifier and challenge.

    Example:
        >>> pkce = generate_pkce()
        >>> len(pkce.code_verifier)
        128
    """
    code_verifier = secrets.token_hex(PkceProtocol.CODE_VERIFIER_BYTES)
    digest = hashlib.sha256(code_verifier.encode()).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()

    return PkceCodes(
        code_verifier=code_verifier,
        code_challenge=code_challenge,
    )


def generate_state() -> str:
    return secrets.token_urlsafe(32)

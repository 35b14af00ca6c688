"""Signed access/refresh tokens.

Tokens are RS256 JWTs. The client reads the ``exp`` claim to schedule
refreshes; when certificates are configured the signature is verified before
any claim is trusted.
"""
from __future__ import annotations

import base64
import time
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, Union

from google.auth import crypt, jwt

from services.errors import InvalidToken


Certs = Union[str, bytes, Sequence[Union[str, bytes]]]


def _b64_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def load_certs(path: Union[str, Path, None]) -> Optional[str]:
    if not path:
        return None
    target = Path(path)
    try:
        text = target.read_text(encoding="utf-8")
    except OSError:
        return None
    return text if text.strip() else None


class TokenDecoder:
    def __init__(self, certs: Optional[Certs] = None):
        self.certs = certs

    @property
    def verifies(self) -> bool:
        return bool(self.certs)

    def claims(self, token: str) -> Dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidToken("Empty token")
        try:
            payload = jwt.decode(token, verify=False)
        except ValueError as exc:
            raise InvalidToken(f"Malformed token: {exc}") from exc
        if self.certs:
            signed_section, _, encoded_signature = token.rpartition(".")
            try:
                signature = _b64_decode(encoded_signature)
            except (ValueError, UnicodeEncodeError) as exc:
                raise InvalidToken("Malformed token signature") from exc
            if not crypt.verify_signature(signed_section, signature, self.certs):
                raise InvalidToken("Token signature could not be verified")
        return payload

    def expiry(self, token: str) -> float:
        """Return the ``exp`` claim as epoch seconds."""

        payload = self.claims(token)
        exp = payload.get("exp")
        if isinstance(exp, bool) or not isinstance(exp, (int, float)):
            raise InvalidToken("Token has no numeric exp claim")
        return float(exp)


def issue_token(
    signer: crypt.Signer,
    claims: Mapping[str, Any],
    lifetime_sec: int,
    *,
    now: Optional[float] = None,
) -> str:
    """Mint a signed token valid for ``lifetime_sec`` from ``now``."""

    issued_at = int(now if now is not None else time.time())
    payload = dict(claims)
    payload["iat"] = issued_at
    payload["exp"] = issued_at + int(lifetime_sec)
    return jwt.encode(signer, payload).decode("utf-8")


def signer_from_pem(private_key_pem: Union[str, bytes], key_id: Optional[str] = None) -> crypt.Signer:
    return crypt.RSASigner.from_string(private_key_pem, key_id=key_id)


__all__ = ["TokenDecoder", "issue_token", "load_certs", "signer_from_pem"]

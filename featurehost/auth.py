"""
Credential Authorities.

The pipeline only asks one question of authentication: is this credential
valid? Everything about issuing and rotating credentials lives behind the
CredentialAuthority protocol.

Usage:
    authority = StaticTokenAuthority(["key-1", "key-2"])
    await authority.verify("key-1")   # True
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Iterable

from pydantic import SecretStr

from featurehost.pipeline.validators import CredentialAuthority

logger = logging.getLogger(__name__)


class StaticTokenAuthority:
    """
    Accepts a fixed set of API keys.

    Comparison is constant-time; keys are held as SecretStr so they never
    show up in reprs or logs.
    """

    def __init__(self, tokens: Iterable[str | SecretStr]):
        self._tokens = tuple(
            token if isinstance(token, SecretStr) else SecretStr(token)
            for token in tokens
            if (token.get_secret_value() if isinstance(token, SecretStr) else token)
        )

    def __len__(self) -> int:
        return len(self._tokens)

    async def verify(self, credential: str) -> bool:
        candidate = credential.encode("utf-8")
        matched = False
        for token in self._tokens:
            # No early exit: timing must not reveal which key matched.
            if hmac.compare_digest(candidate, token.get_secret_value().encode("utf-8")):
                matched = True
        if not matched:
            logger.debug("[auth] credential rejected")
        return matched

    def __repr__(self) -> str:
        return f"StaticTokenAuthority(tokens={len(self._tokens)})"


class AllowAnyCredential:
    """Accepts any non-empty credential. For local development only."""

    async def verify(self, credential: str) -> bool:
        return bool(credential)


__all__ = [
    "CredentialAuthority",
    "StaticTokenAuthority",
    "AllowAnyCredential",
]

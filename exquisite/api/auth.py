"""
Identity - Resolves the calling user for HTTP requests and WebSockets.

Account management and OAuth live elsewhere; this layer only needs a
stable user id. HTTP requests are identified by headers only; WebSockets,
which cannot always set headers, may also pass the id in the query string.
Two providers:
- HeaderIdentityProvider: trusts a header set by an upstream gateway
- TokenIdentityProvider: maps static bearer tokens to user ids
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import Mapping

from ..config import AppConfig
from ..errors import UnauthorizedError


class IdentityProvider(ABC):

    @abstractmethod
    def resolve_caller(
        self,
        headers: Mapping[str, str],
        query: Mapping[str, str] | None = None,
    ) -> str:
        """Return the caller's user id or raise UnauthorizedError."""


class HeaderIdentityProvider(IdentityProvider):
    """User id from a request header, or the `user_id` query parameter (WebSockets)."""

    def __init__(self, header: str = "X-User-Id"):
        self.header = header

    def resolve_caller(self, headers, query=None) -> str:
        user_id = headers.get(self.header) or (query or {}).get("user_id")
        if not user_id or not user_id.strip():
            raise UnauthorizedError()
        return user_id.strip()


class TokenIdentityProvider(IdentityProvider):
    """User id looked up from `Authorization: Bearer <token>`, or the `token` query parameter (WebSockets)."""

    def __init__(self, tokens: dict[str, str]):
        self.tokens = dict(tokens)

    def resolve_caller(self, headers, query=None) -> str:
        token = None
        auth = headers.get("Authorization") or headers.get("authorization")
        if auth:
            scheme, _, value = auth.partition(" ")
            if scheme.lower() == "bearer" and value.strip():
                token = value.strip()
        if token is None:
            token = (query or {}).get("token")
        if not token:
            raise UnauthorizedError()

        user_id = self.tokens.get(token)
        if user_id is None:
            raise UnauthorizedError("Invalid token")
        return user_id


def build_identity_provider(config: AppConfig) -> IdentityProvider:
    if config.api_tokens:
        return TokenIdentityProvider(config.api_tokens)
    return HeaderIdentityProvider(config.auth_header)

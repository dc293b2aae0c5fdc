"""Password hashing, token signing and the bearer token guard."""
from __future__ import annotations

import json
import logging
from typing import Callable, Optional

import jwt
from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext

from .config import DEFAULT_BCRYPT_WORK_FACTOR
from .errors import AuthError, Unauthenticated

logger = logging.getLogger("messagely.security")

TOKEN_ALGORITHM = "HS256"
TOKEN_FIELD = "_token"


class PasswordHasher:
    """bcrypt hashing with a tunable work factor."""

    def __init__(self, work_factor: int = DEFAULT_BCRYPT_WORK_FACTOR) -> None:
        self._work_factor = work_factor
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=work_factor,
        )

    @property
    def work_factor(self) -> int:
        return self._work_factor

    def hash(self, password: str) -> str:
        if not password:
            raise ValueError("Password must not be empty")
        return self._context.hash(password)

    def verify(self, password: str, hashed: str) -> bool:
        try:
            return self._context.verify(password, hashed)
        except (TypeError, ValueError):
            return False

    def dummy_verify(self) -> None:
        """Spend roughly the cost of a real verification against no user."""

        self._context.dummy_verify()


class TokenSigner:
    """Issue and verify HS256 tokens carrying a ``username`` claim."""

    def __init__(self, secret_key: str) -> None:
        if not secret_key:
            raise ValueError("A secret key must be provided to sign tokens")
        self._secret_key = secret_key

    def issue(self, username: str) -> str:
        return jwt.encode({"username": username}, self._secret_key, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str) -> str:
        try:
            claims = jwt.decode(token, self._secret_key, algorithms=[TOKEN_ALGORITHM])
        except jwt.PyJWTError as exc:
            raise AuthError(f"Invalid token: {exc}") from exc

        username = claims.get("username")
        if not isinstance(username, str) or not username:
            raise AuthError("Token is missing the 'username' claim")
        return username


async def _token_from_body(request: Request) -> Optional[str]:
    content_type = request.headers.get("content-type", "")
    if "application/json" not in content_type:
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if isinstance(payload, dict):
        value = payload.get(TOKEN_FIELD)
        if isinstance(value, str):
            return value
    return None


class TokenAuth:
    """Resolve the caller's username from a bearer token on every request.

    The token may arrive as an ``Authorization: Bearer`` header, a ``_token``
    query parameter or a ``_token`` field in a JSON body. Identity comes from
    the token alone; the credential store is not consulted.
    """

    def __init__(self, verifier: Callable[[str], str]) -> None:
        self._verify = verifier
        self._bearer = HTTPBearer(auto_error=False)

    async def extract_token(self, request: Request) -> Optional[str]:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is not None and credentials.credentials.strip():
            return credentials.credentials.strip()

        query_token = request.query_params.get(TOKEN_FIELD)
        if query_token and query_token.strip():
            return query_token.strip()

        body_token = await _token_from_body(request)
        if body_token and body_token.strip():
            return body_token.strip()
        return None

    async def __call__(self, request: Request) -> str:
        token = await self.extract_token(request)
        if token is None:
            raise Unauthenticated("Authentication required")

        try:
            username = self._verify(token)
        except AuthError as exc:
            logger.warning("Rejected request to %s: %s", request.url.path, exc.message)
            raise Unauthenticated("Invalid authentication token") from exc

        request.state.username = username
        return username


__all__ = ["PasswordHasher", "TOKEN_FIELD", "TokenAuth", "TokenSigner"]

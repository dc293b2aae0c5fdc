"""User registration, credential checks and token issuance."""
from __future__ import annotations

import logging

from .database import Database
from .errors import NotFound, ValidationError
from .models import User
from .security import PasswordHasher, TokenSigner

logger = logging.getLogger("messagely.identity")


class IdentityService:
    """Own the password hash lifecycle and the token claim format.

    ``authenticate`` answers with a boolean and never raises for bad
    credentials; every other operation fails with the typed errors in
    :mod:`messagely.errors`.
    """

    def __init__(self, database: Database, hasher: PasswordHasher, signer: TokenSigner) -> None:
        self._database = database
        self._hasher = hasher
        self._signer = signer

    def register(
        self,
        username: str,
        password: str,
        *,
        first_name: str = "",
        last_name: str = "",
        phone: str = "",
    ) -> User:
        if not username or not password:
            raise ValidationError("Username and password required")

        password_hash = self._hasher.hash(password)
        user = self._database.create_user(
            username,
            password_hash,
            first_name=first_name,
            last_name=last_name,
            phone=phone,
        )
        logger.info("Registered user %s", username)
        return user

    def authenticate(self, username: str, password: str) -> bool:
        if not username or not password:
            return False

        stored_hash = self._database.get_password_hash(username)
        if stored_hash is None:
            self._hasher.dummy_verify()
            return False
        return self._hasher.verify(password, stored_hash)

    def update_login_timestamp(self, username: str) -> None:
        if not self._database.update_login_timestamp(username):
            raise NotFound(f"No such user: {username}")

    def issue_token(self, username: str) -> str:
        return self._signer.issue(username)

    def verify_token(self, token: str) -> str:
        return self._signer.verify(token)

    def login(self, username: str, password: str) -> str:
        """Check credentials, stamp the login time and return a fresh token."""

        if not username or not password:
            raise ValidationError("Username and password required")
        if not self.authenticate(username, password):
            logger.warning("Failed login attempt for %s", username)
            raise ValidationError("Invalid username/password")

        self.update_login_timestamp(username)
        logger.info("User %s logged in", username)
        return self.issue_token(username)


__all__ = ["IdentityService"]

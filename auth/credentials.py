"""
auth/credentials.py -- Credential verification and registration.

verify() distinguishes "no such user" (NotFound) from "wrong password"
(InvalidCredentials) so the service layer can choose what to reveal, but the
two paths cost the same: an unknown username is still checked against a dummy
bcrypt hash of the same cost factor. AccountLocked is only raised once the
password has verified.

Layer rule: no imports from api/ or cache/.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.store import UserStore
from auth.tokens import MAX_PASSWORD_BYTES, hash_password, password_too_long, verify_password
from core.errors import AccountLocked, AlreadyExists, InvalidCredentials, InvalidInput, NotFound

logger = logging.getLogger("sessionguard.auth")


class CredentialStore:
    """Verifies and registers local username/password identities.

    The bcrypt cost factor is fixed here: every hash this instance writes and
    the timing-equalization dummy hash use the same rounds.
    """

    def __init__(self, users: UserStore, bcrypt_rounds: int = 12) -> None:
        self.users = users
        self.bcrypt_rounds = bcrypt_rounds
        self._dummy_hash = hash_password("sessionguard_timing_dummy", rounds=bcrypt_rounds)

    def verify(self, username: str, password: str) -> User:
        user = self.users.get_by_username(username)
        if user is None:
            # Equalize timing -- do NOT return before running bcrypt.
            verify_password(password, self._dummy_hash)
            logger.info("Login failed: unknown username")
            raise NotFound("User not found.")
        if not user.hashed_password:
            verify_password(password, self._dummy_hash)
            logger.warning("Login failed: user_id=%s has no stored password hash", user.id)
            raise InvalidCredentials()
        if not verify_password(password, user.hashed_password):
            logger.info("Login failed: bad password for user_id=%s", user.id)
            raise InvalidCredentials()
        if user.is_blocked:
            logger.info("Login refused: user_id=%s is blocked", user.id)
            raise AccountLocked()
        return user

    def register(self, username: str, email: str, password: str) -> User:
        """Create a new account with must_change_password set.

        Collisions on username or email are case-sensitive. The pre-check gives
        the common case a clean error; the UNIQUE constraints catch the race
        where two registrations pass the pre-check together.
        """
        if password_too_long(password):
            raise InvalidInput(f"Password must be at most {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
        if self.users.find_collision(username, email) is not None:
            raise AlreadyExists()
        user = User(
            username=username,
            email=email,
            hashed_password=hash_password(password, rounds=self.bcrypt_rounds),
            must_change_password=True,
        )
        try:
            user.id = self.users.create_user(user)
        except IntegrityError as exc:
            raise AlreadyExists() from exc
        logger.info("Registered user_id=%s", user.id)
        return self.users.get_by_id(user.id) or user

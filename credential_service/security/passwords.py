"""Salted argon2id password derivation."""

from __future__ import annotations

import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHash, VerificationError


class PasswordManager:
    """Derive and check password representations; plaintext is never stored."""

    def __init__(self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4) -> None:
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
        )
        self._dummy_hash = self._hasher.hash(secrets.token_hex(16))

    def hash(self, password: str) -> str:
        """Return an encoded argon2id hash using a freshly generated salt."""
        return self._hasher.hash(password)

    def verify(self, password_hash: str, password: str) -> bool:
        """Return ``True`` when ``password`` re-derives to ``password_hash``."""
        try:
            return self._hasher.verify(password_hash, password)
        except (InvalidHash, VerificationError):
            return False

    def verify_against_dummy(self, password: str) -> bool:
        """Run a full verification against a throwaway hash built with the same parameters."""
        return self.verify(self._dummy_hash, password)

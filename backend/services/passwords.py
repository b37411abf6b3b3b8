"""Password hashing with bcrypt.

The async helpers run hashing on a worker thread so the event loop is not
blocked for the duration of a bcrypt round.
"""

import asyncio
import logging

import bcrypt

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 12

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    """Adaptive, salted one-way hashing for stored credentials."""

    def __init__(self, rounds: int = DEFAULT_ROUNDS):
        self.rounds = rounds

    @staticmethod
    def _encode(plaintext: str) -> bytes:
        return plaintext.encode("utf-8")[:BCRYPT_MAX_BYTES]

    def hash(self, plaintext: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(self._encode(plaintext), salt).decode("ascii")

    def verify(self, plaintext: str, password_hash: str) -> bool:
        """Check a password against a stored hash (constant time via bcrypt)."""
        try:
            return bcrypt.checkpw(self._encode(plaintext), password_hash.encode("ascii"))
        except ValueError:
            # Malformed hash in the store; treat as a mismatch
            logger.error("Stored password hash is malformed")
            return False

    async def hash_async(self, plaintext: str) -> str:
        return await asyncio.to_thread(self.hash, plaintext)

    async def verify_async(self, plaintext: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self.verify, plaintext, password_hash)

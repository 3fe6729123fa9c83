"""
Code Hashing
============
Adaptive, salted hashing of one-time codes.

bcrypt is the default algorithm; Argon2id can be selected instead. The
algorithm of a stored hash is detected from its prefix, so codes hashed
before a switch remain verifiable until they expire.
"""

import asyncio
from functools import lru_cache
from typing import Optional

import bcrypt
from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from otpguard.exceptions import InvalidInput

BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")
ARGON2_PREFIX = "$argon2"


@lru_cache(maxsize=1)
def get_cached_argon2_hasher() -> PasswordHasher:
    """Argon2id hasher sized for short-lived codes rather than passwords."""
    return PasswordHasher(
        time_cost=2,
        memory_cost=19456,  # 19 MiB
        parallelism=1,
        hash_len=32,
        salt_len=16,
        type=Type.ID,
    )


class CodeHasher:
    """Hashes and verifies plaintext codes."""

    def __init__(self, algorithm: str = "bcrypt", bcrypt_rounds: int = 10):
        self.algorithm = algorithm
        self.bcrypt_rounds = bcrypt_rounds
        self._dummy_hash: Optional[bytes] = None

    def hash(self, plain_code: str) -> str:
        """
        Hash a plaintext code.

        Args:
            plain_code: Code as generated

        Returns:
            Encoded hash including algorithm, parameters and salt

        Raises:
            InvalidInput: If the code is empty or blank
        """
        if not plain_code or not plain_code.strip():
            raise InvalidInput("Code cannot be empty")

        if self.algorithm == "argon2":
            return get_cached_argon2_hasher().hash(plain_code)
        return bcrypt.hashpw(plain_code.encode("utf-8"), bcrypt.gensalt(self.bcrypt_rounds)).decode("utf-8")

    def verify(self, plain_code: str, hashed_code: str) -> bool:
        """
        Verify a plaintext code against a stored hash.

        Never raises. Malformed hashes still go through a full comparison
        against a dummy hash before returning False.
        """
        if not plain_code or not plain_code.strip() or not hashed_code:
            return False

        if hashed_code.startswith(BCRYPT_PREFIXES):
            return self._verify_bcrypt(plain_code, hashed_code)
        if hashed_code.startswith(ARGON2_PREFIX):
            return self._verify_argon2(plain_code, hashed_code)

        self._burn(plain_code)
        return False

    async def hash_async(self, plain_code: str) -> str:
        """Hash in the default executor to keep the event loop free."""
        if not plain_code or not plain_code.strip():
            raise InvalidInput("Code cannot be empty")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.hash, plain_code)

    async def verify_async(self, plain_code: str, hashed_code: str) -> bool:
        """Verify in the default executor to keep the event loop free."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.verify, plain_code, hashed_code)

    def _verify_bcrypt(self, plain_code: str, hashed_code: str) -> bool:
        try:
            return bcrypt.checkpw(plain_code.encode("utf-8"), hashed_code.encode("utf-8"))
        except (ValueError, TypeError):
            self._burn(plain_code)
            return False

    def _verify_argon2(self, plain_code: str, hashed_code: str) -> bool:
        try:
            return get_cached_argon2_hasher().verify(hashed_code, plain_code)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            self._burn(plain_code)
            return False

    def _burn(self, plain_code: str) -> None:
        """Run one comparison against a fixed hash so failures cost the same."""
        if self._dummy_hash is None:
            self._dummy_hash = bcrypt.hashpw(b"00000000", bcrypt.gensalt(self.bcrypt_rounds))
        try:
            bcrypt.checkpw(plain_code.encode("utf-8"), self._dummy_hash)
        except (ValueError, TypeError):
            pass

from argon2 import PasswordHasher as Argon2PasswordHasher
from argon2.exceptions import VerifyMismatchError, VerificationError, InvalidHash
import secrets
from config import settings


class PasswordHasher:
    """Argon2 password hasher; time_cost is the configurable cost factor"""

    def __init__(
        self,
        time_cost: int = settings.ARGON2_TIME_COST,
        memory_cost: int = settings.ARGON2_MEMORY_COST,
        parallelism: int = settings.ARGON2_PARALLELISM,
        hash_len: int = settings.ARGON2_HASH_LENGTH,
        salt_len: int = settings.ARGON2_SALT_LENGTH,
    ):
        self.ph = Argon2PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_len,
            salt_len=salt_len,
        )
        # Verified against unknown emails so both failure paths cost one hash check
        self._dummy_hash = self.ph.hash(secrets.token_urlsafe(16))

    def hash_password(self, password: str) -> str:
        return self.ph.hash(password)

    def verify_password(self, password: str, password_hash: str) -> bool:
        try:
            self.ph.verify(password_hash, password)
            return True
        except (VerifyMismatchError, VerificationError, InvalidHash):
            return False

    def burn_verification(self, password: str) -> None:
        self.verify_password(password, self._dummy_hash)

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self.ph.check_needs_rehash(password_hash)
        except (VerificationError, InvalidHash):
            return True

    @staticmethod
    def generate_secure_token(length: int = 32) -> str:
        return secrets.token_urlsafe(length)


# Global password hasher instance
pwd_hasher = PasswordHasher()

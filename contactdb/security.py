"""Password hashing and verification.

Two kinds of secrets are stored:

* the per-user ``SECURE`` record, a salted PBKDF2 key kept in the user's
  own namespace and checked whenever a password is re-entered;
* the engine login record (and the database boot password), hashed with a
  passlib :class:`~passlib.context.CryptContext`.
"""

import base64
import hashlib
import logging
import secrets

from passlib.context import CryptContext
from passlib.crypto.digest import lookup_hash

from .core import Settings, get_settings
from .errors import HashingUnavailable, InvalidArgument

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_login(password: str) -> str:
    """
    Generate a login-record hash using the configured context.

    Raises:
        InvalidArgument: If ``password`` cannot be encoded as UTF-8.
    """
    try:
        return pwd_context.hash(password)
    except UnicodeEncodeError as exc:
        raise InvalidArgument("password cannot be encoded as UTF-8", "hash_login") from exc


def verify_login(plain_password: str, hashed_password: str) -> bool:
    """Compare a plain password with a login-record hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except (ValueError, TypeError):
        return False


class CredentialStore:
    """Salt generation and PBKDF2 key derivation for ``SECURE`` records.

    Args:
        settings (Settings | None): Source of the digest name, iteration
            count, key length and default salt length.
    """

    def __init__(self, settings: Settings | None = None):
        settings = settings or get_settings()
        self.algorithm = settings.HASH_ALGORITHM
        self.iterations = settings.HASH_ITERATIONS
        self.key_length = settings.HASH_KEY_LENGTH // 8
        self.salt_length = settings.SALT_LENGTH

    def generate_salt(self, length: int | None = None) -> str:
        """
        Return ``length`` cryptographically secure random bytes, base64-encoded.

        Args:
            length (int | None): Number of random bytes. Defaults to the
                configured salt length.

        Raises:
            InvalidArgument: If ``length`` is smaller than 1.
        """
        length = self.salt_length if length is None else length
        if length < 1:
            raise InvalidArgument("length must be > 0", "generate_salt")
        return base64.b64encode(secrets.token_bytes(length)).decode("ascii")

    def hash_password(self, password: str, salt: str) -> str:
        """
        Derive a base64-encoded PBKDF2 key from ``password`` and ``salt``.

        The password is copied into a mutable buffer which is zeroed before
        returning, whether or not the derivation succeeds.

        Raises:
            HashingUnavailable: If the digest primitive cannot be located.
            InvalidArgument: If ``password`` cannot be encoded as UTF-8.
        """
        try:
            buffer = bytearray(password.encode("utf-8"))
        except UnicodeEncodeError as exc:
            raise InvalidArgument("password cannot be encoded as UTF-8", "hash_password") from exc
        try:
            try:
                digest = lookup_hash(self.algorithm).name
            except ValueError as exc:
                raise HashingUnavailable(str(exc), "hash_password") from exc
            key = hashlib.pbkdf2_hmac(
                digest,
                buffer,
                salt.encode("utf-8"),
                self.iterations,
                self.key_length,
            )
            return base64.b64encode(key).decode("ascii")
        finally:
            for i in range(len(buffer)):
                buffer[i] = 0

    def verify_password(self, password: str, hashed: str, salt: str) -> bool:
        """
        Recompute the key for ``password`` and compare it with ``hashed``.

        Returns ``False`` instead of raising on any derivation failure.
        """
        try:
            candidate = self.hash_password(password, salt)
        except (HashingUnavailable, InvalidArgument, AttributeError, TypeError, ValueError) as exc:
            logger.error("verify_password() : %s", exc)
            return False
        # plain equality, not a constant-time comparison
        return candidate == hashed

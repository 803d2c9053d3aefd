"""
Server-side encryption for stored secrets.

Token layout (URL-safe base64, no padding):

    version (1) | salt (16) | nonce (12) | AES-256-GCM ciphertext + tag

Without a passphrase the cipher key is HKDF-SHA256(master key, salt). With a
passphrase it is PBKDF2-HMAC-SHA256(passphrase, master key || salt). Both
paths produce 256-bit keys, and a fresh salt and nonce are drawn for every
encryption.
"""

import base64
import binascii
import hashlib
import hmac
import secrets

from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from onetime.config import Settings
from onetime.errors import DecryptionError

TOKEN_VERSION = 1
SALT_SIZE = 16
NONCE_SIZE = 12
KEY_SIZE = 32  # AES-256
KEY_ENTROPY_BYTES = 16  # 128 bits -> 22 URL-safe characters
MIN_PBKDF2_ITERATIONS = 10_000

PASSPHRASE_ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789!@#$%^&*"
MIN_PASSPHRASE_LENGTH = 8
MAX_PASSPHRASE_LENGTH = 128

_HEADER_SIZE = 1 + SALT_SIZE + NONCE_SIZE
_HKDF_INFO = b"onetime:master-key"


class CryptoConfigError(ValueError):
    pass


class CryptoEngine:
    """
    Stateless apart from its configuration, which is fixed at construction.

    Safe to share between threads and requests.
    """

    def __init__(
        self,
        master_key: str,
        *,
        pbkdf2_iterations: int = 100_000,
        argon2_time_cost: int = 3,
        argon2_memory_cost: int = 65536,
        argon2_parallelism: int = 4,
    ) -> None:
        if not master_key:
            raise CryptoConfigError("A master encryption key is required")
        if pbkdf2_iterations < MIN_PBKDF2_ITERATIONS:
            raise CryptoConfigError(
                f"pbkdf2_iterations must be at least {MIN_PBKDF2_ITERATIONS}"
            )
        self._master_key = master_key.encode("utf-8")
        self._iterations = pbkdf2_iterations
        self._hasher = PasswordHasher(
            time_cost=argon2_time_cost,
            memory_cost=argon2_memory_cost,
            parallelism=argon2_parallelism,
            hash_len=32,
            salt_len=16,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "CryptoEngine":
        return cls(
            settings.encryption_key.get_secret_value(),
            pbkdf2_iterations=settings.pbkdf2_iterations,
            argon2_time_cost=settings.argon2_time_cost,
            argon2_memory_cost=settings.argon2_memory_cost,
            argon2_parallelism=settings.argon2_parallelism,
        )

    def _derive_key(self, salt: bytes, passphrase: str | None) -> bytes:
        if passphrase is None:
            hkdf = HKDF(algorithm=hashes.SHA256(), length=KEY_SIZE, salt=salt, info=_HKDF_INFO)
            return hkdf.derive(self._master_key)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=self._master_key + salt,
            iterations=self._iterations,
        )
        return kdf.derive(passphrase.encode("utf-8"))

    def encrypt(self, plaintext: str, passphrase: str | None = None) -> str:
        """Encrypt plaintext into a self-contained token."""
        salt = secrets.token_bytes(SALT_SIZE)
        nonce = secrets.token_bytes(NONCE_SIZE)
        key = self._derive_key(salt, passphrase)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)

        packed = bytes([TOKEN_VERSION]) + salt + nonce + ciphertext
        return base64.urlsafe_b64encode(packed).decode("ascii").rstrip("=")

    def decrypt(self, token: str, passphrase: str | None = None) -> str:
        """
        Decrypt a token produced by encrypt().

        Raises DecryptionError for malformed input and for a wrong key alike.
        """
        try:
            padded = token + "=" * (-len(token) % 4)
            packed = base64.urlsafe_b64decode(padded.encode("ascii"))
        except (binascii.Error, UnicodeEncodeError, ValueError):
            raise DecryptionError()

        # GCM tag alone is 16 bytes
        if len(packed) < _HEADER_SIZE + 16 or packed[0] != TOKEN_VERSION:
            raise DecryptionError()

        salt = packed[1 : 1 + SALT_SIZE]
        nonce = packed[1 + SALT_SIZE : _HEADER_SIZE]
        ciphertext = packed[_HEADER_SIZE:]

        key = self._derive_key(salt, passphrase)
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
            return plaintext.decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            raise DecryptionError()

    def generate_key(self) -> str:
        """Public identifier for a share link. Not a cryptographic key."""
        return secrets.token_urlsafe(KEY_ENTROPY_BYTES)

    def hash(self, value: str) -> str:
        """Deterministic SHA-256 hex digest."""
        return hashlib.sha256(value.encode("utf-8")).hexdigest()

    def hash_passphrase(self, passphrase: str) -> str:
        """Hash a passphrase for storage using Argon2id."""
        return self._hasher.hash(passphrase)

    def verify_passphrase(self, candidate: str, stored_hash: str) -> bool:
        """
        Check a passphrase against its stored hash in constant time.

        Accepts Argon2 hashes and bare SHA-256 hex digests.
        """
        if stored_hash.startswith("$argon2"):
            try:
                return self._hasher.verify(stored_hash, candidate)
            except (VerificationError, InvalidHashError):
                return False

        return hmac.compare_digest(
            self.hash(candidate).encode("ascii"), stored_hash.encode("ascii", "replace")
        )

    def generate_passphrase(self, length: int = 16) -> str:
        if not MIN_PASSPHRASE_LENGTH <= length <= MAX_PASSPHRASE_LENGTH:
            raise ValueError(
                f"Passphrase length must be between {MIN_PASSPHRASE_LENGTH} "
                f"and {MAX_PASSPHRASE_LENGTH}"
            )
        return "".join(secrets.choice(PASSPHRASE_ALPHABET) for _ in range(length))

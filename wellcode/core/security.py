"""Encryption of PR descriptions at rest"""

import base64
import binascii
import hashlib
import logging
import re
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Fernet tokens are url-safe base64 of: version byte 0x80, 8 byte timestamp,
# 16 byte IV, ciphertext in 16 byte blocks, 32 byte HMAC.
_FERNET_TOKEN_RE = re.compile(r"^gAAAAA[A-Za-z0-9_\-]+={0,2}$")
_FERNET_OVERHEAD = 1 + 8 + 16 + 32


class EncryptionError(Exception):
    """Raised when content cannot be encrypted"""


class DecryptionError(ValueError):
    """Raised on malformed ciphertext or a missing/wrong encryption key"""


def derive_fernet_key(secret: str) -> bytes:
    """
    Turn a configured secret into a Fernet key.

    A valid Fernet key is used as is; anything else is stretched to 32
    bytes with SHA-256.
    """
    raw = secret.encode()
    try:
        if len(base64.urlsafe_b64decode(raw)) == 32:
            return raw
    except (binascii.Error, ValueError):
        pass
    return base64.urlsafe_b64encode(hashlib.sha256(raw).digest())


class ContentCipher:
    """
    Encryption capability for PR descriptions.

    `is_encrypted` is a pure format check on the stored text; it never
    needs the key.
    """

    def __init__(self, secret: Optional[str]):
        self._fernet = Fernet(derive_fernet_key(secret)) if secret else None

    def encrypt(self, text: str) -> str:
        if self._fernet is None:
            raise EncryptionError("ENCRYPTION_KEY is not set")
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        if self._fernet is None:
            raise DecryptionError("ENCRYPTION_KEY is not set")
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecryptionError("Invalid encrypted content") from e

    @staticmethod
    def is_encrypted(text: Optional[str]) -> bool:
        if not text or not _FERNET_TOKEN_RE.match(text):
            return False
        try:
            decoded = base64.urlsafe_b64decode(text.encode("ascii"))
        except (binascii.Error, ValueError):
            return False
        body = len(decoded) - _FERNET_OVERHEAD
        return decoded[0] == 0x80 and body > 0 and body % 16 == 0

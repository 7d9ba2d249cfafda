import base64
import hashlib
import json
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESSIV
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

import config

DECRYPTION_FAILED = "[Decryption failed]"
UNKNOWN_USER = {"name": "[Unknown User]", "email": "[unknown@example.com]"}


class FieldCipher:
    """Field-level encryption keyed by a single server secret.

    Two independent sub-keys are derived from the secret with HKDF: a Fernet
    key for content (random IV, authenticated) and an AES-SIV key for
    deterministic encryption. The deterministic variant has no per-message
    randomness and is only meant for deriving lookup keys from emails.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("FORUM_SECRET is not configured")
        self.secret = secret
        self._fernet = Fernet(base64.urlsafe_b64encode(self._derive(b"forum-content", 32)))
        self._siv = AESSIV(self._derive(b"forum-user-id", 64))

    def _derive(self, info: bytes, length: int) -> bytes:
        hkdf = HKDF(algorithm=hashes.SHA256(), length=length, salt=None, info=info)
        return hkdf.derive(self.secret.encode("utf-8"))

    def encrypt_text(self, text: str) -> str:
        return self._fernet.encrypt(text.encode("utf-8")).decode("ascii")

    def decrypt_text(self, token) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode("utf-8")
        except (InvalidToken, AttributeError, TypeError, ValueError):
            return DECRYPTION_FAILED

    def deterministic_encrypt_text(self, text: str) -> str:
        return base64.b64encode(self._deterministic(text)).decode("ascii")

    def derive_user_id(self, email: str) -> str:
        # URL-safe alphabet without padding: no '.', '$', '#', '[', ']' or '/'
        normalized = email.strip().lower()
        return base64.urlsafe_b64encode(self._deterministic(normalized)).decode("ascii").rstrip("=")

    def encrypt_user(self, user: dict) -> str:
        return self.encrypt_text(json.dumps({"name": user.get("name", ""), "email": user.get("email", "")}))

    def decrypt_user(self, blob) -> dict:
        plain = self.decrypt_text(blob)
        if plain == DECRYPTION_FAILED:
            return dict(UNKNOWN_USER)
        try:
            user = json.loads(plain)
        except ValueError:
            return dict(UNKNOWN_USER)
        if not isinstance(user, dict):
            return dict(UNKNOWN_USER)
        return {"name": user.get("name", ""), "email": user.get("email", "")}

    def decrypt_legacy_text(self, blob) -> str:
        """Decrypt an OpenSSL "Salted__" AES-256-CBC blob written by the old handlers."""
        try:
            raw = base64.b64decode(blob, validate=True)
            if raw[:8] != b"Salted__" or len(raw) < 32:
                return DECRYPTION_FAILED
            salt, body = raw[8:16], raw[16:]
            key_iv = evp_bytes_to_key(self.secret.encode("utf-8"), salt, 48)
            decryptor = Cipher(algorithms.AES(key_iv[:32]), modes.CBC(key_iv[32:])).decryptor()
            padded = decryptor.update(body) + decryptor.finalize()
            unpadder = padding.PKCS7(128).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (TypeError, ValueError):
            return DECRYPTION_FAILED

    def _deterministic(self, text: str) -> bytes:
        return self._siv.encrypt(text.encode("utf-8"), None)


def evp_bytes_to_key(password: bytes, salt: bytes, length: int) -> bytes:
    """OpenSSL's MD5 based key/IV derivation, as used by CryptoJS passphrases."""
    derived = b""
    block = b""
    while len(derived) < length:
        block = hashlib.md5(block + password + salt).digest()
        derived += block
    return derived[:length]


def is_legacy_blob(value) -> bool:
    return isinstance(value, str) and value.startswith("U2FsdGVkX1")


@lru_cache(maxsize=4)
def get_cipher(secret: str = None) -> FieldCipher:
    return FieldCipher(secret if secret is not None else config.FORUM_SECRET)


def encrypt_text(text: str) -> str:
    return get_cipher().encrypt_text(text)


def decrypt_text(token) -> str:
    return get_cipher().decrypt_text(token)


def deterministic_encrypt_text(text: str) -> str:
    return get_cipher().deterministic_encrypt_text(text)


def derive_user_id(email: str) -> str:
    return get_cipher().derive_user_id(email)


def encrypt_user(user: dict) -> str:
    return get_cipher().encrypt_user(user)


def decrypt_user(blob) -> dict:
    return get_cipher().decrypt_user(blob)

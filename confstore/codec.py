from __future__ import annotations

import json
import os
from typing import Any, Callable

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import DecodeError

IV_LENGTH = 16
ENVELOPE_SEPARATOR = b":"
PBKDF2_ITERATIONS = 10_000
KEY_LENGTH = 32

Serialize = Callable[[dict[str, Any]], str]
Deserialize = Callable[[str], Any]
EncryptionKey = str | bytes


def serialize_json(document: dict[str, Any]) -> str:
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False, allow_nan=False) + "\n"


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def deserialize_json(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def _key_bytes(key: EncryptionKey) -> bytes:
    return key.encode("utf-8") if isinstance(key, str) else bytes(key)


def derive_key(key: EncryptionKey, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(_key_bytes(key))


def _legacy_salt(iv: bytes) -> bytes:
    # Older files salted the KDF with the IV's text form rather than its bytes.
    return iv.decode("utf-8", errors="replace").encode("utf-8")


def encrypt(data: bytes, key: EncryptionKey, *, iv: bytes | None = None) -> bytes:
    """
    Encrypt `data` with AES-256-CBC.

    Returns the envelope `iv || b":" || ciphertext`. A fresh random IV is drawn
    for every call unless one is passed explicitly.
    """
    if iv is None:
        iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data) + padder.finalize()
    encryptor = Cipher(algorithms.AES(derive_key(key, iv)), modes.CBC(iv)).encryptor()
    return iv + ENVELOPE_SEPARATOR + encryptor.update(padded) + encryptor.finalize()


def _decrypt_with_salt(envelope: bytes, key: EncryptionKey, salt: bytes) -> bytes:
    iv = envelope[:IV_LENGTH]
    ciphertext = envelope[IV_LENGTH + len(ENVELOPE_SEPARATOR):]
    decryptor = Cipher(algorithms.AES(derive_key(key, salt)), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return unpadder.update(padded) + unpadder.finalize()


def decrypt(envelope: bytes, key: EncryptionKey) -> bytes:
    """
    Reverse `encrypt`, falling back to the legacy key derivation.

    If neither derivation works the input is returned unchanged, so that the
    deserialize step reports a parse error instead of silently yielding nothing.
    """
    if len(envelope) <= IV_LENGTH + len(ENVELOPE_SEPARATOR):
        return envelope
    iv = envelope[:IV_LENGTH]
    for salt in (iv, _legacy_salt(iv)):
        try:
            return _decrypt_with_salt(envelope, key, salt)
        except ValueError:
            continue
    return envelope


class Codec:
    """
    Turns documents into file bytes and back.

    serialize -> utf-8 encode -> (encrypt) on the way out,
    (decrypt) -> utf-8 decode -> deserialize on the way in.
    """

    def __init__(
        self,
        *,
        serialize: Serialize | None = None,
        deserialize: Deserialize | None = None,
        encryption_key: EncryptionKey | None = None,
    ):
        self._serialize = serialize or serialize_json
        self._deserialize = deserialize or deserialize_json
        self._encryption_key = encryption_key

    def encode(self, document: dict[str, Any]) -> bytes:
        data = self._serialize(document).encode("utf-8")
        if self._encryption_key:
            data = encrypt(data, self._encryption_key)
        return data

    def decode(self, raw: bytes) -> dict[str, Any]:
        if self._encryption_key:
            raw = decrypt(raw, self._encryption_key)
        try:
            document = self._deserialize(raw.decode("utf-8"))
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError are both ValueErrors.
            raise DecodeError(f"Config file could not be parsed: {e}") from e
        if not isinstance(document, dict):
            raise DecodeError(f"Config root must be an object, got {type(document).__name__}")
        return document

"""Random token generation, keyed identity derivation and identifier encryption."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

_IDENTIFIER_KEY_INFO = b"signaling-identifier-encryption"


def derive_identity(value: str, secret: str) -> str:
    """Return the keyed one-way digest used as a pseudonymous identity."""

    return hmac.new(secret.encode("utf-8"), value.encode("utf-8"), hashlib.sha256).hexdigest()


def generate_token(size: int) -> str:
    """URL-safe token built from ``size`` random bytes.

    The length only depends on ``size``: ``ceil(size * 4 / 3)`` characters.
    """

    return secrets.token_urlsafe(size)


def random_hex(nbytes: int = 16) -> str:
    return secrets.token_hex(nbytes)


def _fernet_for(session_token: str) -> Fernet:
    key = HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=_IDENTIFIER_KEY_INFO,
    ).derive(session_token.encode("utf-8"))
    return Fernet(base64.urlsafe_b64encode(key))


def encrypt_identifier(session_token: str, identifier: str) -> str:
    return _fernet_for(session_token).encrypt(identifier.encode("utf-8")).decode("ascii")


def decrypt_identifier(session_token: str, ciphertext: str) -> str:
    """Reverse :func:`encrypt_identifier`.

    Raises:
        ValueError: if the ciphertext was not produced with this session token.
    """

    try:
        plaintext = _fernet_for(session_token).decrypt(ciphertext.encode("ascii"))
    except InvalidToken as exc:
        raise ValueError("Identifier was not encrypted for this session.") from exc
    return plaintext.decode("utf-8")

"""
Compact signed bearer tokens.

Wire format::

    base64url(payload) + "." + hex(HMAC-SHA256(payload, secret))

Verification failures are deliberately uniform: malformed structure, bad
base64, wrong signature and wrong key all raise the same ``TokenRejected``
with the same message.
"""
import base64
import binascii
import hashlib
import hmac
import uuid
from typing import Union

SecretLike = Union[str, bytes]

_REJECTED = "invalid token"


class TokenRejected(Exception):
    """Raised for any token that does not verify."""

    def __init__(self):
        super().__init__(_REJECTED)


def _key(secret: SecretLike) -> bytes:
    if isinstance(secret, str):
        secret = secret.encode("utf-8")
    if not secret:
        raise ValueError("token secret must not be empty")
    return secret


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(text: str) -> bytes:
    padded = text + "=" * (-len(text) % 4)
    raw = base64.b64decode(padded, altchars=b"-_", validate=True)
    # One spelling per payload: no padding, no '+' or '/', no stray tail bits
    if _b64url_encode(raw) != text:
        raise ValueError("non-canonical base64url")
    return raw


def _mac(payload: bytes, secret: SecretLike) -> str:
    return hmac.new(_key(secret), payload, hashlib.sha256).hexdigest()


def sign(payload: bytes, secret: SecretLike) -> str:
    """Bind ``payload`` to ``secret`` and return the token string."""
    return f"{_b64url_encode(payload)}.{_mac(payload, secret)}"


def verify(token: str, secret: SecretLike) -> bytes:
    """Return the payload carried by ``token`` or raise ``TokenRejected``."""
    key = _key(secret)
    if not isinstance(token, str):
        raise TokenRejected()

    encoded, dot, signature = token.rpartition(".")
    if not dot or not encoded or not signature:
        raise TokenRejected()

    try:
        payload = _b64url_decode(encoded)
    except (binascii.Error, ValueError):
        raise TokenRejected()

    expected = _mac(payload, key)
    # compare_digest needs ASCII-only str operands
    if not signature.isascii() or not hmac.compare_digest(expected, signature):
        raise TokenRejected()
    return payload


def new_nonce() -> str:
    return uuid.uuid4().hex


def join_fields(*fields) -> bytes:
    """Colon-join payload fields (``userId:nonce[:saveVersion][:timestamp]``)."""
    return ":".join(str(f) for f in fields).encode("utf-8")


def split_fields(payload: bytes) -> list:
    try:
        return payload.decode("utf-8").split(":")
    except UnicodeDecodeError:
        raise TokenRejected()

"""
VAPID token signing for Web Push (RFC 8292).

A token is a compact ES256 JWT whose `aud` claim is the origin of the
push endpoint. Encoding and the raw r || s signature segment are left
to PyJWT; this module handles VAPID key formats and the claim set.
"""

import base64
import time
from dataclasses import dataclass
from typing import Optional, Union

import httpx
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

TOKEN_LIFETIME_SECONDS = 12 * 60 * 60
DEFAULT_CONTACT = "info@spiretrack.app"

JWT_ALGORITHM = "ES256"

_P256_SCALAR_BYTES = 32
_DEFAULT_PORTS = {"http": 80, "https": 443}


class KeyImportError(Exception):
    """Raised when private key material is not a usable P-256 key."""


class SigningError(Exception):
    """Raised when the ECDSA signing primitive fails."""


@dataclass(frozen=True)
class VapidCredential:
    """Application server key pair plus the contact used as `sub`.

    Keys are base64url strings as produced by common VAPID key
    generators: a 65-byte uncompressed public point and a 32-byte
    private scalar. A PEM private key is also accepted.
    """
    public_key: str
    private_key: str
    contact: str = DEFAULT_CONTACT

    def is_complete(self) -> bool:
        return bool(self.public_key and self.private_key and self.contact)

    def __repr__(self) -> str:
        return f"VapidCredential(public_key={self.public_key!r}, contact={self.contact!r})"


def b64url_encode(data: bytes) -> str:
    """Base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    """Decode base64url, tolerating missing padding."""
    padded = value + "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def endpoint_origin(endpoint: str) -> str:
    """Return the serialized origin of a push endpoint.

    Userinfo and path are dropped, the host is lowercased and the port
    is kept only when it differs from the scheme's default.

    Raises:
        ValueError: If the endpoint is not an absolute URL
    """
    try:
        url = httpx.URL(endpoint)
    except httpx.InvalidURL as e:
        raise ValueError(f"Push endpoint is not a valid URL: {endpoint!r}") from e
    if not url.scheme or not url.host:
        raise ValueError(f"Push endpoint is not an absolute URL: {endpoint!r}")

    scheme = url.scheme.lower()
    host = url.host.lower()
    if ":" in host:
        host = f"[{host}]"
    if url.port is not None and url.port != _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}:{url.port}"
    return f"{scheme}://{host}"


def _subject_claim(contact: str) -> str:
    if contact.startswith(("mailto:", "https:")):
        return contact
    return f"mailto:{contact}"


def load_private_key(private_key: str) -> ec.EllipticCurvePrivateKey:
    """Interpret key material as a P-256 private key.

    Raises:
        KeyImportError: If the material is malformed or on another curve
    """
    if not private_key:
        raise KeyImportError("VAPID private key is empty")

    if private_key.lstrip().startswith("-----BEGIN"):
        try:
            key = serialization.load_pem_private_key(private_key.encode("ascii"), password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise KeyImportError(f"Invalid PEM private key: {e}") from e
        if not isinstance(key, ec.EllipticCurvePrivateKey) or not isinstance(key.curve, ec.SECP256R1):
            raise KeyImportError("VAPID private key must be an EC key on curve P-256")
        return key

    try:
        raw = b64url_decode(private_key.strip())
    except (ValueError, UnicodeEncodeError) as e:
        raise KeyImportError(f"VAPID private key is not valid base64url: {e}") from e
    if len(raw) != _P256_SCALAR_BYTES:
        raise KeyImportError(
            f"VAPID private key must be {_P256_SCALAR_BYTES} bytes, got {len(raw)}"
        )

    try:
        return ec.derive_private_key(int.from_bytes(raw, "big"), ec.SECP256R1())
    except ValueError as e:
        raise KeyImportError(f"VAPID private key is out of range for P-256: {e}") from e


def sign_vapid_token(
    audience: str,
    private_key: Union[str, ec.EllipticCurvePrivateKey],
    contact: str,
    now: Optional[float] = None
) -> str:
    """Build and sign a VAPID JWT for one push service origin.

    Args:
        audience: Origin of the push endpoint (the `aud` claim)
        private_key: Encoded key material or an already loaded key
        contact: Mail address or URL for the `sub` claim
        now: Unix time to issue at; defaults to the current time

    Returns:
        Three dot-separated base64url segments

    Raises:
        KeyImportError: If private_key cannot be loaded
        SigningError: If signing fails
    """
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        key = private_key
    else:
        key = load_private_key(private_key)

    issued_at = int(time.time() if now is None else now)
    claims = {
        "aud": audience,
        "exp": issued_at + TOKEN_LIFETIME_SECONDS,
        "sub": _subject_claim(contact),
    }

    try:
        return jwt.encode(claims, key, algorithm=JWT_ALGORITHM)
    except jwt.PyJWTError as e:
        raise SigningError(f"VAPID token encoding failed: {e}") from e
    except Exception as e:
        raise SigningError(f"ECDSA signing failed: {e}") from e

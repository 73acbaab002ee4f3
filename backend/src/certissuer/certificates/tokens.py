"""Compact PKI tokens bound to an issued certificate.

A token is a JWT signed by the CA key. It carries the certificate's public key
and identity so that a peer holding only the CA certificate can verify it
offline.
"""

import base64
from datetime import datetime, timezone
from typing import Any

import jwt
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import ec

from certissuer.ca.crypto import (
    CryptoError,
    compute_thumbprint,
    load_certificate,
    public_key_der,
)

# JWS algorithm per CA curve size
_ALGORITHM_BY_KEY_SIZE = {256: "ES256", 384: "ES384", 521: "ES512"}


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def algorithm_for(key: ec.EllipticCurvePrivateKey | ec.EllipticCurvePublicKey) -> str:
    """Pick the JWS algorithm matching the curve of ``key``.

    Raises:
        CryptoError: If the curve is not supported.
    """
    try:
        return _ALGORITHM_BY_KEY_SIZE[key.curve.key_size]
    except KeyError as e:
        raise CryptoError(f"Unsupported curve for token signing: {key.curve.name}") from e


class PKITokenIssuer:
    """Issues tokens from certificates, signed by the CA private key."""

    def __init__(self, signing_key: ec.EllipticCurvePrivateKey, issuer: str):
        self._signing_key = signing_key
        self._algorithm = algorithm_for(signing_key)
        self._issuer = issuer

    def create_token_from_certificate(self, cert: x509.Certificate) -> bytes:
        """Create a token bound to ``cert``, expiring with it.

        Raises:
            CryptoError: If the token cannot be built or signed.
        """
        try:
            claims: dict[str, Any] = {
                "iss": self._issuer,
                "sub": cert.subject.rfc4514_string(),
                "serial": format(cert.serial_number, "x"),
                "x5t#S256": compute_thumbprint(cert),
                "pub": _b64url(public_key_der(cert)),
                "iat": datetime.now(timezone.utc),
                "nbf": cert.not_valid_before_utc,
                "exp": cert.not_valid_after_utc,
            }
            token = jwt.encode(claims, self._signing_key, algorithm=self._algorithm)
        except Exception as e:
            raise CryptoError(f"Failed to issue token: {e}") from e
        return token.encode("ascii")


def verify_token(token: bytes, ca_cert_pem: bytes) -> dict[str, Any]:
    """Verify a token against the CA certificate and return its claims.

    Raises:
        CryptoError: If the token signature, issuer or validity window is invalid.
    """
    ca_cert = load_certificate(ca_cert_pem, what="CA certificate")
    public_key = ca_cert.public_key()
    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise CryptoError("CA certificate does not hold an EC key")

    try:
        return jwt.decode(
            token,
            public_key,
            algorithms=[algorithm_for(public_key)],
            issuer=ca_cert.subject.rfc4514_string(),
            options={"require": ["exp", "iss", "sub", "pub"]},
        )
    except jwt.PyJWTError as e:
        raise CryptoError(f"Invalid token: {e}") from e

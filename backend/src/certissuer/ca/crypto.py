"""Cryptographic utilities for CA and certificate operations.

Provides password-based encryption/decryption for private keys, certificate
parsing and thumbprint computation.
"""

import hashlib
import logging

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes

logger = logging.getLogger(__name__)


class CryptoError(Exception):
    """Raised when a cryptographic operation fails."""

    pass


def encrypt_private_key(private_key: PrivateKeyTypes, password: str) -> bytes:
    """Serialize a private key as password-encrypted PKCS#8 PEM.

    Args:
        private_key: The key to serialize.
        password: The key-decryption password.

    Returns:
        PEM bytes of an ``ENCRYPTED PRIVATE KEY`` block.

    Raises:
        CryptoError: If encryption fails.
    """
    if not password:
        raise CryptoError("Refusing to encrypt private key with an empty password")

    try:
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.BestAvailableEncryption(password.encode("utf-8")),
        )
    except Exception as e:
        raise CryptoError(f"Failed to encrypt private key: {e}") from e


def decrypt_private_key(key_pem: bytes, password: str | None) -> PrivateKeyTypes:
    """Load a PEM private key, decrypting it with the given password.

    An empty password loads an unencrypted key.

    Raises:
        CryptoError: If the key cannot be decrypted or parsed.
    """
    try:
        return serialization.load_pem_private_key(
            key_pem, password=password.encode("utf-8") if password else None
        )
    except Exception as e:
        raise CryptoError(f"Failed to decrypt private key: {e}") from e


def serialize_private_key(private_key: PrivateKeyTypes, password: str | None = None) -> bytes:
    """Serialize a private key as PKCS#8 PEM, encrypted only if a password is given."""
    if password:
        return encrypt_private_key(private_key, password)
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def load_certificate(cert_pem: bytes, what: str = "certificate") -> x509.Certificate:
    """Parse a single PEM certificate.

    Args:
        cert_pem: PEM bytes.
        what: Label used in error messages.

    Raises:
        CryptoError: If the data is empty or not a well-formed certificate.
    """
    if not cert_pem:
        raise CryptoError(f"No {what} found")

    try:
        return x509.load_pem_x509_certificate(cert_pem)
    except Exception as e:
        raise CryptoError(f"Failed to parse {what}: {e}") from e


def certificate_to_pem(cert: x509.Certificate) -> bytes:
    """Encode a certificate as PEM with surrounding whitespace trimmed."""
    return cert.public_bytes(serialization.Encoding.PEM).strip()


def public_key_der(cert: x509.Certificate) -> bytes:
    """Return the certificate's public key as DER SubjectPublicKeyInfo."""
    return cert.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def compute_thumbprint(cert: x509.Certificate) -> str:
    """Compute the lowercase hexadecimal SHA-256 thumbprint of a certificate."""
    der_bytes = cert.public_bytes(serialization.Encoding.DER)
    return hashlib.sha256(der_bytes).hexdigest().lower()

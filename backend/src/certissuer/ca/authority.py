"""In-memory Certificate Authority value.

A CertificateAuthority holds the encrypted CA private key, the CA certificate
and the key-decryption password. It is generated fresh, or loaded from files
or from a persistor, and is always validated before it is handed out.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.types import PrivateKeyTypes
from cryptography.x509.oid import NameOID

from certissuer.ca.crypto import (
    CryptoError,
    decrypt_private_key,
    encrypt_private_key,
    load_certificate,
    serialize_private_key,
)
from shared.security import generate_password

logger = logging.getLogger(__name__)

CA_COMMON_NAME = "Certificate Issuer CA"
CA_VALIDITY = timedelta(days=365)
CA_CURVE = ec.SECP384R1()
CA_SIGNATURE_HASH = hashes.SHA384()


@dataclass
class CertificateAuthority:
    """Holds one CA: encrypted key, certificate and password.

    Invariant: ``key`` decrypts under ``password`` to a private key whose
    public half matches ``cert``, and ``cert`` parses as a certificate.
    """

    key: bytes
    cert: bytes
    password: str

    @classmethod
    def generate(cls) -> "CertificateAuthority":
        """Generate a new EC CA with a self-signed certificate valid for one year.

        Raises:
            CryptoError: If generation or validation fails.
        """
        password = generate_password()

        try:
            private_key = ec.generate_private_key(CA_CURVE)
            public_key = private_key.public_key()

            now = datetime.now(timezone.utc)
            name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, CA_COMMON_NAME)])
            ski = x509.SubjectKeyIdentifier.from_public_key(public_key)

            certificate = (
                x509.CertificateBuilder()
                .subject_name(name)
                .issuer_name(name)
                .public_key(public_key)
                .serial_number(x509.random_serial_number())
                .not_valid_before(now)
                .not_valid_after(now + CA_VALIDITY)
                .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
                .add_extension(
                    x509.KeyUsage(
                        digital_signature=False,
                        key_cert_sign=True,
                        crl_sign=True,
                        key_encipherment=False,
                        content_commitment=False,
                        data_encipherment=False,
                        key_agreement=False,
                        encipher_only=False,
                        decipher_only=False,
                    ),
                    critical=True,
                )
                .add_extension(ski, critical=False)
                .add_extension(
                    x509.AuthorityKeyIdentifier.from_issuer_subject_key_identifier(ski),
                    critical=False,
                )
                .sign(private_key, CA_SIGNATURE_HASH)
            )
        except Exception as e:
            raise CryptoError(f"Failed to issue CA certificate: {e}") from e

        ca = cls(
            key=encrypt_private_key(private_key, password),
            cert=certificate.public_bytes(serialization.Encoding.PEM),
            password=password,
        )
        ca.validate()

        logger.info(
            "ca_generated",
            extra={
                "subject": certificate.subject.rfc4514_string(),
                "not_after": certificate.not_valid_after_utc.isoformat(),
            },
        )
        return ca

    @classmethod
    def from_files(cls, cert_path: str, key_path: str, password: str) -> "CertificateAuthority":
        """Load an existing CA from a PEM certificate file and an encrypted PEM key file.

        Raises:
            OSError: If a file cannot be read.
            CryptoError: If the loaded material fails validation.
        """
        ca = cls(
            key=Path(key_path).read_bytes(),
            cert=Path(cert_path).read_bytes(),
            password=password,
        )
        ca.validate()
        return ca

    def validate(self) -> None:
        """Decrypt the key and parse the certificate.

        This does not check that the certificate is correctly self-signed or
        unexpired.

        Raises:
            CryptoError: If either step fails or the key does not match the certificate.
        """
        self.load()

    def load(self) -> tuple[x509.Certificate, PrivateKeyTypes]:
        """Return the parsed certificate and decrypted private key.

        Raises:
            CryptoError: If validation fails.
        """
        private_key = decrypt_private_key(self.key, self.password)
        certificate = load_certificate(self.cert, what="CA certificate")

        key_der = private_key.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        cert_der = certificate.public_key().public_bytes(
            serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
        )
        if key_der != cert_der:
            raise CryptoError("CA private key does not match CA certificate")

        return certificate, private_key

    def export_private_key(self, password: str | None = None) -> bytes:
        """Return the CA key as PEM, re-encrypted under ``password`` if given.

        Raises:
            CryptoError: If the stored key cannot be decrypted.
        """
        private_key = decrypt_private_key(self.key, self.password)
        return serialize_private_key(private_key, password)

    def copy(self) -> "CertificateAuthority":
        """Return an independent copy of this CA."""
        return CertificateAuthority(
            key=bytes(self.key),
            cert=bytes(self.cert),
            password=self.password,
        )

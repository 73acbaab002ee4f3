"""X.509 certificate issuance from CSRs.

The Issuer validates CSRs, signs them with the CA key, re-validates issued
certificates against a trust anchor and issues tokens bound to them.
"""

import logging
import time
from datetime import datetime, timedelta, timezone

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID
from opentelemetry import trace

from certissuer.ca.authority import CertificateAuthority
from certissuer.ca.crypto import CryptoError, certificate_to_pem
from certissuer.certificates.tokens import PKITokenIssuer
from certissuer.metrics import issuer_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class Issuer:
    """Signs CSRs with one CA and validates certificates against it.

    Certificate attributes:
    - Subject and email addresses: copied from the CSR
    - Validity: now() to now() + 1 year
    - Key Usage: Digital Signature, Key Encipherment
    - Extended Key Usage: Client Authentication, Server Authentication
    - Serial: random, from a CSPRNG

    The issuer is immutable after construction and safe to share.
    """

    VALIDITY = timedelta(days=365)
    SIGNATURE_HASH = hashes.SHA384()

    def __init__(
        self,
        signing_cert_pem: bytes,
        signing_cert: x509.Certificate,
        signing_key: ec.EllipticCurvePrivateKey,
    ) -> None:
        if not isinstance(signing_key, ec.EllipticCurvePrivateKey):
            raise CryptoError("Issuer signing key must be an elliptic-curve key")

        self._signing_cert_pem = signing_cert_pem
        self._signing_cert = signing_cert
        self._signing_key = signing_key
        self._token_issuer = PKITokenIssuer(signing_key, signing_cert.subject.rfc4514_string())

    @classmethod
    def from_authority(cls, ca: CertificateAuthority) -> "Issuer":
        """Build an issuer from a loaded CertificateAuthority.

        Raises:
            CryptoError: If the CA fails validation or holds a non-EC key.
        """
        certificate, private_key = ca.load()
        return cls(ca.cert, certificate, private_key)  # type: ignore[arg-type]

    @classmethod
    def from_paths(cls, cert_path: str, key_path: str, key_password: str) -> "Issuer":
        """Build an issuer from PEM files on disk.

        Raises:
            OSError: If a file cannot be read.
            CryptoError: If the material is invalid.
        """
        return cls.from_authority(CertificateAuthority.from_files(cert_path, key_path, key_password))

    def validate_request(self, csr: x509.CertificateSigningRequest) -> None:
        """Verify the CSR's self-signature.

        Raises:
            CryptoError: If the signature is invalid.
        """
        try:
            valid = csr.is_signature_valid
        except Exception as e:
            raise CryptoError(f"Failed to check CSR signature: {e}") from e

        issuer_metrics.record_validation("csr", "valid" if valid else "invalid")
        if not valid:
            raise CryptoError("CSR signature is invalid")

    def validate_cert(self, cert: x509.Certificate, ca: x509.Certificate | None = None) -> None:
        """Validate ``cert`` against ``ca``, or against this issuer's CA.

        The trust anchor is the only certificate in the pool, so the chain is
        always leaf -> anchor: the leaf must be signed by the anchor, the
        anchor must be a CA, and both must be within their validity window.

        Raises:
            CryptoError: If verification fails.
        """
        anchor = ca if ca is not None else self._signing_cert
        try:
            _verify_chain(cert, anchor, datetime.now(timezone.utc))
        except CryptoError:
            issuer_metrics.record_validation("certificate", "invalid")
            raise

        issuer_metrics.record_validation("certificate", "valid")

    def sign(self, csr: x509.CertificateSigningRequest) -> bytes:
        """Issue a certificate for the CSR, signed by the CA key.

        Returns:
            PEM-encoded certificate with surrounding whitespace trimmed.

        Raises:
            CryptoError: If the certificate cannot be built or signed.
        """
        with tracer.start_as_current_span("Issuer.sign") as span:
            start_time = time.time()
            subject = csr.subject.rfc4514_string()
            span.set_attribute("subject", subject)

            try:
                public_key = csr.public_key()
                now = datetime.now(timezone.utc)

                builder = (
                    x509.CertificateBuilder()
                    .subject_name(csr.subject)
                    .issuer_name(self._signing_cert.subject)
                    .public_key(public_key)
                    .serial_number(x509.random_serial_number())
                    .not_valid_before(now)
                    .not_valid_after(now + self.VALIDITY)
                    .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
                    .add_extension(
                        x509.KeyUsage(
                            digital_signature=True,
                            key_encipherment=True,
                            key_cert_sign=False,
                            crl_sign=False,
                            content_commitment=False,
                            data_encipherment=False,
                            key_agreement=False,
                            encipher_only=False,
                            decipher_only=False,
                        ),
                        critical=True,
                    )
                    .add_extension(
                        x509.ExtendedKeyUsage(
                            [ExtendedKeyUsageOID.CLIENT_AUTH, ExtendedKeyUsageOID.SERVER_AUTH]
                        ),
                        critical=False,
                    )
                    .add_extension(
                        x509.SubjectKeyIdentifier.from_public_key(public_key),  # type: ignore[arg-type]
                        critical=False,
                    )
                    .add_extension(
                        x509.AuthorityKeyIdentifier.from_issuer_public_key(
                            self._signing_key.public_key()
                        ),
                        critical=False,
                    )
                )

                alt_names = _requested_alt_names(csr)
                if alt_names:
                    builder = builder.add_extension(
                        x509.SubjectAlternativeName(alt_names), critical=False
                    )

                certificate = builder.sign(self._signing_key, self.SIGNATURE_HASH)
            except Exception as e:
                logger.error("certificate_signing_failed", extra={"subject": subject, "error": str(e)})
                raise CryptoError(f"Failed to generate Cert: {e}") from e

            serial = format(certificate.serial_number, "x")
            span.set_attribute("serial", serial)

            duration = time.time() - start_time
            issuer_metrics.record_certificate_signed(duration)

            logger.info(
                "certificate_signed",
                extra={
                    "subject": subject,
                    "serial": serial,
                    "not_after": certificate.not_valid_after_utc.isoformat(),
                    "duration_seconds": duration,
                },
            )
            return certificate_to_pem(certificate)

    def issue_token(self, cert: x509.Certificate) -> bytes:
        """Issue a token bound to ``cert``, signed by the CA key.

        Raises:
            CryptoError: If the token cannot be built.
        """
        with tracer.start_as_current_span("Issuer.issue_token"):
            token = self._token_issuer.create_token_from_certificate(cert)
            issuer_metrics.record_token_issued()
            return token

    def get_ca_cert(self) -> bytes:
        """Return the CA certificate PEM used by this issuer."""
        return self._signing_cert_pem


def _verify_chain(cert: x509.Certificate, anchor: x509.Certificate, now: datetime) -> None:
    try:
        cert.verify_directly_issued_by(anchor)
    except (ValueError, TypeError, InvalidSignature) as e:
        raise CryptoError(
            f"certificate is not signed by '{anchor.subject.rfc4514_string()}': "
            f"{e or type(e).__name__}"
        ) from e

    try:
        constraints = anchor.extensions.get_extension_for_class(x509.BasicConstraints).value
    except x509.ExtensionNotFound:
        constraints = None
    if constraints is None or not constraints.ca:
        raise CryptoError("trust anchor is not a CA certificate")

    for which, c in (("certificate", cert), ("CA certificate", anchor)):
        if not c.not_valid_before_utc <= now <= c.not_valid_after_utc:
            raise CryptoError(
                f"{which} is not valid at {now.isoformat()} "
                f"(valid {c.not_valid_before_utc.isoformat()} to "
                f"{c.not_valid_after_utc.isoformat()})"
            )


def _requested_alt_names(csr: x509.CertificateSigningRequest) -> list[x509.GeneralName]:
    """Collect email addresses (and DNS names) requested in the CSR."""
    names: list[x509.GeneralName] = []
    try:
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None

    if san is not None:
        names.extend(x509.RFC822Name(e) for e in san.get_values_for_type(x509.RFC822Name))
        names.extend(x509.DNSName(d) for d in san.get_values_for_type(x509.DNSName))

    existing = {n.value for n in names if isinstance(n, x509.RFC822Name)}
    for attr in csr.subject.get_attributes_for_oid(x509.oid.NameOID.EMAIL_ADDRESS):
        if attr.value not in existing:
            names.append(x509.RFC822Name(str(attr.value)))
    return names

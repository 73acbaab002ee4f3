"""Certificate signing request helpers.

Decoding CSRs out of a request spec on the controller side, and building a
keypair plus CSR on the client side.
"""

import re

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from certissuer.ca.crypto import CryptoError

CLIENT_CURVE = ec.SECP256R1()

_CSR_PEM_BLOCK = re.compile(
    rb"-----BEGIN (?:NEW )?CERTIFICATE REQUEST-----.+?-----END (?:NEW )?CERTIFICATE REQUEST-----",
    re.DOTALL,
)


class ProtocolError(Exception):
    """Raised when a request does not follow the certificate request protocol."""

    pass


def load_csrs(data: bytes) -> list[x509.CertificateSigningRequest]:
    """Parse every PEM CSR block in ``data``.

    Raises:
        CryptoError: If a block is not a well-formed CSR.
    """
    csrs = []
    for block in _CSR_PEM_BLOCK.findall(data or b""):
        try:
            csrs.append(x509.load_pem_x509_csr(block))
        except ValueError as e:
            raise CryptoError(f"Failed to parse CSR: {e}") from e
    return csrs


def load_single_csr(data: bytes) -> x509.CertificateSigningRequest:
    """Parse exactly one CSR from ``data``.

    Raises:
        ProtocolError: If there is no CSR or more than one.
        CryptoError: If the CSR is malformed.
    """
    if not data:
        raise ProtocolError("no certificate request in spec")
    csrs = load_csrs(data)
    if len(csrs) != 1:
        raise ProtocolError(f"spec must contain exactly one CSR, found {len(csrs)}")
    return csrs[0]


def require_elliptic_curve(csr: x509.CertificateSigningRequest) -> None:
    """Reject CSRs whose public key is not elliptic-curve.

    Raises:
        ProtocolError: If the key algorithm is not EC.
    """
    try:
        public_key = csr.public_key()
    except Exception as e:
        raise CryptoError(f"Failed to read CSR public key: {e}") from e

    if not isinstance(public_key, ec.EllipticCurvePublicKey):
        raise ProtocolError(
            f"Unsupported Key Type {type(public_key).__name__} (only ECDSA keys are supported)"
        )


def generate_private_key() -> ec.EllipticCurvePrivateKey:
    """Generate a client EC private key (P-256)."""
    return ec.generate_private_key(CLIENT_CURVE)


def build_csr(
    private_key: ec.EllipticCurvePrivateKey,
    common_name: str,
    email_addresses: list[str] | None = None,
    organization: str | None = None,
) -> x509.CertificateSigningRequest:
    """Build a CSR naming the requester, signed by ``private_key``."""
    attributes = [x509.NameAttribute(NameOID.COMMON_NAME, common_name)]
    if organization:
        attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))

    builder = x509.CertificateSigningRequestBuilder().subject_name(x509.Name(attributes))
    if email_addresses:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.RFC822Name(e) for e in email_addresses]),
            critical=False,
        )
    return builder.sign(private_key, hashes.SHA256())

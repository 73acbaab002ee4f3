from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from cryptography import x509
from sqlalchemy import DateTime, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from certissuer.ca.crypto import load_certificate
from certissuer.certificates.csr import load_single_csr
from certissuer.domain.states import CertificatePhase, StatusReason
from shared.database import Base

# Status messages written alongside each phase
MESSAGE_DEFAULTED = "No Status Phase was defined"
MESSAGE_UNPROCESSED = (
    "The request has not been processed by the controller yet. "
    "Submit a valid CSR in the spec to submit this CSR for processing."
)
MESSAGE_SUBMITTED = (
    "The request contains a certificate request. Submitting certificate request for processing."
)
MESSAGE_SIGNED = (
    "CSR has been processed and approved, and the Certificate has been signed and issued"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Snapshots (immutable values exchanged with the store)
# =============================================================================


@dataclass(frozen=True)
class CertificateRequestSpec:
    """Client-owned part of a certificate request."""

    request: bytes = b""  # PEM-encoded CSR


@dataclass(frozen=True)
class CertificateRequestStatus:
    """Controller-owned part of a certificate request.

    ``certificate``, ``token`` and ``ca`` are populated only in the Signed phase.
    ``phase`` is kept as a raw string because the store may hand back a missing
    or unrecognized value.
    """

    phase: str = ""
    reason: str = ""
    message: str = ""
    certificate: bytes = b""
    token: bytes = b""
    ca: bytes = b""


@dataclass(frozen=True)
class CertificateRequest:
    """One observed version of a cluster-wide certificate request resource."""

    name: str
    spec: CertificateRequestSpec = field(default_factory=CertificateRequestSpec)
    status: CertificateRequestStatus = field(default_factory=CertificateRequestStatus)
    resource_version: str = ""

    def with_status(self, status: CertificateRequestStatus) -> "CertificateRequest":
        """Return an owned copy carrying the given status."""
        return replace(self, status=status)

    def with_spec(self, spec: CertificateRequestSpec) -> "CertificateRequest":
        """Return an owned copy carrying the given spec."""
        return replace(self, spec=spec)

    def with_defaults(self) -> "CertificateRequest":
        """Apply creation defaults: an empty phase becomes Unknown/Unprocessed."""
        if self.status.phase:
            return self
        return self.with_status(
            replace(
                self.status,
                phase=CertificatePhase.UNKNOWN.value,
                reason=self.status.reason or StatusReason.UNPROCESSED.value,
                message=self.status.message or MESSAGE_DEFAULTED,
            )
        )

    def get_certificate_request(self) -> x509.CertificateSigningRequest:
        """Decode exactly one CSR from the spec.

        Raises:
            ProtocolError: If the spec holds zero or more than one CSR.
            CryptoError: If a CSR cannot be parsed.
        """
        return load_single_csr(self.spec.request)

    def get_certificate(self) -> x509.Certificate:
        """Parse the issued certificate from the status.

        Raises:
            CryptoError: If no certificate has been issued or it does not parse.
        """
        return load_certificate(self.status.certificate, what="certificate")

    def get_ca_certificate(self) -> x509.Certificate:
        """Parse the issuing CA certificate from the status.

        Raises:
            CryptoError: If no CA certificate is present or it does not parse.
        """
        return load_certificate(self.status.ca, what="CA certificate")


# =============================================================================
# Persistence rows
# =============================================================================


class CertificateRequestRecord(Base):
    __tablename__ = "certificate_requests"

    name: Mapped[str] = mapped_column(String(253), primary_key=True)
    resource_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    spec_request: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")

    phase: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    reason: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    certificate: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")
    token: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")
    ca: Mapped[bytes] = mapped_column(LargeBinary, nullable=False, default=b"")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    def to_snapshot(self) -> CertificateRequest:
        return CertificateRequest(
            name=self.name,
            spec=CertificateRequestSpec(request=self.spec_request or b""),
            status=CertificateRequestStatus(
                phase=self.phase or "",
                reason=self.reason or "",
                message=self.message or "",
                certificate=self.certificate or b"",
                token=self.token or b"",
                ca=self.ca or b"",
            ),
            resource_version=str(self.resource_version),
        )


class ResourceVersionCounter(Base):
    """Single-row counter that hands out table-wide resource versions.

    Versions never repeat, even when a name is deleted and created again.
    """

    __tablename__ = "resource_version_counter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class CASecretRecord(Base):
    """One persisted CA: certificate, encrypted key and key password."""

    __tablename__ = "ca_secrets"

    name: Mapped[str] = mapped_column(String(253), primary_key=True)
    ca_cert: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    ca_key: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    ca_pass: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

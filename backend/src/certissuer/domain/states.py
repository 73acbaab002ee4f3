from enum import StrEnum


class CertificatePhase(StrEnum):
    """All possible phases of a CertificateRequest."""

    UNKNOWN = "Unknown"
    SUBMITTED = "Submitted"
    SIGNED = "Signed"  # Terminal unless the spec changes
    REJECTED = "Rejected"  # Terminal unless the spec changes


class StatusReason(StrEnum):
    """Machine-readable cause codes accompanying a phase."""

    UNPROCESSED = "Unprocessed"
    SUBMITTED = "Submitted"
    PROCESSED_APPROVED_SIGNED_ISSUED = "ProcessedApprovedSignedIssued"
    PROCESSED_REJECTED = "ProcessedRejected"
    PROCESSED_REJECTED_INVALID_CSR = "ProcessedRejectedInvalidCSR"
    PROCESSED_REJECTED_INVALID_CERTS = "ProcessedRejectedInvalidCerts"


class ObservedEvent(StrEnum):
    """Notifications delivered by the watch/resync mechanism."""

    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


def parse_phase(value: str | None) -> CertificatePhase | None:
    """Map a raw status phase to a CertificatePhase, or None if missing/unrecognized."""
    if not value:
        return None
    try:
        return CertificatePhase(value)
    except ValueError:
        return None

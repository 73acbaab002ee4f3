"""Reconciliation state machine for certificate requests.

Given the event kind and the previous and current snapshots of one request,
``reconcile`` decides the next phase and status without performing any I/O.

Handler dispatch is keyed by (current phase, event):

    (Signed, ADDED)      -> validate CSR and embedded cert against embedded CA
    (Signed, UPDATED)    -> validate cert against the issuer's own CA
    (Rejected, ADDED)    -> no-op
    (Rejected, UPDATED)  -> Submitted if the spec was replaced
    (Unknown, ADDED)     -> Submitted if a spec is present
    (Unknown, UPDATED)   -> Submitted if the spec was replaced
    (Submitted, *)       -> process: validate, sign, issue token
    (missing, ADDED)     -> Submitted if a spec is present, else Unknown
    (missing, UPDATED)   -> Unknown (Unprocessed)

Signed and Rejected only move on when the spec is replaced or the issued
certificate stops validating.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from certissuer.ca.crypto import CryptoError, load_certificate
from certissuer.certificates.csr import ProtocolError, require_elliptic_curve
from certissuer.certificates.issuer import Issuer
from certissuer.domain.models import (
    MESSAGE_SIGNED,
    MESSAGE_SUBMITTED,
    MESSAGE_UNPROCESSED,
    CertificateRequest,
    CertificateRequestStatus,
)
from certissuer.domain.states import (
    CertificatePhase,
    ObservedEvent,
    StatusReason,
    parse_phase,
)

logger = logging.getLogger(__name__)

_REJECTING = f"changing phase to '{CertificatePhase.REJECTED}'"


@dataclass(frozen=True)
class Decision:
    """Outcome of reconciling one observed snapshot.

    ``status`` is the full status to write when ``write_required`` is set;
    otherwise it is the unchanged current status.
    """

    phase: CertificatePhase | None
    status: CertificateRequestStatus
    write_required: bool

    @classmethod
    def no_op(cls, request: CertificateRequest) -> "Decision":
        return cls(parse_phase(request.status.phase), request.status, False)

    @classmethod
    def submitted(cls) -> "Decision":
        return cls(
            CertificatePhase.SUBMITTED,
            CertificateRequestStatus(
                phase=CertificatePhase.SUBMITTED.value,
                reason=StatusReason.SUBMITTED.value,
                message=MESSAGE_SUBMITTED,
            ),
            True,
        )

    @classmethod
    def unknown(cls) -> "Decision":
        return cls(
            CertificatePhase.UNKNOWN,
            CertificateRequestStatus(
                phase=CertificatePhase.UNKNOWN.value,
                reason=StatusReason.UNPROCESSED.value,
                message=MESSAGE_UNPROCESSED,
            ),
            True,
        )

    @classmethod
    def rejected(cls, reason: StatusReason, message: str) -> "Decision":
        return cls(
            CertificatePhase.REJECTED,
            CertificateRequestStatus(
                phase=CertificatePhase.REJECTED.value,
                reason=reason.value,
                message=message,
            ),
            True,
        )

    @classmethod
    def signed(cls, certificate: bytes, ca: bytes, token: bytes) -> "Decision":
        return cls(
            CertificatePhase.SIGNED,
            CertificateRequestStatus(
                phase=CertificatePhase.SIGNED.value,
                reason=StatusReason.PROCESSED_APPROVED_SIGNED_ISSUED.value,
                message=MESSAGE_SIGNED,
                certificate=certificate,
                token=token,
                ca=ca,
            ),
            True,
        )


Handler = Callable[[CertificateRequest | None, CertificateRequest], Decision]


class CertificateRequestStateMachine:
    """Decides certificate request transitions with the help of an Issuer.

    The machine holds no per-request state and is safe to share between
    concurrent reconciliations.
    """

    def __init__(self, issuer: Issuer):
        self._issuer = issuer
        self.HANDLERS: dict[tuple[CertificatePhase | None, ObservedEvent], Handler] = {
            (CertificatePhase.SIGNED, ObservedEvent.ADDED): self._validate_added_signed,
            (CertificatePhase.SIGNED, ObservedEvent.UPDATED): self._validate_updated_signed,
            (CertificatePhase.REJECTED, ObservedEvent.ADDED): self._ignore,
            (CertificatePhase.REJECTED, ObservedEvent.UPDATED): self._submit_if_spec_replaced,
            (CertificatePhase.UNKNOWN, ObservedEvent.ADDED): self._submit_if_spec_present,
            (CertificatePhase.UNKNOWN, ObservedEvent.UPDATED): self._submit_if_spec_replaced,
            (CertificatePhase.SUBMITTED, ObservedEvent.ADDED): self._process,
            (CertificatePhase.SUBMITTED, ObservedEvent.UPDATED): self._process,
            (None, ObservedEvent.ADDED): self._default_added,
            (None, ObservedEvent.UPDATED): self._default_updated,
        }

    def reconcile(
        self,
        event: ObservedEvent,
        old: CertificateRequest | None,
        new: CertificateRequest,
    ) -> Decision:
        """Decide the next phase and status for ``new``.

        Args:
            event: ADDED or UPDATED. DELETED never changes status.
            old: Previously observed snapshot, required for UPDATED.
            new: Current snapshot.

        Returns:
            The decision. ``write_required`` is False for no-ops and for
            update events whose resource version did not change.

        Raises:
            ValueError: If an UPDATED event arrives without ``old``.
        """
        if event is ObservedEvent.DELETED:
            return Decision.no_op(new)

        if event is ObservedEvent.UPDATED:
            if old is None:
                raise ValueError("update events require the previously observed snapshot")
            if old.resource_version == new.resource_version:
                return Decision.no_op(new)

        phase = parse_phase(new.status.phase)
        handler = self.HANDLERS[(phase, event)]
        decision = handler(old, new)

        if decision.write_required:
            logger.debug(
                "certificate_request_decided",
                extra={
                    "request_name": new.name,
                    "resource_version": new.resource_version,
                    "event": event.value,
                    "from_phase": new.status.phase or "",
                    "to_phase": decision.status.phase,
                    "reason": decision.status.reason,
                },
            )
        return decision

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _ignore(self, old: CertificateRequest | None, new: CertificateRequest) -> Decision:
        return Decision.no_op(new)

    def _submit_if_spec_present(
        self, old: CertificateRequest | None, new: CertificateRequest
    ) -> Decision:
        if new.spec.request:
            return Decision.submitted()
        return Decision.no_op(new)

    def _submit_if_spec_replaced(
        self, old: CertificateRequest | None, new: CertificateRequest
    ) -> Decision:
        previous = old.spec.request if old is not None else b""
        if new.spec.request and new.spec.request != previous:
            return Decision.submitted()
        return Decision.no_op(new)

    def _default_added(self, old: CertificateRequest | None, new: CertificateRequest) -> Decision:
        if new.spec.request:
            return Decision.submitted()
        return Decision.unknown()

    def _default_updated(
        self, old: CertificateRequest | None, new: CertificateRequest
    ) -> Decision:
        logger.warning(
            "certificate_request_phase_unrecognized",
            extra={"request_name": new.name, "phase": new.status.phase},
        )
        return Decision.unknown()

    def _validate_added_signed(
        self, old: CertificateRequest | None, new: CertificateRequest
    ) -> Decision:
        """Check a request that arrived already Signed.

        The embedded CA is used as trust anchor, since it may not be the CA
        this issuer runs with.
        """
        invalid_csr = StatusReason.PROCESSED_REJECTED_INVALID_CSR
        invalid_certs = StatusReason.PROCESSED_REJECTED_INVALID_CERTS

        try:
            csr = new.get_certificate_request()
        except (ProtocolError, CryptoError) as e:
            return Decision.rejected(invalid_csr, f"{_REJECTING}: failed to get CSR: {e}")

        try:
            self._issuer.validate_request(csr)
        except CryptoError as e:
            return Decision.rejected(invalid_csr, f"{_REJECTING}: failed to validate CSR: {e}")

        try:
            cert = new.get_certificate()
        except CryptoError as e:
            return Decision.rejected(
                invalid_certs, f"{_REJECTING}: failed to get Certificate: {e}"
            )

        try:
            ca = new.get_ca_certificate()
        except CryptoError as e:
            return Decision.rejected(
                invalid_certs, f"{_REJECTING}: failed to get CA Certificate: {e}"
            )

        try:
            self._issuer.validate_cert(cert, ca)
        except CryptoError as e:
            return Decision.rejected(
                invalid_certs, f"{_REJECTING}: failed to validate signed certificate: {e}"
            )

        return Decision.no_op(new)

    def _validate_updated_signed(
        self, old: CertificateRequest | None, new: CertificateRequest
    ) -> Decision:
        invalid_certs = StatusReason.PROCESSED_REJECTED_INVALID_CERTS

        try:
            cert = new.get_certificate()
        except CryptoError as e:
            return Decision.rejected(
                invalid_certs, f"{_REJECTING}: failed to get Certificate: {e}"
            )

        try:
            self._issuer.validate_cert(cert)
        except CryptoError as e:
            return Decision.rejected(
                invalid_certs, f"{_REJECTING}: failed to validate signed certificate: {e}"
            )

        return Decision.no_op(new)

    def _process(self, old: CertificateRequest | None, new: CertificateRequest) -> Decision:
        """Validate, sign and issue a token for a Submitted request."""
        log_extra = {"request_name": new.name, "resource_version": new.resource_version}

        try:
            csr = new.get_certificate_request()
        except (ProtocolError, CryptoError) as e:
            logger.error("csr_load_failed", extra={**log_extra, "error": str(e)})
            return Decision.rejected(
                StatusReason.PROCESSED_REJECTED_INVALID_CSR, f"Error loading CSR: {e}"
            )

        try:
            self._issuer.validate_request(csr)
        except CryptoError as e:
            logger.error("csr_validation_failed", extra={**log_extra, "error": str(e)})
            return Decision.rejected(
                StatusReason.PROCESSED_REJECTED_INVALID_CSR, f"Failed to validate CSR: {e}"
            )

        try:
            require_elliptic_curve(csr)
        except (ProtocolError, CryptoError) as e:
            logger.error("csr_key_type_unsupported", extra={**log_extra, "error": str(e)})
            return Decision.rejected(
                StatusReason.PROCESSED_REJECTED_INVALID_CSR,
                "Unsupported Key Type (only ECDSA keys are supported)",
            )

        try:
            certificate = self._issuer.sign(csr)
        except CryptoError as e:
            logger.error("csr_signing_failed", extra={**log_extra, "error": str(e)})
            return Decision.rejected(
                StatusReason.PROCESSED_REJECTED, f"Failed to sign CSR: {e}"
            )

        try:
            cert = load_certificate(certificate)
        except CryptoError as e:
            logger.error("certificate_load_failed", extra={**log_extra, "error": str(e)})
            return Decision.rejected(
                StatusReason.PROCESSED_REJECTED, f"Error loading x509 Cert: {e}"
            )

        try:
            token = self._issuer.issue_token(cert)
        except CryptoError as e:
            logger.error("token_issue_failed", extra={**log_extra, "error": str(e)})
            return Decision.rejected(
                StatusReason.PROCESSED_REJECTED, f"Error Issuing compact PKI token: {e}"
            )

        logger.info("certificate_request_signed", extra=log_extra)
        return Decision.signed(certificate, self._issuer.get_ca_cert(), token)

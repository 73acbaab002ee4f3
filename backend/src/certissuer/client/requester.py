"""Client half of the certificate request protocol.

A requester generates its own key, submits a CSR under a fixed request name
and polls until the controller signs or rejects it, or a deadline passes. The
private key never leaves the requester.
"""

import asyncio
import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec
from opentelemetry import trace

from certissuer.ca.crypto import serialize_private_key
from certissuer.certificates.csr import build_csr, generate_private_key
from certissuer.domain.models import CertificateRequest, CertificateRequestSpec
from certissuer.domain.states import CertificatePhase
from certissuer.metrics import issuer_metrics
from certissuer.repository.store import CertificateRequestStore, NotFoundError, StoreError
from shared.config import settings

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


@dataclass(frozen=True)
class Issued:
    certificate: bytes
    ca: bytes
    token: bytes


@dataclass(frozen=True)
class Rejected:
    reason: str
    message: str


@dataclass(frozen=True)
class TimedOut:
    last_phase: str = ""


RequestOutcome = Issued | Rejected | TimedOut


class RequesterError(Exception):
    """Raised when the requester is used out of order."""

    pass


class CertificateRequester:
    """Requests a certificate for one name through a certificate request store."""

    def __init__(
        self,
        store: CertificateRequestStore,
        name: str,
        poll_interval: float | None = None,
    ):
        self._store = store
        self._name = name
        self._poll_interval = (
            poll_interval if poll_interval is not None else settings.CLIENT_POLL_INTERVAL_SECONDS
        )
        self._private_key: ec.EllipticCurvePrivateKey | None = None
        self._csr_pem: bytes | None = None
        self._outcome: RequestOutcome | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def csr_pem(self) -> bytes | None:
        return self._csr_pem

    @property
    def outcome(self) -> RequestOutcome | None:
        return self._outcome

    def generate_private_key(self) -> None:
        """Generate a fresh P-256 key, discarding any previous key and CSR."""
        self._private_key = generate_private_key()
        self._csr_pem = None

    def generate_csr(
        self, email_addresses: list[str] | None = None, organization: str | None = None
    ) -> bytes:
        """Build a CSR naming this requester.

        Raises:
            RequesterError: If no private key was generated.
        """
        if self._private_key is None:
            raise RequesterError("generate a private key before the CSR")
        csr = build_csr(
            self._private_key,
            common_name=self._name,
            email_addresses=email_addresses,
            organization=organization,
        )
        self._csr_pem = csr.public_bytes(serialization.Encoding.PEM)
        return self._csr_pem

    def get_key(self, password: str | None = None) -> bytes:
        """Return the private key as PEM, encrypted if ``password`` is given.

        Raises:
            RequesterError: If no private key was generated.
        """
        if self._private_key is None:
            raise RequesterError("no private key generated")
        return serialize_private_key(self._private_key, password)

    def get_certificate(self) -> bytes:
        """Return the issued certificate.

        Raises:
            RequesterError: If no certificate has been issued.
        """
        if not isinstance(self._outcome, Issued):
            raise RequesterError("certificate has not been issued")
        return self._outcome.certificate

    def is_issued(self) -> bool:
        return isinstance(self._outcome, Issued)

    async def send_and_wait(self, timeout: float) -> RequestOutcome:
        """Submit the CSR and wait for the controller's decision.

        Any prior request of the same name is deleted first.

        Args:
            timeout: Seconds to wait for a terminal phase.

        Returns:
            Issued, Rejected or TimedOut.

        Raises:
            RequesterError: If no CSR was generated.
            StoreError: If the request cannot be submitted.
        """
        if self._csr_pem is None:
            raise RequesterError("generate a CSR before sending it")

        with tracer.start_as_current_span("CertificateRequester.send_and_wait") as span:
            span.set_attribute("name", self._name)
            await self._submit(self._csr_pem)
            outcome = await self._wait(timeout)
            span.set_attribute("outcome", type(outcome).__name__)

        self._outcome = outcome
        issuer_metrics.record_client_outcome(_outcome_label(outcome))
        return outcome

    async def _submit(self, csr_pem: bytes) -> None:
        try:
            await self._store.delete(self._name)
            logger.info("certificate_request_replaced", extra={"request_name": self._name})
        except NotFoundError:
            pass

        await self._store.create(
            CertificateRequest(name=self._name, spec=CertificateRequestSpec(request=csr_pem))
        )
        logger.info("certificate_request_submitted", extra={"request_name": self._name})

    async def _wait(self, timeout: float) -> RequestOutcome:
        last_phase = ""
        try:
            async with asyncio.timeout(timeout):
                while True:
                    try:
                        request = await self._store.get(self._name)
                    except StoreError as e:
                        logger.warning(
                            "certificate_request_poll_failed",
                            extra={"request_name": self._name, "error": str(e)},
                        )
                    else:
                        last_phase = request.status.phase
                        if last_phase == CertificatePhase.SIGNED:
                            return Issued(
                                certificate=request.status.certificate,
                                ca=request.status.ca,
                                token=request.status.token,
                            )
                        if last_phase == CertificatePhase.REJECTED:
                            logger.warning(
                                "certificate_request_rejected",
                                extra={
                                    "request_name": self._name,
                                    "reason": request.status.reason,
                                    "status_message": request.status.message,
                                },
                            )
                            return Rejected(
                                reason=request.status.reason, message=request.status.message
                            )
                    await asyncio.sleep(self._poll_interval)
        except TimeoutError:
            logger.warning(
                "certificate_request_timed_out",
                extra={"request_name": self._name, "timeout_seconds": timeout, "phase": last_phase},
            )
            return TimedOut(last_phase=last_phase)


def _outcome_label(outcome: RequestOutcome) -> str:
    if isinstance(outcome, Issued):
        return "issued"
    if isinstance(outcome, Rejected):
        return "rejected"
    return "timed_out"

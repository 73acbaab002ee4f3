"""Certificate request controller.

Adapts add/update/delete notifications to the reconciliation state machine and
performs at most one full-object write per decision. Write failures are
logged and left to the next delivery of the same object.
"""

import logging
from typing import Any

from opentelemetry import trace

from certissuer.certificates.issuer import Issuer
from certissuer.domain.models import CertificateRequest
from certissuer.domain.state_machine import CertificateRequestStateMachine, Decision
from certissuer.domain.states import ObservedEvent
from certissuer.metrics import issuer_metrics
from certissuer.repository.store import CertificateRequestStore, StoreError

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TransientUpdateError(Exception):
    """Raised when a status write to the store fails."""

    def __init__(self, name: str, resource_version: str, cause: Exception):
        self.name = name
        self.resource_version = resource_version
        self.cause = cause
        super().__init__(
            f"Failed to update certificate request {name} "
            f"(resource version {resource_version}): {cause}"
        )


class CertificateController:
    """Issues certificates for certificate requests observed in a store."""

    def __init__(self, store: CertificateRequestStore, issuer: Issuer):
        self._store = store
        self._state_machine = CertificateRequestStateMachine(issuer)

    async def on_add(self, obj: Any) -> None:
        request = self._expect_request(obj, ObservedEvent.ADDED)
        if request is None:
            return

        issuer_metrics.record_event_observed(ObservedEvent.ADDED.value)
        logger.debug(
            "certificate_request_added",
            extra={
                "request_name": request.name,
                "resource_version": request.resource_version,
                "phase": request.status.phase,
            },
        )
        await self._reconcile(ObservedEvent.ADDED, None, request)

    async def on_update(self, old_obj: Any, new_obj: Any) -> None:
        request = self._expect_request(new_obj, ObservedEvent.UPDATED)
        if request is None:
            return
        old_request = self._expect_request(old_obj, ObservedEvent.UPDATED)
        if old_request is None:
            return

        issuer_metrics.record_event_observed(ObservedEvent.UPDATED.value)

        # Periodic resync replays the cached object with the same version
        if request.resource_version == old_request.resource_version:
            issuer_metrics.record_event_discarded()
            return

        logger.debug(
            "certificate_request_updated",
            extra={
                "request_name": request.name,
                "resource_version": request.resource_version,
                "phase": request.status.phase,
            },
        )
        await self._reconcile(ObservedEvent.UPDATED, old_request, request)

    async def on_delete(self, obj: Any) -> None:
        request = self._expect_request(obj, ObservedEvent.DELETED)
        if request is None:
            return

        issuer_metrics.record_event_observed(ObservedEvent.DELETED.value)
        logger.debug(
            "certificate_request_deleted",
            extra={"request_name": request.name, "resource_version": request.resource_version},
        )

    async def _reconcile(
        self,
        event: ObservedEvent,
        old: CertificateRequest | None,
        new: CertificateRequest,
    ) -> None:
        with tracer.start_as_current_span("CertificateController.reconcile") as span:
            span.set_attribute("name", new.name)
            span.set_attribute("event", event.value)

            decision = self._state_machine.reconcile(event, old, new)
            if not decision.write_required:
                return

            span.set_attribute("to_phase", decision.status.phase)
            try:
                await self._write_status(new, decision)
            except TransientUpdateError as e:
                issuer_metrics.record_status_update_failed()
                logger.error(
                    "certificate_request_update_failed",
                    extra={
                        "request_name": e.name,
                        "resource_version": e.resource_version,
                        "error": str(e.cause),
                    },
                )

    async def _write_status(self, request: CertificateRequest, decision: Decision) -> None:
        """Write the decided status as a full-object update.

        Raises:
            TransientUpdateError: If the store rejects the write.
        """
        updated = request.with_status(decision.status)
        try:
            await self._store.update(updated)
        except StoreError as e:
            raise TransientUpdateError(request.name, request.resource_version, e) from e

        issuer_metrics.record_transition(
            request.status.phase, decision.status.phase, decision.status.reason
        )
        logger.info(
            "certificate_request_phase_changed",
            extra={
                "request_name": request.name,
                "from_phase": request.status.phase,
                "to_phase": decision.status.phase,
                "reason": decision.status.reason,
            },
        )

    def _expect_request(self, obj: Any, event: ObservedEvent) -> CertificateRequest | None:
        if isinstance(obj, CertificateRequest):
            return obj
        issuer_metrics.record_event_dropped(event.value)
        logger.error(
            "unexpected_object_type",
            extra={"event": event.value, "type": type(obj).__name__},
        )
        return None

"""OpenTelemetry metrics for the certificate issuer."""

from collections.abc import Iterator

from opentelemetry import metrics

meter = metrics.get_meter("certissuer")

# ============================================================================
# Controller
# ============================================================================

events_observed_total = meter.create_counter(
    name="certissuer_events_observed_total",
    description="Total certificate request events observed",
    unit="1",
)

events_discarded_total = meter.create_counter(
    name="certissuer_events_discarded_total",
    description="Update events discarded because the resource version did not change",
    unit="1",
)

events_dropped_total = meter.create_counter(
    name="certissuer_events_dropped_total",
    description="Events dropped because the payload was not a certificate request",
    unit="1",
)

phase_transitions_total = meter.create_counter(
    name="certissuer_phase_transitions_total",
    description="Total certificate request phase transitions written",
    unit="1",
)

status_updates_failed_total = meter.create_counter(
    name="certissuer_status_updates_failed_total",
    description="Total status writes that failed and were left to redelivery",
    unit="1",
)

requests_rejected_total = meter.create_counter(
    name="certissuer_requests_rejected_total",
    description="Total certificate requests rejected",
    unit="1",
)

# ============================================================================
# Issuer
# ============================================================================

certificates_signed_total = meter.create_counter(
    name="certissuer_certificates_signed_total",
    description="Total certificates signed by the CA",
    unit="1",
)

certificate_signing_duration = meter.create_histogram(
    name="certissuer_certificate_signing_duration_seconds",
    description="Certificate signing duration in seconds",
    unit="s",
)

tokens_issued_total = meter.create_counter(
    name="certissuer_tokens_issued_total",
    description="Total access tokens issued",
    unit="1",
)

certificate_validations_total = meter.create_counter(
    name="certissuer_certificate_validations_total",
    description="Total CSR and certificate validations",
    unit="1",
)

# ============================================================================
# Client
# ============================================================================

client_outcomes_total = meter.create_counter(
    name="certissuer_client_outcomes_total",
    description="Total client certificate request outcomes",
    unit="1",
)

# CA loaded gauge - track where the CA came from
_ca_source: str | None = None


def _get_ca_loaded(
    options: metrics.CallbackOptions,
) -> Iterator[metrics.Observation]:
    """Callback to report CA loaded status."""
    if _ca_source:
        yield metrics.Observation(1, {"source": _ca_source})
    else:
        yield metrics.Observation(0, {"source": "none"})


ca_loaded_gauge = meter.create_observable_gauge(
    name="certissuer_ca_loaded",
    description="CA loaded (1=yes, 0=no)",
    unit="1",
    callbacks=[_get_ca_loaded],
)


class IssuerMetrics:
    """Facade for certificate issuer metrics with proper labels."""

    def record_event_observed(self, event: str) -> None:
        """Record an observed event. Labels: event=added|updated|deleted"""
        events_observed_total.add(1, {"event": event})

    def record_event_discarded(self) -> None:
        """Record a resync replay discarded without a write."""
        events_discarded_total.add(1)

    def record_event_dropped(self, event: str) -> None:
        """Record a malformed event payload."""
        events_dropped_total.add(1, {"event": event})

    def record_transition(self, from_phase: str, to_phase: str, reason: str) -> None:
        """Record a written phase transition."""
        phase_transitions_total.add(
            1, {"from_phase": from_phase or "none", "to_phase": to_phase, "reason": reason}
        )
        if to_phase == "Rejected":
            requests_rejected_total.add(1, {"reason": reason})

    def record_status_update_failed(self) -> None:
        """Record a failed status write."""
        status_updates_failed_total.add(1)

    def record_certificate_signed(self, duration_seconds: float) -> None:
        """Record a signed certificate with duration."""
        certificates_signed_total.add(1)
        certificate_signing_duration.record(duration_seconds)

    def record_token_issued(self) -> None:
        """Record an issued token."""
        tokens_issued_total.add(1)

    def record_validation(self, kind: str, result: str) -> None:
        """Record a validation. Labels: kind=csr|certificate, result=valid|invalid"""
        certificate_validations_total.add(1, {"kind": kind, "result": result})

    def record_client_outcome(self, outcome: str) -> None:
        """Record a client outcome. Labels: outcome=issued|rejected|timed_out"""
        client_outcomes_total.add(1, {"outcome": outcome})

    def record_ca_loaded(self, source: str) -> None:
        """Record CA loaded with source: generated|files|persistor."""
        global _ca_source
        _ca_source = source

    def record_ca_unloaded(self) -> None:
        """Record that no CA is loaded."""
        global _ca_source
        _ca_source = None


# Singleton instance
issuer_metrics = IssuerMetrics()

"""Tests for the client-side CertificateRequester."""

from unittest.mock import patch

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from certissuer.ca.crypto import load_certificate
from certissuer.certificates.tokens import verify_token
from certissuer.client.requester import (
    CertificateRequester,
    Issued,
    Rejected,
    RequesterError,
    TimedOut,
)
from certissuer.controller.controller import CertificateController
from certissuer.controller.informer import Informer
from certissuer.domain.models import (
    CertificateRequest,
    CertificateRequestSpec,
    CertificateRequestStatus,
)
from certissuer.domain.states import StatusReason


@pytest.fixture
def requester(store) -> CertificateRequester:
    return CertificateRequester(store, "client-7", poll_interval=0.01)


class TestRequesterKeys:
    """Tests for key and CSR generation."""

    def test_csr_requires_key(self, requester):
        with pytest.raises(RequesterError):
            requester.generate_csr()

    def test_csr_names_requester(self, requester):
        requester.generate_private_key()

        csr = x509.load_pem_x509_csr(requester.generate_csr(email_addresses=["c7@example.com"]))

        assert csr.subject.get_attributes_for_oid(x509.NameOID.COMMON_NAME)[0].value == (
            "client-7"
        )
        assert csr.is_signature_valid

    def test_get_key_encrypted(self, requester):
        requester.generate_private_key()

        pem = requester.get_key("pw")

        assert b"ENCRYPTED PRIVATE KEY" in pem
        serialization.load_pem_private_key(pem, password=b"pw")

    def test_get_certificate_before_issue_raises(self, requester):
        with pytest.raises(RequesterError):
            requester.get_certificate()

    @pytest.mark.asyncio
    async def test_send_requires_csr(self, requester):
        with pytest.raises(RequesterError):
            await requester.send_and_wait(timeout=1)


class TestRequesterOutcomes:
    """Tests for send_and_wait outcomes."""

    @pytest.mark.asyncio
    async def test_issued_with_running_controller(self, requester, store, issuer, ca):
        """Test the full protocol against a controller driven by the informer."""
        informer = Informer(store, CertificateController(store, issuer), 0.01)
        requester.generate_private_key()
        requester.generate_csr()

        await informer.start()
        try:
            outcome = await requester.send_and_wait(timeout=5)
        finally:
            await informer.stop()

        assert isinstance(outcome, Issued)
        assert outcome.ca == ca.cert
        assert requester.is_issued()
        cert = load_certificate(requester.get_certificate())
        assert cert.public_key() == x509.load_pem_x509_csr(requester.csr_pem).public_key()
        assert verify_token(outcome.token, outcome.ca)["sub"] == cert.subject.rfc4514_string()

    @pytest.mark.asyncio
    async def test_replaces_prior_request(self, requester, store):
        """Test a same-named request is deleted before the new one is created."""
        store.put(
            CertificateRequest(
                name="client-7",
                spec=CertificateRequestSpec(request=b"old"),
                status=CertificateRequestStatus(
                    phase="Rejected", reason=StatusReason.PROCESSED_REJECTED.value
                ),
            )
        )
        requester.generate_private_key()
        csr_pem = requester.generate_csr()

        outcome = await requester.send_and_wait(timeout=0.05)

        assert isinstance(outcome, TimedOut)
        assert outcome.last_phase == "Unknown"
        assert (await store.get("client-7")).spec.request == csr_pem

    @pytest.mark.asyncio
    async def test_rejected_surfaces_reason_and_message(self, requester, store):
        requester.generate_private_key()
        requester.generate_csr()

        async def reject_on_create(request):
            created = store.put(
                request.with_status(
                    CertificateRequestStatus(
                        phase="Rejected",
                        reason=StatusReason.PROCESSED_REJECTED_INVALID_CSR.value,
                        message="Failed to validate CSR: bad",
                    )
                )
            )
            return created

        with patch.object(store, "create", side_effect=reject_on_create):
            outcome = await requester.send_and_wait(timeout=1)

        assert outcome == Rejected(
            reason=StatusReason.PROCESSED_REJECTED_INVALID_CSR.value,
            message="Failed to validate CSR: bad",
        )
        assert requester.is_issued() is False

    @pytest.mark.asyncio
    async def test_timeout_without_controller(self, requester):
        requester.generate_private_key()
        requester.generate_csr()

        with patch("certissuer.client.requester.issuer_metrics") as mock_metrics:
            outcome = await requester.send_and_wait(timeout=0.05)

        assert isinstance(outcome, TimedOut)
        mock_metrics.record_client_outcome.assert_called_once_with("timed_out")

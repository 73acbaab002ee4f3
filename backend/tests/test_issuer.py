"""Tests for CSR handling, certificate signing and token issuance."""

from datetime import timedelta
from unittest.mock import patch

import pytest
from conftest import make_csr_pem, make_rsa_csr_pem, tamper_csr_pem
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from certissuer.ca.crypto import CryptoError, load_certificate
from certissuer.certificates.csr import (
    ProtocolError,
    load_csrs,
    load_single_csr,
    require_elliptic_curve,
)
from certissuer.certificates.issuer import Issuer
from certissuer.certificates.tokens import algorithm_for, verify_token


class TestCSRLoading:
    """Tests for decoding CSRs from a request spec."""

    def test_load_single_csr(self):
        csr = load_single_csr(make_csr_pem("alice"))

        assert csr.subject.get_attributes_for_oid(NameOID.COMMON_NAME)[0].value == "alice"

    def test_load_single_csr_empty_raises(self):
        with pytest.raises(ProtocolError, match="no certificate request"):
            load_single_csr(b"")

    def test_load_single_csr_two_csrs_raises(self):
        """Test that a spec carrying more than one CSR is refused."""
        data = make_csr_pem("a") + b"\n" + make_csr_pem("b")

        assert len(load_csrs(data)) == 2
        with pytest.raises(ProtocolError, match="exactly one CSR, found 2"):
            load_single_csr(data)

    def test_load_single_csr_no_pem_block_raises(self):
        with pytest.raises(ProtocolError, match="found 0"):
            load_single_csr(b"hello world")

    def test_load_corrupt_csr_raises_crypto_error(self):
        corrupt = (
            b"-----BEGIN CERTIFICATE REQUEST-----\nAAAA\n-----END CERTIFICATE REQUEST-----\n"
        )

        with pytest.raises(CryptoError):
            load_single_csr(corrupt)

    def test_require_elliptic_curve_rejects_rsa(self):
        csr = load_single_csr(make_rsa_csr_pem())

        with pytest.raises(ProtocolError, match="only ECDSA keys are supported"):
            require_elliptic_curve(csr)

    def test_require_elliptic_curve_accepts_ec(self):
        require_elliptic_curve(load_single_csr(make_csr_pem()))


class TestIssuerValidation:
    """Tests for CSR and certificate validation."""

    def test_validate_request_accepts_valid_signature(self, issuer):
        issuer.validate_request(load_single_csr(make_csr_pem()))

    def test_validate_request_rejects_tampered_signature(self, issuer):
        """Test a CSR whose signature was altered fails validation."""
        csr = load_single_csr(tamper_csr_pem(make_csr_pem()))

        with pytest.raises(CryptoError, match="signature is invalid"):
            issuer.validate_request(csr)

    def test_validate_request_records_metric(self, issuer):
        with patch("certissuer.certificates.issuer.issuer_metrics") as mock_metrics:
            issuer.validate_request(load_single_csr(make_csr_pem()))

        mock_metrics.record_validation.assert_called_once_with("csr", "valid")

    def test_validate_cert_against_own_ca(self, issuer):
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))

        issuer.validate_cert(cert)

    def test_validate_cert_against_embedded_ca(self, issuer, ca):
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))

        issuer.validate_cert(cert, load_certificate(ca.cert))

    def test_validate_cert_signed_by_other_ca_raises(self, issuer, other_ca):
        """Test a certificate from another CA fails against this issuer's anchor."""
        other_issuer = Issuer.from_authority(other_ca)
        cert = load_certificate(other_issuer.sign(load_single_csr(make_csr_pem())))

        with pytest.raises(CryptoError, match="not signed by"):
            issuer.validate_cert(cert)

    def test_validate_cert_wrong_embedded_ca_raises(self, issuer, other_ca):
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))

        with pytest.raises(CryptoError):
            issuer.validate_cert(cert, load_certificate(other_ca.cert))

    def test_validate_cert_rejects_leaf_as_anchor(self, issuer):
        """Test a non-CA certificate is never accepted as trust anchor."""
        leaf = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))
        other = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))

        with pytest.raises(CryptoError):
            issuer.validate_cert(other, leaf)


class TestIssuerSigning:
    """Tests for Issuer.sign."""

    def test_sign_copies_subject_and_sets_usages(self, issuer, ca):
        """Test the issued certificate carries the requested identity and usages."""
        csr = load_single_csr(make_csr_pem("svc-a", emails=["svc-a@example.com"]))

        pem = issuer.sign(csr)
        cert = load_certificate(pem)

        assert pem == pem.strip()
        assert cert.subject == csr.subject
        assert cert.issuer == load_certificate(ca.cert).subject
        assert cert.public_key() == csr.public_key()

        usage = cert.extensions.get_extension_for_class(x509.KeyUsage).value
        assert usage.digital_signature is True
        assert usage.key_encipherment is True
        assert usage.key_cert_sign is False

        eku = cert.extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        assert ExtendedKeyUsageOID.CLIENT_AUTH in eku
        assert ExtendedKeyUsageOID.SERVER_AUTH in eku

        basic = cert.extensions.get_extension_for_class(x509.BasicConstraints).value
        assert basic.ca is False

        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
        assert san.get_values_for_type(x509.RFC822Name) == ["svc-a@example.com"]

    def test_sign_validity_one_year(self, issuer):
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))

        assert cert.not_valid_after_utc - cert.not_valid_before_utc == timedelta(days=365)

    def test_sign_without_emails_has_no_san(self, issuer):
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))

        with pytest.raises(x509.ExtensionNotFound):
            cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)

    def test_sign_serials_are_random(self, issuer):
        csr = load_single_csr(make_csr_pem())

        serials = {load_certificate(issuer.sign(csr)).serial_number for _ in range(5)}

        assert len(serials) == 5
        assert all(serial > 0 for serial in serials)

    def test_sign_records_metric(self, issuer):
        with patch("certissuer.certificates.issuer.issuer_metrics") as mock_metrics:
            issuer.sign(load_single_csr(make_csr_pem()))

        mock_metrics.record_certificate_signed.assert_called_once()

    def test_get_ca_cert_returns_ca_pem(self, issuer, ca):
        assert issuer.get_ca_cert() == ca.cert

    def test_issuer_rejects_rsa_signing_key(self, ca):
        cert = load_certificate(ca.cert)
        rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

        with pytest.raises(CryptoError, match="elliptic-curve"):
            Issuer(ca.cert, cert, rsa_key)  # type: ignore[arg-type]

    def test_from_paths(self, ca, tmp_path):
        (tmp_path / "ca.pem").write_bytes(ca.cert)
        (tmp_path / "ca.key").write_bytes(ca.key)

        issuer = Issuer.from_paths(
            str(tmp_path / "ca.pem"), str(tmp_path / "ca.key"), ca.password
        )

        assert issuer.get_ca_cert() == ca.cert


class TestTokens:
    """Tests for tokens bound to issued certificates."""

    def test_issue_and_verify_token(self, issuer, ca):
        """Test a token verifies against the CA and names the certificate."""
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem("token-client"))))

        token = issuer.issue_token(cert)
        claims = verify_token(token, ca.cert)

        assert isinstance(token, bytes)
        assert claims["sub"] == cert.subject.rfc4514_string()
        assert claims["serial"] == format(cert.serial_number, "x")
        assert claims["iss"] == load_certificate(ca.cert).subject.rfc4514_string()
        assert claims["exp"] == int(cert.not_valid_after_utc.timestamp())

    def test_token_fails_against_other_ca(self, issuer, other_ca):
        cert = load_certificate(issuer.sign(load_single_csr(make_csr_pem())))
        token = issuer.issue_token(cert)

        with pytest.raises(CryptoError, match="Invalid token"):
            verify_token(token, other_ca.cert)

    def test_algorithm_matches_ca_curve(self, ca):
        _, key = ca.load()

        assert algorithm_for(key) == "ES384"

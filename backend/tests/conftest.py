"""Shared fixtures and fakes for certificate issuer tests."""

from dataclasses import replace

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from certissuer.ca.authority import CertificateAuthority
from certissuer.ca.persistor import CAPersistor, PersistenceError
from certissuer.certificates.csr import build_csr, generate_private_key
from certissuer.certificates.issuer import Issuer
from certissuer.domain.models import CertificateRequest
from certissuer.repository.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)

# =============================================================================
# CSR helpers
# =============================================================================


def make_csr_pem(common_name: str = "client-1", emails: list[str] | None = None) -> bytes:
    """Build a valid P-256 CSR as PEM."""
    csr = build_csr(generate_private_key(), common_name, email_addresses=emails)
    return csr.public_bytes(serialization.Encoding.PEM)


def make_rsa_csr_pem(common_name: str = "rsa-client") -> bytes:
    """Build a valid CSR on an RSA key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]))
        .sign(key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.PEM)


def tamper_csr_pem(csr_pem: bytes) -> bytes:
    """Flip the last byte of the CSR signature so it no longer verifies."""
    der = bytearray(x509.load_pem_x509_csr(csr_pem).public_bytes(serialization.Encoding.DER))
    der[-1] ^= 0x01
    return x509.load_der_x509_csr(bytes(der)).public_bytes(serialization.Encoding.PEM)


# =============================================================================
# Fakes
# =============================================================================


class RecordingStore:
    """In-memory certificate request store that records every update call."""

    def __init__(self) -> None:
        self.objects: dict[str, CertificateRequest] = {}
        self.updates: list[CertificateRequest] = []
        self.fail_updates = False
        self.fail_list = False
        self._version = 0

    def _next_version(self) -> str:
        self._version += 1
        return str(self._version)

    def put(self, request: CertificateRequest) -> CertificateRequest:
        """Insert a request as-is (no defaulting), assigning a fresh version."""
        stored = replace(request, resource_version=self._next_version())
        self.objects[stored.name] = stored
        return stored

    async def create(self, request: CertificateRequest) -> CertificateRequest:
        if request.name in self.objects:
            raise AlreadyExistsError(f"certificate request {request.name} already exists")
        return self.put(request.with_defaults())

    async def get(self, name: str) -> CertificateRequest:
        try:
            return self.objects[name]
        except KeyError:
            raise NotFoundError(f"certificate request {name} not found") from None

    async def list(self) -> list[CertificateRequest]:
        if self.fail_list:
            raise StoreError("list failed")
        return list(self.objects.values())

    async def update(self, request: CertificateRequest) -> CertificateRequest:
        self.updates.append(request)
        if self.fail_updates:
            raise StoreError("update failed")
        current = await self.get(request.name)
        if current.resource_version != request.resource_version:
            raise ConflictError(f"certificate request {request.name} was modified")
        return self.put(request)

    async def delete(self, name: str) -> None:
        if self.objects.pop(name, None) is None:
            raise NotFoundError(f"certificate request {name} not found")


class InMemoryPersistor(CAPersistor):
    """CA persistor holding at most one CA in memory."""

    def __init__(self) -> None:
        self.ca: CertificateAuthority | None = None

    async def store(self, ca: CertificateAuthority) -> None:
        if self.ca is not None:
            raise PersistenceError("CA already stored")
        self.ca = ca.copy()

    async def load(self) -> CertificateAuthority:
        if self.ca is None:
            raise PersistenceError("no CA stored")
        return self.ca.copy()

    async def delete(self) -> None:
        if self.ca is None:
            raise PersistenceError("no CA stored")
        self.ca = None

    async def overwrite(self, ca: CertificateAuthority) -> None:
        if self.ca is None:
            raise PersistenceError("no CA stored")
        self.ca = ca.copy()

    async def exists(self) -> bool:
        return self.ca is not None


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def ca() -> CertificateAuthority:
    return CertificateAuthority.generate()


@pytest.fixture(scope="session")
def other_ca() -> CertificateAuthority:
    return CertificateAuthority.generate()


@pytest.fixture(scope="session")
def issuer(ca: CertificateAuthority) -> Issuer:
    return Issuer.from_authority(ca)


@pytest.fixture
def csr_pem() -> bytes:
    return make_csr_pem()


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def persistor() -> InMemoryPersistor:
    return InMemoryPersistor()

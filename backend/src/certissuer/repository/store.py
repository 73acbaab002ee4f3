"""Declarative store contract for certificate request resources."""

from typing import Protocol

from certissuer.domain.models import CertificateRequest


class StoreError(Exception):
    """Raised when a store operation fails."""

    pass


class NotFoundError(StoreError):
    """Raised when a named resource does not exist."""

    pass


class AlreadyExistsError(StoreError):
    """Raised when creating a resource whose name is taken."""

    pass


class ConflictError(StoreError):
    """Raised when an update carries a stale resource version."""

    pass


class CertificateRequestStore(Protocol):
    """Cluster-wide store of certificate requests with optimistic concurrency.

    Every successful write returns the stored object with a new
    ``resource_version``. ``update`` replaces the whole object (spec and
    status) and fails with ConflictError unless the given version is current.
    """

    async def create(self, request: CertificateRequest) -> CertificateRequest: ...

    async def get(self, name: str) -> CertificateRequest: ...

    async def list(self) -> list[CertificateRequest]: ...

    async def update(self, request: CertificateRequest) -> CertificateRequest: ...

    async def delete(self, name: str) -> None: ...

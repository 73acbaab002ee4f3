"""Repository layer for certificate request and CA secret data access."""

import logging
from dataclasses import replace

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certissuer.domain.models import (
    CASecretRecord,
    CertificateRequest,
    CertificateRequestRecord,
    ResourceVersionCounter,
)
from certissuer.repository.store import (
    AlreadyExistsError,
    ConflictError,
    NotFoundError,
    StoreError,
)

logger = logging.getLogger(__name__)


class CertificateRequestRepository:
    """Repository for CertificateRequestRecord CRUD with version checks."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, name: str) -> CertificateRequestRecord | None:
        """Get a request by name."""
        result = await self.db.execute(
            select(CertificateRequestRecord).where(CertificateRequestRecord.name == name)
        )
        return result.scalar_one_or_none()

    async def list_all(self) -> list[CertificateRequestRecord]:
        """List all requests ordered by name."""
        result = await self.db.execute(
            select(CertificateRequestRecord).order_by(CertificateRequestRecord.name)
        )
        return list(result.scalars().all())

    async def create(self, record: CertificateRequestRecord) -> CertificateRequestRecord:
        """Create a new request record."""
        self.db.add(record)
        await self.db.flush()
        return record

    async def next_version(self) -> int:
        """Allocate the next table-wide resource version.

        The counter row is locked until the surrounding transaction ends, so
        concurrent writers never share a version.
        """
        counter = await self.db.get(ResourceVersionCounter, 1, with_for_update=True)
        if counter is None:
            counter = ResourceVersionCounter(id=1, value=0)
            self.db.add(counter)
        counter.value += 1
        await self.db.flush()
        return counter.value

    async def replace(
        self, request: CertificateRequest, expected_version: int, new_version: int
    ) -> bool:
        """Replace spec and status if the stored version equals expected_version.

        Returns:
            True if a row was updated, False on version mismatch or missing row.
        """
        result = await self.db.execute(
            update(CertificateRequestRecord)
            .where(CertificateRequestRecord.name == request.name)
            .where(CertificateRequestRecord.resource_version == expected_version)
            .values(
                resource_version=new_version,
                spec_request=request.spec.request,
                phase=request.status.phase,
                reason=request.status.reason,
                message=request.status.message,
                certificate=request.status.certificate,
                token=request.status.token,
                ca=request.status.ca,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, name: str) -> bool:
        """Delete a request by name. Returns True if a row was removed."""
        result = await self.db.execute(
            delete(CertificateRequestRecord).where(CertificateRequestRecord.name == name)
        )
        return result.rowcount == 1


class CASecretRepository:
    """Repository for CASecretRecord rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, name: str) -> CASecretRecord | None:
        """Get a CA secret by name."""
        result = await self.db.execute(select(CASecretRecord).where(CASecretRecord.name == name))
        return result.scalar_one_or_none()

    async def create(self, record: CASecretRecord) -> CASecretRecord:
        """Create a new CA secret."""
        self.db.add(record)
        await self.db.flush()
        return record

    async def update(self, record: CASecretRecord) -> CASecretRecord:
        """Flush changes to an existing CA secret."""
        await self.db.flush()
        return record

    async def delete(self, name: str) -> bool:
        """Delete a CA secret by name. Returns True if a row was removed."""
        result = await self.db.execute(delete(CASecretRecord).where(CASecretRecord.name == name))
        return result.rowcount == 1


class SqlCertificateRequestStore:
    """CertificateRequestStore backed by the certificate_requests table.

    Each operation runs in its own session and commits on success. Database
    failures surface as StoreError so callers can retry on the next delivery.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, request: CertificateRequest) -> CertificateRequest:
        request = request.with_defaults()
        try:
            async with self._session_factory() as db:
                repo = CertificateRequestRepository(db)
                if await repo.get(request.name) is not None:
                    raise AlreadyExistsError(
                        f"certificate request '{request.name}' already exists"
                    )
                record = CertificateRequestRecord(
                    name=request.name,
                    resource_version=await repo.next_version(),
                    spec_request=request.spec.request,
                    phase=request.status.phase,
                    reason=request.status.reason,
                    message=request.status.message,
                    certificate=request.status.certificate,
                    token=request.status.token,
                    ca=request.status.ca,
                )
                try:
                    await repo.create(record)
                except IntegrityError as e:
                    await db.rollback()
                    raise AlreadyExistsError(
                        f"certificate request '{request.name}' already exists"
                    ) from e
                snapshot = record.to_snapshot()
                await db.commit()
        except StoreError:
            raise
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to create certificate request '{request.name}': {e}") from e

        logger.debug(
            "certificate_request_created",
            extra={"request_name": snapshot.name, "resource_version": snapshot.resource_version},
        )
        return snapshot

    async def get(self, name: str) -> CertificateRequest:
        try:
            async with self._session_factory() as db:
                record = await CertificateRequestRepository(db).get(name)
                snapshot = record.to_snapshot() if record is not None else None
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to get certificate request '{name}': {e}") from e

        if snapshot is None:
            raise NotFoundError(f"certificate request '{name}' not found")
        return snapshot

    async def list(self) -> list[CertificateRequest]:
        try:
            async with self._session_factory() as db:
                records = await CertificateRequestRepository(db).list_all()
                return [record.to_snapshot() for record in records]
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to list certificate requests: {e}") from e

    async def update(self, request: CertificateRequest) -> CertificateRequest:
        try:
            expected_version = int(request.resource_version)
        except ValueError as e:
            raise ConflictError(
                f"invalid resource version '{request.resource_version}' for '{request.name}'"
            ) from e

        try:
            async with self._session_factory() as db:
                repo = CertificateRequestRepository(db)
                new_version = await repo.next_version()
                if not await repo.replace(request, expected_version, new_version):
                    await db.rollback()
                    if await repo.get(request.name) is None:
                        raise NotFoundError(f"certificate request '{request.name}' not found")
                    raise ConflictError(
                        f"certificate request '{request.name}' was modified "
                        f"(resource version {request.resource_version} is stale)"
                    )
                await db.commit()
        except StoreError:
            raise
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to update certificate request '{request.name}': {e}") from e

        return replace(request, resource_version=str(new_version))

    async def delete(self, name: str) -> None:
        try:
            async with self._session_factory() as db:
                deleted = await CertificateRequestRepository(db).delete(name)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to delete certificate request '{name}': {e}") from e

        if not deleted:
            raise NotFoundError(f"certificate request '{name}' not found")

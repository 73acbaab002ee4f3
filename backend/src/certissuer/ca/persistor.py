"""CA persistence layer.

``CAPersistor`` is the interface every backend implements to be usable by the
CA manager. ``SecretsPersistor`` stores one CA as a named secret record with
three entries (certificate, encrypted key, key password) in the database.
"""

import logging
from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certissuer.ca.authority import CertificateAuthority
from certissuer.domain.models import CASecretRecord
from certissuer.repository.repositories import CASecretRepository

logger = logging.getLogger(__name__)

# Entry names of a CA secret
SECRET_CERT_ENTRY = "ca-cert.pem"
SECRET_KEY_ENTRY = "ca-key.pem"
SECRET_PASS_ENTRY = "ca-pass"


class PersistenceError(Exception):
    """Raised when a CA cannot be stored, loaded or deleted."""

    pass


class CAPersistor(ABC):
    """Stores and loads exactly one CA in a backend."""

    @abstractmethod
    async def store(self, ca: CertificateAuthority) -> None:
        """Store the given CA. Fails if one is already stored."""
        ...

    @abstractmethod
    async def load(self) -> CertificateAuthority:
        """Load the stored CA."""
        ...

    @abstractmethod
    async def delete(self) -> None:
        """Delete the stored CA."""
        ...

    @abstractmethod
    async def overwrite(self, ca: CertificateAuthority) -> None:
        """Replace the stored CA."""
        ...

    @abstractmethod
    async def exists(self) -> bool:
        """True if a CA is stored."""
        ...


def ca_to_secret(ca: CertificateAuthority) -> dict[str, bytes]:
    """Convert a CA to its three named secret entries."""
    return {
        SECRET_CERT_ENTRY: ca.cert,
        SECRET_KEY_ENTRY: ca.key,
        SECRET_PASS_ENTRY: ca.password.encode("utf-8"),
    }


def secret_to_ca(data: dict[str, bytes | None]) -> CertificateAuthority:
    """Convert named secret entries back to a CA.

    Raises:
        PersistenceError: If an entry is missing.
    """
    for entry in (SECRET_KEY_ENTRY, SECRET_CERT_ENTRY, SECRET_PASS_ENTRY):
        if data.get(entry) is None:
            raise PersistenceError(f"entry not in secret: '{entry}'")

    return CertificateAuthority(
        key=data[SECRET_KEY_ENTRY],  # type: ignore[arg-type]
        cert=data[SECRET_CERT_ENTRY],  # type: ignore[arg-type]
        password=data[SECRET_PASS_ENTRY].decode("utf-8"),  # type: ignore[union-attr]
    )


def _record_entries(record: CASecretRecord) -> dict[str, bytes | None]:
    return {
        SECRET_CERT_ENTRY: record.ca_cert,
        SECRET_KEY_ENTRY: record.ca_key,
        SECRET_PASS_ENTRY: record.ca_pass,
    }


class SecretsPersistor(CAPersistor):
    """Persists a CA as a named secret record in the database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], name: str):
        self._session_factory = session_factory
        self.name = name

    async def store(self, ca: CertificateAuthority) -> None:
        entries = ca_to_secret(ca)
        try:
            async with self._session_factory() as db:
                repo = CASecretRepository(db)
                if await repo.get(self.name) is not None:
                    raise PersistenceError(f"CA secret '{self.name}' already exists")
                await repo.create(
                    CASecretRecord(
                        name=self.name,
                        ca_cert=entries[SECRET_CERT_ENTRY],
                        ca_key=entries[SECRET_KEY_ENTRY],
                        ca_pass=entries[SECRET_PASS_ENTRY],
                    )
                )
                await db.commit()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to store CA secret '{self.name}': {e}") from e

        logger.info("ca_secret_stored", extra={"secret_name": self.name})

    async def load(self) -> CertificateAuthority:
        try:
            async with self._session_factory() as db:
                record = await CASecretRepository(db).get(self.name)
        except Exception as e:
            raise PersistenceError(f"Failed to load CA secret '{self.name}': {e}") from e

        if record is None:
            raise PersistenceError(f"CA secret '{self.name}' not found")
        return secret_to_ca(_record_entries(record))

    async def delete(self) -> None:
        try:
            async with self._session_factory() as db:
                deleted = await CASecretRepository(db).delete(self.name)
                await db.commit()
        except Exception as e:
            raise PersistenceError(f"Failed to delete CA secret '{self.name}': {e}") from e

        if not deleted:
            raise PersistenceError(f"CA secret '{self.name}' not found")
        logger.info("ca_secret_deleted", extra={"secret_name": self.name})

    async def overwrite(self, ca: CertificateAuthority) -> None:
        entries = ca_to_secret(ca)
        try:
            async with self._session_factory() as db:
                repo = CASecretRepository(db)
                record = await repo.get(self.name)
                if record is None:
                    raise PersistenceError(f"CA secret '{self.name}' not found")
                record.ca_cert = entries[SECRET_CERT_ENTRY]
                record.ca_key = entries[SECRET_KEY_ENTRY]
                record.ca_pass = entries[SECRET_PASS_ENTRY]
                await repo.update(record)
                await db.commit()
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to overwrite CA secret '{self.name}': {e}") from e

        logger.info("ca_secret_overwritten", extra={"secret_name": self.name})

    async def exists(self) -> bool:
        # A secret that cannot be read counts as absent
        try:
            async with self._session_factory() as db:
                return await CASecretRepository(db).get(self.name) is not None
        except Exception as e:
            logger.warning(
                "ca_secret_lookup_failed", extra={"secret_name": self.name, "error": str(e)}
            )
            return False

"""CA custody: loading, generating, persisting and unloading the one active CA.

The manager owns at most one CertificateAuthority. Every operation holds the
manager lock for its full duration; nothing retries internally.
"""

import asyncio
import logging

from opentelemetry import trace

from certissuer.ca.authority import CertificateAuthority
from certissuer.ca.persistor import CAPersistor
from certissuer.metrics import issuer_metrics

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class CustodyError(Exception):
    """Raised when a CA operation conflicts with what the manager holds."""

    pass


class CAManager:
    """Manages the lifecycle of the one loaded CA.

    Loading (generate, files, persistor) never persists; call ``persist_ca``
    explicitly. ``get_ca`` hands out independent copies only.
    """

    def __init__(self, persistor: CAPersistor) -> None:
        if persistor is None:
            raise CustodyError("must be initialized with CA persistor")
        self._persistor = persistor
        self._lock = asyncio.Lock()
        self._ca: CertificateAuthority | None = None

    async def is_ca_loaded(self) -> bool:
        """True if a CA is loaded into the manager."""
        async with self._lock:
            return self._ca is not None

    async def generate_ca(self) -> None:
        """Generate a new CA and load it.

        Raises:
            CustodyError: If a CA is already loaded.
            CryptoError: If generation fails.
        """
        with tracer.start_as_current_span("CAManager.generate_ca"):
            async with self._lock:
                self._require_unloaded()
                self._ca = CertificateAuthority.generate()
                self._log_loaded("generated")

    async def load_ca_from_files(self, cert_path: str, key_path: str, password: str) -> None:
        """Load a CA from a certificate file and an encrypted key file.

        Raises:
            CustodyError: If a CA is already loaded.
            OSError: If a file cannot be read.
            CryptoError: If the material fails validation.
        """
        with tracer.start_as_current_span("CAManager.load_ca_from_files") as span:
            span.set_attribute("cert_path", cert_path)
            async with self._lock:
                self._require_unloaded()
                self._ca = CertificateAuthority.from_files(cert_path, key_path, password)
                self._log_loaded("files")

    async def load_ca_from_persistor(self) -> None:
        """Load the CA stored by the persistor.

        Raises:
            CustodyError: If a CA is already loaded.
            PersistenceError: If the persistor cannot produce a CA.
            CryptoError: If the stored CA fails validation.
        """
        with tracer.start_as_current_span("CAManager.load_ca_from_persistor"):
            async with self._lock:
                self._require_unloaded()
                ca = await self._persistor.load()
                ca.validate()
                self._ca = ca
                self._log_loaded("persistor")

    async def validate_ca(self) -> None:
        """Re-run the loaded CA's self-validation.

        Raises:
            CustodyError: If no CA is loaded.
            CryptoError: If validation fails.
        """
        async with self._lock:
            self._require_loaded().validate()

    async def get_ca(self) -> CertificateAuthority:
        """Return an independent copy of the loaded CA.

        Raises:
            CustodyError: If no CA is loaded.
        """
        async with self._lock:
            return self._require_loaded().copy()

    async def persist_ca(self, force: bool = False) -> None:
        """Store the loaded CA, overwriting an existing one if ``force`` is set.

        Raises:
            CustodyError: If no CA is loaded.
            PersistenceError: If the persistor fails.
        """
        with tracer.start_as_current_span("CAManager.persist_ca") as span:
            span.set_attribute("force", force)
            async with self._lock:
                ca = self._require_loaded()
                if force:
                    await self._persistor.overwrite(ca)
                else:
                    await self._persistor.store(ca)

    async def has_persisted_ca(self) -> bool:
        """True if the persistor holds a CA."""
        async with self._lock:
            return await self._persistor.exists()

    async def delete_ca(self) -> None:
        """Delete the persisted CA. The loaded CA, if any, stays loaded.

        Raises:
            PersistenceError: If nothing is stored or the delete fails.
        """
        async with self._lock:
            await self._persistor.delete()
        logger.info("ca_deleted")

    async def unload_ca(self) -> None:
        """Clear the loaded CA. Never fails."""
        async with self._lock:
            self._ca = None
        issuer_metrics.record_ca_unloaded()
        logger.info("ca_unloaded")

    def _require_unloaded(self) -> None:
        if self._ca is not None:
            raise CustodyError("CA is already loaded")

    def _require_loaded(self) -> CertificateAuthority:
        if self._ca is None:
            raise CustodyError("no CA loaded")
        return self._ca

    def _log_loaded(self, source: str) -> None:
        logger.info("ca_loaded", extra={"source": source})
        issuer_metrics.record_ca_loaded(source)

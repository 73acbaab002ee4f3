"""Bootstrap service for loading the CA and building the issuer at startup."""

import logging

from certissuer.ca.manager import CAManager, CustodyError
from certissuer.certificates.issuer import Issuer
from shared.config import Settings

logger = logging.getLogger(__name__)


async def load_ca(manager: CAManager, config: Settings) -> str:
    """Load a CA into ``manager`` from the first available source.

    Sources, in order:
    - CA_CERT_PATH / CA_KEY_PATH with CA_KEY_PASSWORD
    - The CA persisted under CA_SECRET_NAME
    - A freshly generated CA, persisted right away (only if CA_GENERATE)

    Returns:
        The source the CA was loaded from: files, persistor or generated.

    Raises:
        CustodyError: If no source is available.
        CryptoError: If the loaded material is invalid.
        PersistenceError: If a persisted CA cannot be loaded or stored.
    """
    if config.CA_CERT_PATH and config.CA_KEY_PATH:
        await manager.load_ca_from_files(
            config.CA_CERT_PATH, config.CA_KEY_PATH, config.CA_KEY_PASSWORD
        )
        return "files"

    if await manager.has_persisted_ca():
        await manager.load_ca_from_persistor()
        return "persistor"

    if config.CA_GENERATE:
        await manager.generate_ca()
        await manager.persist_ca()
        logger.info("ca_generated_and_persisted", extra={"secret": config.CA_SECRET_NAME})
        return "generated"

    raise CustodyError(
        "no CA available: configure CA_CERT_PATH and CA_KEY_PATH, "
        f"persist a CA under '{config.CA_SECRET_NAME}', or enable CA_GENERATE"
    )


async def bootstrap_issuer(manager: CAManager, config: Settings) -> Issuer:
    """Load and validate the CA, then build an Issuer from a copy of it.

    Raises:
        CustodyError: If no CA can be loaded.
        CryptoError: If the CA fails validation.
        PersistenceError: If the persistor fails.
    """
    if not await manager.is_ca_loaded():
        source = await load_ca(manager, config)
    else:
        source = "preloaded"

    await manager.validate_ca()
    ca = await manager.get_ca()
    issuer = Issuer.from_authority(ca)

    logger.info("issuer_ready", extra={"ca_source": source})
    return issuer

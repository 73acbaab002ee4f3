"""Tests for bootstrap service."""

from unittest.mock import AsyncMock, patch

import pytest

from certissuer.ca.manager import CAManager, CustodyError
from certissuer.certificates.issuer import Issuer
from certissuer.services.bootstrap import bootstrap_issuer, load_ca
from shared.config import Settings


def make_settings(**overrides) -> Settings:
    values = {"CA_CERT_PATH": None, "CA_KEY_PATH": None, "CA_GENERATE": True}
    values.update(overrides)
    return Settings(**values)


class TestLoadCA:
    """Tests for the CA source order."""

    @pytest.mark.asyncio
    async def test_files_take_precedence(self, persistor, ca, other_ca, tmp_path):
        """Test configured files win over a persisted CA."""
        await persistor.store(other_ca)
        (tmp_path / "ca.pem").write_bytes(ca.cert)
        (tmp_path / "ca.key").write_bytes(ca.key)
        manager = CAManager(persistor)

        source = await load_ca(
            manager,
            make_settings(
                CA_CERT_PATH=str(tmp_path / "ca.pem"),
                CA_KEY_PATH=str(tmp_path / "ca.key"),
                CA_KEY_PASSWORD=ca.password,
            ),
        )

        assert source == "files"
        assert (await manager.get_ca()).cert == ca.cert

    @pytest.mark.asyncio
    async def test_persisted_ca_is_loaded(self, persistor, ca):
        await persistor.store(ca)
        manager = CAManager(persistor)

        source = await load_ca(manager, make_settings())

        assert source == "persistor"
        assert (await manager.get_ca()).cert == ca.cert

    @pytest.mark.asyncio
    async def test_generates_and_persists_when_allowed(self, persistor):
        """Test a fresh CA is generated and persisted on first run."""
        manager = CAManager(persistor)

        source = await load_ca(manager, make_settings())

        assert source == "generated"
        assert persistor.ca is not None
        assert persistor.ca.cert == (await manager.get_ca()).cert

    @pytest.mark.asyncio
    async def test_no_source_raises_custody_error(self, persistor):
        manager = CAManager(persistor)

        with pytest.raises(CustodyError, match="no CA available"):
            await load_ca(manager, make_settings(CA_GENERATE=False))
        assert await manager.is_ca_loaded() is False


class TestBootstrapIssuer:
    """Tests for bootstrap_issuer."""

    @pytest.mark.asyncio
    async def test_builds_issuer_from_loaded_ca(self, persistor, ca):
        await persistor.store(ca)
        manager = CAManager(persistor)

        issuer = await bootstrap_issuer(manager, make_settings())

        assert isinstance(issuer, Issuer)
        assert issuer.get_ca_cert() == ca.cert

    @pytest.mark.asyncio
    async def test_preloaded_ca_skips_sources(self, persistor):
        manager = CAManager(persistor)
        await manager.generate_ca()

        with patch("certissuer.services.bootstrap.load_ca", new=AsyncMock()) as mock_load:
            await bootstrap_issuer(manager, make_settings(CA_GENERATE=False))

        mock_load.assert_not_called()

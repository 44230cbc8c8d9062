"""Unit tests for the analytics consent gate."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from think_mcp.analytics.config import ConfigManager
from think_mcp.analytics.consent import CURRENT_POLICY_VERSION, ConsentManager, is_older_version
from think_mcp.analytics.types import ConsentRecord

if TYPE_CHECKING:
    from pathlib import Path

    from think_mcp.analytics.storage import StorageAdapter


@pytest.fixture
def consent_path(think_home: Path) -> Path:
    return think_home / "consent.json"


@pytest.fixture
def config_manager(think_home: Path) -> ConfigManager:
    return ConfigManager(config_path=think_home / "analytics.json", environ={})


@pytest.fixture
def consent_manager(
    consent_path: Path, config_manager: ConfigManager, storage: StorageAdapter
) -> ConsentManager:
    return ConsentManager(consent_path, config_manager=config_manager, storage=storage)


# =============================================================================
# READING - Missing, corrupt and valid records
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestConsentReading:
    """Test how the consent file is interpreted."""

    def test_first_run(self, consent_manager: ConsentManager) -> None:
        assert consent_manager.is_first_run()
        assert not consent_manager.is_consent_given()
        assert consent_manager.get_consent_record() is None

    @pytest.mark.parametrize(
        "content",
        [
            "{not json",
            "[]",
            json.dumps({"hasConsented": "yes", "policyVersion": "1.0.0"}),
            json.dumps({"hasConsented": True}),
        ],
    )
    def test_corrupt_file_means_no_consent(
        self, consent_manager: ConsentManager, consent_path: Path, content: str
    ) -> None:
        consent_path.parent.mkdir(parents=True, exist_ok=True)
        consent_path.write_text(content)

        assert not consent_manager.is_consent_given()
        assert not consent_manager.is_first_run()

    def test_record_is_cached(self, consent_manager: ConsentManager, consent_path: Path) -> None:
        consent_manager.set_consent({"hasConsented": True, "policyVersion": CURRENT_POLICY_VERSION})
        consent_path.unlink()

        assert consent_manager.is_consent_given()
        consent_manager.clear_cache()
        assert not consent_manager.is_consent_given()

    def test_version_comparison(self) -> None:
        assert is_older_version("0.9.0", "1.0.0")
        assert is_older_version("1.0.9", "1.0.10")
        assert not is_older_version("1.0.0", "1.0.0")
        assert not is_older_version("2.0.0", "1.0.0")

    def test_needs_reconsent_for_old_policy(self, consent_manager: ConsentManager) -> None:
        consent_manager.set_consent(ConsentRecord(has_consented=True, policy_version="0.1.0"))

        status = consent_manager.get_consent_status()

        assert status.has_consented
        assert status.needs_reconsent
        assert status.to_dict()["needsReConsent"] is True

    def test_no_reconsent_without_consent(self, consent_manager: ConsentManager) -> None:
        consent_manager.set_consent(ConsentRecord(has_consented=False, policy_version="0.1.0"))
        assert not consent_manager.needs_reconsent()

    def test_set_consent_rejects_invalid_shape(self, consent_manager: ConsentManager) -> None:
        result = consent_manager.set_consent({"hasConsented": 1})
        assert not result.success
        assert result.error


# =============================================================================
# WRITING - Grant, withdraw and re-consent
# =============================================================================


@pytest.mark.unit
@pytest.mark.core
class TestConsentWriting:
    """Test consent transitions and their persistence."""

    @pytest.mark.asyncio
    async def test_grant_writes_file_and_enables(
        self,
        consent_manager: ConsentManager,
        consent_path: Path,
        config_manager: ConfigManager,
    ) -> None:
        result = await consent_manager.grant_consent()

        assert result.success
        assert result.error is None
        data = json.loads(consent_path.read_text())
        assert data["hasConsented"] is True
        assert data["policyVersion"] == CURRENT_POLICY_VERSION
        assert data["consentedAt"].endswith("Z")
        assert config_manager.is_enabled()

    @pytest.mark.asyncio
    async def test_grant_without_enabling(
        self, consent_manager: ConsentManager, config_manager: ConfigManager
    ) -> None:
        await consent_manager.grant_consent(enable_analytics=False)
        assert consent_manager.is_consent_given()
        assert not config_manager.is_enabled()

    @pytest.mark.asyncio
    async def test_withdraw_preserves_audit_trail(
        self, consent_manager: ConsentManager, config_manager: ConfigManager
    ) -> None:
        granted = await consent_manager.grant_consent()
        assert granted.record is not None

        result = await consent_manager.withdraw_consent()

        assert result.success
        assert result.record is not None
        assert result.record.has_consented is False
        assert result.record.consented_at == granted.record.consented_at
        assert result.record.withdrawn_at is not None
        assert not config_manager.is_enabled()

    @pytest.mark.asyncio
    async def test_regrant_keeps_withdrawn_at(self, consent_manager: ConsentManager) -> None:
        await consent_manager.grant_consent()
        withdrawn = await consent_manager.withdraw_consent()
        assert withdrawn.record is not None

        regranted = await consent_manager.grant_consent()

        assert regranted.record is not None
        assert regranted.record.has_consented
        assert regranted.record.withdrawn_at == withdrawn.record.withdrawn_at

    @pytest.mark.asyncio
    async def test_withdraw_with_data_deletion(
        self, consent_manager: ConsentManager, storage: StorageAdapter, make_event
    ) -> None:
        await consent_manager.grant_consent()
        await storage.append_events([make_event(day="2026-01-15")])

        result = await consent_manager.withdraw_consent(delete_data=True)

        assert result.success
        info = await storage.get_storage_info()
        assert info.total_files == 0

    @pytest.mark.asyncio
    async def test_update_for_new_policy(self, consent_manager: ConsentManager) -> None:
        consent_manager.set_consent(ConsentRecord(has_consented=True, policy_version="0.1.0"))

        result = await consent_manager.update_consent_for_new_policy()

        assert result.success
        assert not consent_manager.needs_reconsent()
        assert consent_manager.get_consent_record().policy_version == CURRENT_POLICY_VERSION

    @pytest.mark.asyncio
    async def test_update_without_consent_fails(self, consent_manager: ConsentManager) -> None:
        result = await consent_manager.update_consent_for_new_policy()
        assert not result.success

    def test_save_failure_is_reported(self, tmp_path: Path) -> None:
        """A consent path under a regular file cannot be written."""
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        manager = ConsentManager(blocker / "consent.json")

        result = manager.set_consent(ConsentRecord(has_consented=True, policy_version="1.0.0"))

        assert not result.success
        assert "Failed to save consent" in (result.error or "")

    def test_delete_consent_file(self, consent_manager: ConsentManager, consent_path: Path) -> None:
        consent_manager.set_consent(ConsentRecord(has_consented=True, policy_version="1.0.0"))

        assert consent_manager.delete_consent_file() is True
        assert not consent_path.exists()
        assert consent_manager.is_first_run()
        assert consent_manager.delete_consent_file() is False

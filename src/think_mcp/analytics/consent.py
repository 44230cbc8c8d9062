"""Consent gate for analytics collection.

The consent record is the single authority on whether data may be collected.
It lives in ~/.think-mcp/consent.json:

    {"hasConsented": true, "policyVersion": "1.0.0",
     "consentedAt": "2026-01-15T10:30:00.000Z"}

A missing file means first run. A corrupt or invalid file reads exactly like
"no consent": the gate never assumes consent it cannot prove.
"""

from __future__ import annotations

import json
import os
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any

from loguru import logger

from think_mcp.analytics.privacy import PRIVACY_NOTICE_VERSION
from think_mcp.analytics.types import ConsentRecord, utc_now_iso
from think_mcp.paths import get_consent_path

if TYPE_CHECKING:
    from think_mcp.analytics.config import ConfigManager
    from think_mcp.analytics.storage import StorageAdapter

CURRENT_POLICY_VERSION = PRIVACY_NOTICE_VERSION

# Cache sentinel: "read, and no valid record exists"
_NO_RECORD = object()


@dataclass
class ConsentResult:
    """Outcome of a consent operation. File errors land in ``error``."""

    success: bool
    record: ConsentRecord | None = None
    error: str | None = None


@dataclass
class ConsentStatus:
    has_consented: bool
    consented_at: str | None
    withdrawn_at: str | None
    policy_version: str | None
    needs_reconsent: bool
    is_first_run: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "hasConsented": self.has_consented,
            "consentedAt": self.consented_at,
            "withdrawnAt": self.withdrawn_at,
            "policyVersion": self.policy_version,
            "needsReConsent": self.needs_reconsent,
            "isFirstRun": self.is_first_run,
        }


def _version_tuple(version: str) -> tuple[int, ...]:
    parts = []
    for part in version.split("."):
        digits = "".join(ch for ch in part if ch.isdigit())
        parts.append(int(digits) if digits else 0)
    return tuple(parts)


def is_older_version(version: str, current: str = CURRENT_POLICY_VERSION) -> bool:
    """Compare dotted version strings numerically."""
    return _version_tuple(version) < _version_tuple(current)


class ConsentManager:
    """Reads, caches and persists the consent record."""

    def __init__(
        self,
        consent_path: Path | None = None,
        config_manager: ConfigManager | None = None,
        storage: StorageAdapter | None = None,
    ) -> None:
        self._consent_path = consent_path
        self.config_manager = config_manager
        self.storage = storage
        self._cached: Any = None

    @property
    def consent_path(self) -> Path:
        return self._consent_path or get_consent_path()

    # ----- reading -----------------------------------------------------------

    def _load(self) -> ConsentRecord | None:
        try:
            content = self.consent_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.debug(f"Cannot read consent file: {e}")
            return None
        try:
            data = json.loads(content)
        except json.JSONDecodeError:
            logger.debug("Consent file is not valid JSON; treating as no consent")
            return None
        record = ConsentRecord.from_dict(data)
        if record is None:
            logger.debug("Consent file has an invalid shape; treating as no consent")
        return record

    def get_consent_record(self) -> ConsentRecord | None:
        """Get the cached consent record, reading the file on first use."""
        if self._cached is None:
            record = self._load()
            self._cached = record if record is not None else _NO_RECORD
        return None if self._cached is _NO_RECORD else self._cached

    def is_consent_given(self) -> bool:
        record = self.get_consent_record()
        return record is not None and record.has_consented

    def is_first_run(self) -> bool:
        """True when no consent file exists at all."""
        return not self.consent_path.exists()

    def needs_reconsent(self) -> bool:
        """True iff consent was given under an older policy version."""
        record = self.get_consent_record()
        if record is None or not record.has_consented:
            return False
        return is_older_version(record.policy_version)

    def get_consent_status(self) -> ConsentStatus:
        record = self.get_consent_record()
        return ConsentStatus(
            has_consented=bool(record and record.has_consented),
            consented_at=record.consented_at if record else None,
            withdrawn_at=record.withdrawn_at if record else None,
            policy_version=record.policy_version if record else None,
            needs_reconsent=self.needs_reconsent(),
            is_first_run=self.is_first_run(),
        )

    # ----- writing -----------------------------------------------------------

    def _save(self, record: ConsentRecord) -> ConsentResult:
        """Atomically persist a record and refresh the cache."""
        path = self.consent_path
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(json.dumps(record.to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path.exists():
                tmp_path.unlink()
            logger.warning(f"Failed to save consent record: {e}")
            return ConsentResult(success=False, error=f"Failed to save consent: {e}")
        self._cached = record
        return ConsentResult(success=True, record=record)

    def _set_enabled(self, enabled: bool) -> str | None:
        if self.config_manager is None:
            return None
        try:
            if enabled:
                self.config_manager.enable()
            else:
                self.config_manager.disable()
        except OSError as e:
            logger.warning(f"Failed to persist analytics enabled={enabled}: {e}")
            return f"Consent saved but config update failed: {e}"
        return None

    async def grant_consent(self, enable_analytics: bool = True) -> ConsentResult:
        """Record consent under the current policy version.

        Any earlier ``withdrawn_at`` is kept for the audit trail.

        Args:
            enable_analytics: Also set ``enabled: true`` in configuration
        """
        previous = self.get_consent_record()
        record = ConsentRecord(
            has_consented=True,
            policy_version=CURRENT_POLICY_VERSION,
            consented_at=utc_now_iso(),
            withdrawn_at=previous.withdrawn_at if previous else None,
        )
        result = self._save(record)
        if result.success and enable_analytics:
            result.error = self._set_enabled(True)
        logger.debug(f"Analytics consent granted (policy {CURRENT_POLICY_VERSION})")
        return result

    async def withdraw_consent(
        self,
        disable_analytics: bool = True,
        delete_data: bool = False,
    ) -> ConsentResult:
        """Record withdrawal of consent.

        ``consented_at`` and the policy version are preserved.

        Args:
            disable_analytics: Also set ``enabled: false`` in configuration
            delete_data: Also delete every stored partition
        """
        previous = self.get_consent_record()
        record = ConsentRecord(
            has_consented=False,
            policy_version=previous.policy_version if previous else CURRENT_POLICY_VERSION,
            consented_at=previous.consented_at if previous else None,
            withdrawn_at=utc_now_iso(),
        )
        result = self._save(record)
        if not result.success:
            return result

        errors = []
        if disable_analytics:
            error = self._set_enabled(False)
            if error:
                errors.append(error)
        if delete_data and self.storage is not None:
            deletion = await self.storage.delete_all_data()
            if not deletion.success:
                errors.append(deletion.error or "Data deletion failed")
            else:
                logger.debug(f"Deleted {deletion.files_deleted} analytics files on withdrawal")
        if errors:
            result.error = "; ".join(errors)
        logger.debug("Analytics consent withdrawn")
        return result

    async def update_consent_for_new_policy(self) -> ConsentResult:
        """Re-grant consent under the current policy version."""
        record = self.get_consent_record()
        if record is None or not record.has_consented:
            return ConsentResult(success=False, error="No existing consent to update")
        return self._save(
            ConsentRecord(
                has_consented=True,
                policy_version=CURRENT_POLICY_VERSION,
                consented_at=utc_now_iso(),
                withdrawn_at=record.withdrawn_at,
            )
        )

    def set_consent(self, record: ConsentRecord | dict[str, Any]) -> ConsentResult:
        """Persist a full record after validating its shape."""
        if isinstance(record, dict):
            parsed = ConsentRecord.from_dict(record)
            if parsed is None:
                return ConsentResult(success=False, error="Invalid consent record")
            record = parsed
        return self._save(record)

    def delete_consent_file(self) -> bool:
        """Remove the consent file. Returns True if a file was removed."""
        self._cached = None
        try:
            self.consent_path.unlink()
        except FileNotFoundError:
            return False
        return True

    def clear_cache(self) -> None:
        self._cached = None

    def reset(self) -> None:
        """Forget cached state; the next read goes back to disk."""
        self.clear_cache()

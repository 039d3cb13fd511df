"""
coursegate/features/entitlements/service.py

Chapter access decisions and the persisted activation record.

Handles:
- Fixed free/premium chapter partition (closed world: unknown chapters are
  inaccessible)
- Premium status read from the activation record (absent, malformed or
  unreadable all mean "not activated")
- Activation: write the record through the fallback store, then read it
  back before reporting success
- Localized status / error messages
"""

import logging
import time
from dataclasses import dataclass
from typing import Iterable, List, Optional

from pydantic import ValidationError

from coursegate.core.errors import ActivationError, AppError, FormatError, StorageError
from coursegate.core.logging import log_event
from coursegate.core.messages import MessageCatalog
from coursegate.features.keys.obfuscation import normalize_code, obfuscate_code
from coursegate.features.storage.service import FallbackStorage
from coursegate.models.activation import ActivationRecord, ChapterTier, DeviceFingerprint, utc_now_iso
from coursegate.models.client import ClientContext

logger = logging.getLogger(__name__)

ACTIVATION_RECORD_KEY = "englishCourse_premiumAccess"
USER_AGENT_SNIPPET_CHARS = 100


@dataclass(frozen=True)
class ActivationResult:
    success: bool
    error_code: Optional[str] = None
    error: Optional[str] = None  # localized
    durability_warning: bool = False
    warning: Optional[str] = None  # localized

    @property
    def warning_code(self) -> Optional[str]:
        return "activation_saved_temporarily" if self.durability_warning else None


class EntitlementManager:
    def __init__(
        self,
        storage: FallbackStorage,
        messages: MessageCatalog,
        *,
        free_chapters: Iterable[int],
        premium_chapters: Iterable[int],
        client: Optional[ClientContext] = None,
    ):
        self.storage = storage
        self.messages = messages
        self.client = client or ClientContext()
        # Immutable for the lifetime of the manager
        self.free_chapters = frozenset(free_chapters)
        self.premium_chapters = frozenset(premium_chapters)
        overlap = self.free_chapters & self.premium_chapters
        if overlap:
            raise ValueError(f"Chapters cannot be both free and premium: {sorted(overlap)}")

    # ------------------------------------------------------------------
    # Access queries
    # ------------------------------------------------------------------
    def chapter_tier(self, chapter_number: int) -> Optional[ChapterTier]:
        if chapter_number in self.free_chapters:
            return ChapterTier.FREE
        if chapter_number in self.premium_chapters:
            return ChapterTier.PREMIUM
        return None

    def is_chapter_accessible(self, chapter_number: int) -> bool:
        tier = self.chapter_tier(chapter_number)
        if tier is ChapterTier.FREE:
            return True
        if tier is ChapterTier.PREMIUM:
            return self.is_premium_activated()
        return False

    def accessible_chapters(self) -> List[int]:
        """Every chapter the presentation layer may render right now."""
        chapters = set(self.free_chapters)
        if self.is_premium_activated():
            chapters |= self.premium_chapters
        return sorted(chapters)

    def activation_record(self) -> Optional[ActivationRecord]:
        """Parsed activation record, or None if absent, unreadable or malformed."""
        result = self.storage.read_json(ACTIVATION_RECORD_KEY)
        if not result.ok:
            logger.warning("[entitlements] activation record unreadable", extra={"error_code": result.error_code})
            return None
        if not result.found or result.malformed or not isinstance(result.value, dict):
            return None
        try:
            return ActivationRecord.model_validate(result.value)
        except ValidationError:
            logger.warning("[entitlements] activation record malformed")
            return None

    def is_premium_activated(self) -> bool:
        record = self.activation_record()
        return record is not None and record.is_activated is True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------
    def language(self) -> str:
        return self.messages.detect_language(self.storage, self.client.language)

    def localized(self, message_id: str) -> str:
        return self.messages.resolve(message_id, self.language())

    def status_message(self, chapter_number: Optional[int] = None) -> str:
        if chapter_number is not None and not self.is_chapter_accessible(chapter_number):
            return self.localized("premium_locked")
        if self.is_premium_activated():
            return self.localized("premium_active")
        return self.localized("premium_locked")

    # ------------------------------------------------------------------
    # Activation
    # ------------------------------------------------------------------
    def _device_fingerprint(self) -> DeviceFingerprint:
        return DeviceFingerprint(
            user_agent_snippet=(self.client.user_agent or "")[:USER_AGENT_SNIPPET_CHARS],
            language=self.client.language,
            platform=self.client.platform,
            timestamp=int(time.time() * 1000),
        )

    def _failure(self, error: AppError) -> ActivationResult:
        log_event("warning", "[entitlements] activation failed", error_code=error.code)
        return ActivationResult(success=False, error_code=error.code, error=self.localized(error.code))

    def activate_premium(self, code) -> ActivationResult:
        """Persist a fresh activation record for ``code``.

        A record that only reached the session-scoped store still counts as
        success, flagged with durability_warning. The record is read back
        before success is reported.
        """
        if not isinstance(code, str) or not code.strip():
            return self._failure(FormatError())

        try:
            record = ActivationRecord(
                is_activated=True,
                activation_date=utc_now_iso(),
                obfuscated_code=obfuscate_code(normalize_code(code)),
                device_fingerprint=self._device_fingerprint(),
            )
            write = self.storage.write_json(ACTIVATION_RECORD_KEY, record.model_dump(by_alias=True))
            if not write.ok:
                return self._failure(StorageError())

            if not self.is_premium_activated():
                return self._failure(ActivationError("activation record did not read back"))
        except Exception:
            logger.error("[entitlements] unexpected activation error", exc_info=True)
            return self._failure(ActivationError())

        if write.durability_warning:
            log_event(
                "warning",
                "[entitlements] activation stored in session-scoped store only",
                code_digest=record.obfuscated_code,
            )
            return ActivationResult(
                success=True,
                durability_warning=True,
                warning=self.localized("activation_saved_temporarily"),
            )

        log_event("info", "[entitlements] premium activated", code_digest=record.obfuscated_code)
        return ActivationResult(success=True)

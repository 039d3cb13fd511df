"""
coursegate/features/storage/service.py

Primary -> secondary fallback over two interchangeable KeyValueStores.

Call sites never branch on store type: they get a StorageResult telling
them whether the call worked, whether the key was found, and whether a
write landed somewhere durable. A failure of both stores is reported as
ok=False with a message id; it is never turned into empty data.
"""

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Optional

from coursegate.core.errors import classify_store_error
from coursegate.features.storage.stores import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StorageResult:
    ok: bool
    found: bool = False
    value: Any = None
    tier: Optional[str] = None  # name of the store that answered
    durable: bool = False
    error_code: Optional[str] = None
    malformed: bool = False

    @property
    def durability_warning(self) -> bool:
        """A write that only reached the session-scoped store."""
        return self.ok and not self.durable


class FallbackStorage:
    """Composite store: try ``primary``, fall back to ``secondary``."""

    def __init__(self, primary: KeyValueStore, secondary: KeyValueStore):
        self.primary = primary
        self.secondary = secondary

    def read(self, key: str) -> StorageResult:
        """Primary value if present, else the secondary's.

        A primary miss still consults the secondary so values written during
        an earlier fallback stay visible for the rest of the session.
        """
        primary_error: Optional[BaseException] = None
        try:
            value = self.primary.get(key)
        except Exception as exc:
            primary_error = exc
            logger.warning(
                "[storage] primary read failed, trying secondary",
                extra={"key": key, "tier": self.primary.name, "error_code": classify_store_error(exc)},
            )
        else:
            if value is not None:
                return StorageResult(ok=True, found=True, value=value, tier=self.primary.name, durable=self.primary.durable)

        try:
            value = self.secondary.get(key)
        except Exception as exc:
            if primary_error is None:
                # Primary answered "absent"; an unreadable secondary changes nothing
                logger.warning(
                    "[storage] secondary read failed after primary miss",
                    extra={"key": key, "tier": self.secondary.name},
                )
                return StorageResult(ok=True, found=False, tier=self.primary.name, durable=self.primary.durable)
            error_code = classify_store_error(exc)
            logger.error(
                "[storage] both stores failed on read",
                extra={"key": key, "error_code": error_code},
            )
            return StorageResult(ok=False, error_code=error_code)

        if value is not None:
            return StorageResult(ok=True, found=True, value=value, tier=self.secondary.name, durable=self.secondary.durable)
        tier = self.secondary if primary_error is not None else self.primary
        return StorageResult(ok=True, found=False, tier=tier.name, durable=tier.durable)

    def write(self, key: str, value: str) -> StorageResult:
        try:
            self.primary.set(key, value)
            return StorageResult(ok=True, tier=self.primary.name, durable=self.primary.durable)
        except Exception as exc:
            logger.warning(
                "[storage] primary write failed, trying secondary",
                extra={"key": key, "tier": self.primary.name, "error_code": classify_store_error(exc)},
            )

        try:
            self.secondary.set(key, value)
        except Exception as exc:
            error_code = classify_store_error(exc)
            logger.error(
                "[storage] both stores failed on write",
                extra={"key": key, "error_code": error_code},
            )
            return StorageResult(ok=False, error_code=error_code)

        logger.warning(
            "[storage] value kept in session-scoped store only",
            extra={"key": key, "tier": self.secondary.name},
        )
        return StorageResult(ok=True, tier=self.secondary.name, durable=self.secondary.durable)

    def remove(self, key: str) -> StorageResult:
        """Remove from both stores; ok when at least one of them succeeded."""
        removed_from = []
        last_error: Optional[BaseException] = None
        for store in (self.primary, self.secondary):
            try:
                store.remove(key)
                removed_from.append(store)
            except Exception as exc:
                last_error = exc
                logger.warning("[storage] remove failed", extra={"key": key, "tier": store.name})
        if not removed_from:
            return StorageResult(ok=False, error_code=classify_store_error(last_error))
        return StorageResult(ok=True, tier=removed_from[0].name, durable=removed_from[0].durable)

    def read_json(self, key: str) -> StorageResult:
        """read() with the value decoded from JSON.

        Undecodable content comes back as ok/found with malformed=True and
        value=None.
        """
        result = self.read(key)
        if not (result.ok and result.found):
            return result
        try:
            return replace(result, value=json.loads(result.value))
        except (TypeError, ValueError):
            logger.warning("[storage] malformed JSON document", extra={"key": key, "tier": result.tier})
            return replace(result, value=None, malformed=True)

    def write_json(self, key: str, value: Any) -> StorageResult:
        return self.write(key, json.dumps(value, ensure_ascii=False, default=str))

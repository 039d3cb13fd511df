"""
coursegate/features/keys/audit.py

Activation audit trail.

Handles:
- Best-effort source / location labels for an activation (advisory only)
- The anonymous per-installation user id
- Building and appending audit entries (newest first, capped)

Nothing in here is allowed to block an activation: label helpers never
raise, and append failures are reported back as a StorageResult.
"""

import logging
import random
import re
import time
from typing import List, Optional
from uuid import uuid4

from coursegate.features.storage.service import FallbackStorage, StorageResult
from coursegate.features.keys.obfuscation import to_base36
from coursegate.models.activation import AuditEntry, utc_now_iso
from coursegate.models.client import ClientContext

logger = logging.getLogger(__name__)

AUDIT_LOG_KEY = "admin_activation_log"
ANONYMOUS_USER_ID_KEY = "anonymous_user_id"

_MOBILE_UA_RE = re.compile(r"Android|webOS|iPhone|iPad|iPod|BlackBerry|IEMobile|Opera Mini", re.IGNORECASE)

# Referrer substring -> label; first match wins
_REFERRER_SOURCES = [
    ("telegram", "Telegram Link"),
    ("whatsapp", "WhatsApp Link"),
    ("facebook", "Facebook Link"),
    ("instagram", "Instagram Link"),
    ("google", "Google Search"),
    ("youtube", "YouTube Link"),
]

# Country level only
TIMEZONE_TO_COUNTRY = {
    "Europe/London": "United Kingdom",
    "Europe/Moscow": "Russia",
    "Asia/Tashkent": "Uzbekistan",
    "Asia/Samarkand": "Uzbekistan",
    "Asia/Almaty": "Kazakhstan",
    "Asia/Bishkek": "Kyrgyzstan",
    "Asia/Dushanbe": "Tajikistan",
    "Asia/Ashgabat": "Turkmenistan",
    "Europe/Berlin": "Germany",
    "Europe/Paris": "France",
    "Europe/Rome": "Italy",
    "Europe/Madrid": "Spain",
    "America/New_York": "United States",
    "America/Los_Angeles": "United States",
}

_LANGUAGE_TO_REGION = [
    ("uz", "Uzbekistan"),
    ("ru", "Russia/CIS"),
    ("en-gb", "United Kingdom"),
    ("en-us", "United States"),
    ("en", "English-speaking country"),
]


def _safe_truncate(value, limit: int = 500):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def detect_source(client: Optional[ClientContext]) -> str:
    """Where the activation came from, as a human-readable label."""
    try:
        if client is None:
            return "Direct"
        if (client.embedded_in or "").lower() == "telegram":
            return "Telegram Bot"

        referrer = (client.referrer or "").lower()
        for needle, label in _REFERRER_SOURCES:
            if needle in referrer:
                return label

        if not client.user_agent:
            return "Direct" if not referrer else "Unknown"
        if _MOBILE_UA_RE.search(client.user_agent):
            return "Mobile Browser"
        return "Desktop Browser"
    except Exception:
        logger.debug("[audit] source detection failed", exc_info=True)
        return "Unknown"


def approximate_location(client: Optional[ClientContext]) -> str:
    """Country-level guess from timezone, then UI language."""
    try:
        if client is None:
            return "Unknown"
        country = TIMEZONE_TO_COUNTRY.get(client.timezone or "")
        if country:
            return country
        language = (client.language or "").lower().replace("_", "-")
        for prefix, region in _LANGUAGE_TO_REGION:
            if language.startswith(prefix):
                return region
        return "Unknown"
    except Exception:
        logger.debug("[audit] location guess failed", exc_info=True)
        return "Unknown"


def _random_suffix(length: int = 9) -> str:
    return to_base36(random.getrandbits(48)).lstrip("-").rjust(length, "0")[:length]


def get_anonymous_user_id(storage: FallbackStorage) -> str:
    """Stable anonymous id for this installation, created on first use.

    Falls back to a one-off ``session_`` id when it cannot be persisted.
    """
    millis = int(time.time() * 1000)
    existing = storage.read(ANONYMOUS_USER_ID_KEY)
    if existing.ok and existing.found and existing.value:
        return existing.value
    if existing.ok:
        anonymous_id = f"user_{millis}_{_random_suffix()}"
        if storage.write(ANONYMOUS_USER_ID_KEY, anonymous_id).ok:
            return anonymous_id
    return f"session_{millis}_{_random_suffix()}"


def build_audit_entry(
    code: str,
    email: Optional[str],
    *,
    client: Optional[ClientContext],
    anonymous_user_id: str,
    language: Optional[str],
) -> AuditEntry:
    client = client or ClientContext()
    return AuditEntry(
        id=uuid4().hex,
        code=code,
        email=email or "Not provided",
        timestamp=utc_now_iso(),
        user_agent=_safe_truncate(client.user_agent),
        source=detect_source(client),
        anonymous_user_id=anonymous_user_id,
        approximate_location=approximate_location(client),
        language=language,
        platform=client.platform,
        referrer=client.referrer or "Direct",
    )


def load_audit_log(storage: FallbackStorage) -> List[dict]:
    """Current log, newest first; unreadable or malformed logs read as empty."""
    result = storage.read_json(AUDIT_LOG_KEY)
    if result.ok and result.found and isinstance(result.value, list):
        return result.value
    if not result.ok:
        logger.warning("[audit] could not load activation log", extra={"error_code": result.error_code})
    return []


def append_audit_entry(storage: FallbackStorage, entry: AuditEntry, max_entries: int = 1000) -> StorageResult:
    """Prepend ``entry`` and keep only the newest ``max_entries``."""
    log = load_audit_log(storage)
    log.insert(0, entry.model_dump(by_alias=True))
    if len(log) > max_entries:
        log = log[:max_entries]
    result = storage.write_json(AUDIT_LOG_KEY, log)
    if not result.ok:
        logger.warning("[audit] activation log write failed", extra={"error_code": result.error_code})
    return result

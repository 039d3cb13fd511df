"""
coursegate/features/keys/validator.py

Activation code validation and the used-code ledgers.

Handles:
- Format check (16 characters of [A-Z0-9] once dashes are stripped)
- Single-use check against the local used-code set, the admin key ledger
  and the optional published list of consumed digests (any one is enough)
- Validity check: known code (predefined list OR admin ledger) and unused
- Marking a code used: used-code set, audit trail, admin ledger

Lookups never raise. A storage fault while checking usage is fail-open
(treated as "not used") so an outage cannot lock out a paying user; the
activation workflow decides what a failed check means for the user.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from coursegate.core.errors import classify_store_error
from coursegate.core.logging import log_event
from coursegate.core.messages import MessageCatalog
from coursegate.features.keys.audit import append_audit_entry, build_audit_entry, get_anonymous_user_id
from coursegate.features.keys.obfuscation import normalize_code, obfuscate_code
from coursegate.features.storage.service import FallbackStorage
from coursegate.models.activation import AdminKeyEntry, AuditEntry
from coursegate.models.client import ClientContext

logger = logging.getLogger(__name__)

USED_CODES_KEY = "englishCourse_usedKeys"
ADMIN_KEY_DATABASE_KEY = "admin_key_database"

# Checked before upper-casing: str.upper() maps some non-ASCII letters to ASCII
KEY_PATTERN = re.compile(r"[A-Za-z0-9]{16}")

# Used when no central code list is configured
DEMO_VALID_CODES = (
    "DEMO1234ABCD5678",
    "TEST9876WXYZ4321",
    "SAMPLE123456ABCD",
    "TRIAL789DEFG0123",
    "PREMIUM456789XYZ",
)


def load_code_list(path: Optional[str], *, normalize: bool = True) -> List[str]:
    """Read one entry per line, skipping blanks and ``#`` comments."""
    if not path:
        return []
    entries = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        entries.append(normalize_code(line) if normalize else line)
    return entries


@dataclass(frozen=True)
class LedgerUpdate:
    """Outcome of mark_used; truthy when the code is recorded as used."""
    ok: bool
    already_recorded: bool = False
    durable: bool = True
    warning_code: Optional[str] = None
    error_code: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class ValidationIssue:
    operation: str
    code: str
    message: str


class KeyValidator:
    def __init__(
        self,
        storage: FallbackStorage,
        messages: MessageCatalog,
        *,
        client: Optional[ClientContext] = None,
        valid_codes: Optional[Iterable[str]] = None,
        published_used_digests: Optional[Iterable[str]] = None,
        audit_max_entries: int = 1000,
    ):
        self.storage = storage
        self.messages = messages
        self.client = client or ClientContext()
        codes = DEMO_VALID_CODES if valid_codes is None else valid_codes
        self.valid_codes = frozenset(normalize_code(c) for c in codes)
        self.published_used_digests = frozenset(published_used_digests or ())
        self.audit_max_entries = audit_max_entries
        self.last_issue: Optional[ValidationIssue] = None

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------
    def _language(self) -> str:
        return self.messages.detect_language(self.storage, self.client.language)

    def _report(self, operation: str, code: str) -> ValidationIssue:
        issue = ValidationIssue(operation=operation, code=code, message=self.messages.resolve(code, self._language()))
        self.last_issue = issue
        log_event("warning", f"[keys] {operation} failed", error_code=code)
        return issue

    def _handle_error(self, operation: str, exc: Exception) -> ValidationIssue:
        """Classify an unexpected fault (quota / security / generic)."""
        logger.warning(f"[keys] unexpected error while {operation}: {exc}", exc_info=True)
        return self._report(operation, classify_store_error(exc))

    # ------------------------------------------------------------------
    # Ledger reads
    # ------------------------------------------------------------------
    def get_used_codes(self) -> Optional[List[str]]:
        """Used-code digests; None when the set cannot be read or is corrupt."""
        result = self.storage.read_json(USED_CODES_KEY)
        if not result.ok:
            self._report("retrieving used keys", result.error_code or "storage_error")
            return None
        if not result.found:
            return []
        if not isinstance(result.value, list):
            self._report("retrieving used keys", "validation_error")
            return None
        return [str(d) for d in result.value]

    def _load_admin_ledger(self) -> Optional[Dict[str, dict]]:
        result = self.storage.read_json(ADMIN_KEY_DATABASE_KEY)
        if not result.ok:
            logger.warning("[keys] could not read admin key ledger", extra={"error_code": result.error_code})
            return None
        if not result.found:
            return {}
        if not isinstance(result.value, dict):
            logger.warning("[keys] admin key ledger is malformed")
            return None
        return result.value

    @staticmethod
    def _variants(code: str) -> List[str]:
        """Ledger spellings of ``code``: as entered (upper-cased) and hyphenless."""
        formatted = code.strip().upper()
        clean = normalize_code(code)
        return [formatted] if formatted == clean else [formatted, clean]

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    @staticmethod
    def validate_format(code) -> bool:
        if not code or not isinstance(code, str):
            return False
        return KEY_PATTERN.fullmatch(code.strip().replace("-", "")) is not None

    def is_used(self, code: str) -> bool:
        try:
            digest = obfuscate_code(normalize_code(code))

            used_codes = self.get_used_codes()
            used_locally = digest in (used_codes or [])
            used_published = digest in self.published_used_digests

            ledger = self._load_admin_ledger() or {}
            used_in_admin = False
            for variant in self._variants(code):
                entry = ledger.get(variant)
                if isinstance(entry, dict) and entry.get("activated") is True:
                    used_in_admin = True
                    break

            is_used = used_locally or used_published or used_in_admin
            logger.info(
                "[keys] usage check",
                extra={
                    "code_digest": digest,
                    "used_locally": used_locally,
                    "used_published": used_published,
                    "used_in_admin": used_in_admin,
                },
            )
            return is_used
        except Exception as exc:
            self._handle_error("checking key usage", exc)
            return False

    def is_valid(self, code: str) -> bool:
        try:
            if not self.validate_format(code):
                logger.info("[keys] validation failed: bad format")
                return False

            clean = normalize_code(code)
            in_code_list = clean in self.valid_codes
            ledger = self._load_admin_ledger() or {}
            in_admin_ledger = any(variant in ledger for variant in self._variants(code))

            if not in_code_list and not in_admin_ledger:
                logger.info("[keys] validation failed: unknown code", extra={"code_digest": obfuscate_code(clean)})
                return False

            if self.is_used(code):
                logger.info("[keys] validation failed: already used", extra={"code_digest": obfuscate_code(clean)})
                return False

            return True
        except Exception as exc:
            self._handle_error("validating key", exc)
            return False

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------
    def mark_used(self, code: str, email: Optional[str] = None) -> LedgerUpdate:
        """Record ``code`` as consumed. Idempotent.

        The used-code set only ever grows: if it cannot be read (or reads as
        corrupt) nothing is written, since rewriting it could drop digests.
        """
        try:
            clean = normalize_code(code)
            digest = obfuscate_code(clean)

            used_codes = self.get_used_codes()
            if used_codes is None:
                return LedgerUpdate(ok=False, error_code=self.last_issue.code if self.last_issue else "storage_error")

            if digest in used_codes:
                return LedgerUpdate(ok=True, already_recorded=True)

            used_codes.append(digest)
            side_writes_durable = self._record_activation(code, email)

            result = self.storage.write_json(USED_CODES_KEY, used_codes)
            if not result.ok:
                issue = self._report("marking key as used", result.error_code or "storage_error")
                return LedgerUpdate(ok=False, error_code=issue.code)

            durable = result.durable and side_writes_durable
            warning_code = None
            if not durable:
                warning_code = "key_saved_temporarily"
                log_event("warning", "[keys] used-key mark is session-scoped only", code_digest=digest)
            log_event("info", "[keys] key marked as used", code_digest=digest)
            return LedgerUpdate(ok=True, durable=durable, warning_code=warning_code)
        except Exception as exc:
            issue = self._handle_error("marking key as used", exc)
            return LedgerUpdate(ok=False, error_code=issue.code)

    def _record_activation(self, code: str, email: Optional[str]) -> bool:
        """Audit entry + admin ledger update.

        Failures are logged and never fail the mark. Returns False when
        either write only reached the session-scoped store.
        """
        entry = build_audit_entry(
            normalize_code(code),
            email,
            client=self.client,
            anonymous_user_id=get_anonymous_user_id(self.storage),
            language=self._language(),
        )
        audit_result = append_audit_entry(self.storage, entry, self.audit_max_entries)
        ledger_durable = self._update_admin_ledger(code, entry)
        return (not audit_result.ok or audit_result.durable) and ledger_durable

    def _update_admin_ledger(self, code: str, activation: AuditEntry) -> bool:
        ledger = self._load_admin_ledger()
        if ledger is None:
            # Unreadable: rewriting it from scratch would drop every other code
            logger.warning("[keys] admin key ledger not updated")
            return True

        variants = self._variants(code)
        target = next((v for v in variants if v in ledger), variants[-1])
        existing = ledger.get(target)
        record = AdminKeyEntry.model_validate(existing) if isinstance(existing, dict) else AdminKeyEntry()
        record = record.model_copy(
            update={
                "activated": True,
                "activation_date": activation.timestamp,
                "activation_details": activation.model_dump(by_alias=True),
            }
        )
        ledger[target] = record.model_dump(by_alias=True)

        result = self.storage.write_json(ADMIN_KEY_DATABASE_KEY, ledger)
        if not result.ok:
            logger.warning("[keys] admin key ledger write failed", extra={"error_code": result.error_code})
            return True
        return result.durable

"""
coursegate/main.py

Process-start wiring. Builds the storage tiers, message catalog, entitlement
manager and key validator once and hands them out as one AccessContext, so
presentation code never reaches for module-level singletons.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy.engine import Engine

from coursegate.core.config import Settings, get_database_url, settings, validate_config
from coursegate.core.database import check_connection, init_engine
from coursegate.core.logging import configure_logging
from coursegate.core.messages import MessageCatalog
from coursegate.features.activation.workflow import ActivationWorkflow, StageDelays
from coursegate.features.entitlements.service import EntitlementManager
from coursegate.features.keys.validator import KeyValidator, load_code_list
from coursegate.features.storage.service import FallbackStorage
from coursegate.features.storage.stores import MemoryKeyValueStore, SqlKeyValueStore
from coursegate.models.client import ClientContext

load_dotenv()

logger = logging.getLogger("coursegate")


@dataclass
class AccessContext:
    settings: Settings
    storage: FallbackStorage
    messages: MessageCatalog
    entitlements: EntitlementManager
    validator: KeyValidator
    delays: StageDelays

    def new_workflow(self, on_transition=None, on_activated=None) -> ActivationWorkflow:
        return ActivationWorkflow(
            self.entitlements,
            self.validator,
            delays=self.delays,
            on_transition=on_transition,
            on_activated=on_activated,
        )


def create_context(
    settings_obj: Optional[Settings] = None,
    client: Optional[ClientContext] = None,
    engine: Optional[Engine] = None,
) -> AccessContext:
    cfg = settings_obj or settings
    configure_logging(cfg.ENV)
    validate_config(settings_obj=cfg)

    if engine is None:
        url = get_database_url(cfg)
        engine = init_engine(url) if url else None

    secondary = MemoryKeyValueStore()
    if engine is not None:
        primary = SqlKeyValueStore(engine)
        if not check_connection(engine):
            logger.warning("[coursegate] database unreachable, activation state falls back to this session")
    else:
        # Without a database both tiers are session-scoped
        primary = MemoryKeyValueStore(name="primary")
    storage = FallbackStorage(primary, secondary)

    messages = MessageCatalog.from_settings(cfg)
    messages.ensure_default_language(storage)

    valid_codes = load_code_list(cfg.VALID_CODES_FILE) if cfg.VALID_CODES_FILE else None
    published = load_code_list(cfg.PUBLISHED_USED_DIGESTS_FILE, normalize=False)

    client = client or ClientContext()
    context = AccessContext(
        settings=cfg,
        storage=storage,
        messages=messages,
        entitlements=EntitlementManager(
            storage,
            messages,
            free_chapters=cfg.FREE_CHAPTERS,
            premium_chapters=cfg.PREMIUM_CHAPTERS,
            client=client,
        ),
        validator=KeyValidator(
            storage,
            messages,
            client=client,
            valid_codes=valid_codes,
            published_used_digests=published,
            audit_max_entries=cfg.AUDIT_LOG_MAX_ENTRIES,
        ),
        delays=StageDelays.from_settings(cfg),
    )
    logger.info(
        "[coursegate] access context ready",
        extra={"primary": type(primary).__name__, "premium_active": context.entitlements.is_premium_activated()},
    )
    return context

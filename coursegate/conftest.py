# coursegate/conftest.py
from types import SimpleNamespace

import pytest

from coursegate.core.database import build_engine, drop_all_tables
from coursegate.core.errors import StoreUnavailableError
from coursegate.core.messages import MessageCatalog
from coursegate.features.activation.workflow import ActivationWorkflow, StageDelays
from coursegate.features.entitlements.service import EntitlementManager
from coursegate.features.keys.validator import KeyValidator
from coursegate.features.storage.service import FallbackStorage
from coursegate.features.storage.stores import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from coursegate.models.client import ClientContext

FREE_CHAPTERS = list(range(0, 6))
PREMIUM_CHAPTERS = list(range(6, 25))


class FailingStore(KeyValueStore):
    """Store whose every call raises; counts the calls it refused."""

    name = "primary"
    durable = True

    def __init__(self, error: Exception = None):
        self.error = error or StoreUnavailableError("store disabled")
        self.calls = []

    def get(self, key):
        self.calls.append(("get", key))
        raise self.error

    def set(self, key, value):
        self.calls.append(("set", key))
        raise self.error

    def remove(self, key):
        self.calls.append(("remove", key))
        raise self.error


def make_settings(**overrides):
    defaults = dict(
        ENV="test",
        CONFIG_STRICT=False,
        DATABASE_URL="sqlite:///:memory:",
        TEST_DATABASE_URL=None,
        FREE_CHAPTERS=FREE_CHAPTERS,
        PREMIUM_CHAPTERS=PREMIUM_CHAPTERS,
        SUPPORTED_LANGUAGES=["en", "uz"],
        DEFAULT_LANGUAGE="uz",
        AUDIT_LOG_MAX_ENTRIES=1000,
        VALID_CODES_FILE=None,
        PUBLISHED_USED_DIGESTS_FILE=None,
        ACTIVATION_STAGE_DELAY_MS=0,
        ACTIVATION_FINAL_STAGE_DELAY_MS=0,
    )
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


@pytest.fixture
def engine():
    eng = build_engine("sqlite:///:memory:")
    yield eng
    drop_all_tables(eng)
    eng.dispose()


@pytest.fixture
def primary(engine):
    return SqlKeyValueStore(engine)


@pytest.fixture
def secondary():
    return MemoryKeyValueStore()


@pytest.fixture
def storage(primary, secondary):
    return FallbackStorage(primary, secondary)


@pytest.fixture
def degraded_storage(secondary):
    """Primary always fails; everything lands in the session-scoped store."""
    return FallbackStorage(FailingStore(), secondary)


@pytest.fixture
def broken_storage():
    return FallbackStorage(FailingStore(), FailingStore())


@pytest.fixture
def catalog():
    return MessageCatalog()


@pytest.fixture
def client():
    return ClientContext(
        user_agent="Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X)",
        language="en-US",
        platform="iPhone",
        referrer="https://t.me/some_channel",
        timezone="Asia/Tashkent",
    )


def build_manager(storage, catalog, client=None):
    return EntitlementManager(
        storage,
        catalog,
        free_chapters=FREE_CHAPTERS,
        premium_chapters=PREMIUM_CHAPTERS,
        client=client,
    )


def build_workflow(storage, catalog, client=None, **kwargs):
    manager = build_manager(storage, catalog, client)
    validator = KeyValidator(storage, catalog, client=client)
    return ActivationWorkflow(manager, validator, delays=StageDelays.disabled(), **kwargs)


@pytest.fixture
def manager(storage, catalog, client):
    return build_manager(storage, catalog, client)


@pytest.fixture
def validator(storage, catalog, client):
    return KeyValidator(storage, catalog, client=client)


@pytest.fixture
def workflow(manager, validator):
    return ActivationWorkflow(manager, validator, delays=StageDelays.disabled())

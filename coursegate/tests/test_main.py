"""Tests for process-start wiring."""

import pytest

from coursegate.conftest import make_settings
from coursegate.core.database import check_connection, dispose_engine
from coursegate.core.messages import LANGUAGE_PREFERENCE_KEY
from coursegate.features.keys.obfuscation import obfuscate_code
from coursegate.main import create_context
from coursegate.models.client import ClientContext


def test_context_stores_default_language(engine):
    context = create_context(make_settings(), engine=engine)
    assert context.storage.read(LANGUAGE_PREFERENCE_KEY).value == "uz"
    assert context.storage.primary.durable
    assert context.entitlements.accessible_chapters() == [0, 1, 2, 3, 4, 5]


def test_context_without_database_is_session_scoped():
    context = create_context(make_settings(DATABASE_URL=None))
    assert context.storage.primary.name == "primary"
    assert not context.storage.primary.durable


@pytest.mark.asyncio
async def test_end_to_end_activation(engine):
    context = create_context(make_settings(), client=ClientContext(language="en-US"), engine=engine)
    seen = []
    workflow = context.new_workflow(on_activated=seen.append)

    outcome = await workflow.submit("TEST-9876-WXYZ-4321", "someone@example.org")
    assert outcome.success
    assert seen == [outcome]
    assert context.entitlements.is_chapter_accessible(24)

    # A fresh context over the same database still sees the entitlement
    reopened = create_context(make_settings(), engine=engine)
    assert reopened.entitlements.is_premium_activated()
    assert reopened.validator.is_used("TEST9876WXYZ4321")


def test_code_files_are_loaded(engine, tmp_path):
    codes = tmp_path / "codes.txt"
    codes.write_text("CUST-0000-1111-2222\n", encoding="utf-8")
    digests = tmp_path / "used.txt"
    digests.write_text(obfuscate_code("CUST000033334444") + "\n", encoding="utf-8")

    context = create_context(
        make_settings(VALID_CODES_FILE=str(codes), PUBLISHED_USED_DIGESTS_FILE=str(digests)),
        engine=engine,
    )
    assert context.validator.is_valid("CUST000011112222")
    assert not context.validator.is_valid("DEMO1234ABCD5678")
    assert context.validator.is_used("CUST000033334444")


def test_context_builds_engine_from_settings():
    try:
        context = create_context(make_settings(DATABASE_URL="sqlite:///:memory:"))
        assert context.storage.primary.durable
        assert context.storage.write("probe", "1").tier == "primary"
        assert check_connection()
    finally:
        dispose_engine()

"""Tests for audit trail helpers."""

import re

import pytest

from coursegate.features.keys.audit import (
    ANONYMOUS_USER_ID_KEY,
    append_audit_entry,
    approximate_location,
    build_audit_entry,
    detect_source,
    get_anonymous_user_id,
    load_audit_log,
)
from coursegate.models.client import ClientContext

DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
ANDROID_UA = "Mozilla/5.0 (Linux; Android 14; Pixel 8)"


@pytest.mark.parametrize(
    "client,expected",
    [
        (None, "Direct"),
        (ClientContext(), "Direct"),
        (ClientContext(embedded_in="telegram", user_agent=DESKTOP_UA), "Telegram Bot"),
        (ClientContext(referrer="https://web.telegram.org/k/", user_agent=DESKTOP_UA), "Telegram Link"),
        (ClientContext(referrer="https://www.google.com/search?q=x", user_agent=ANDROID_UA), "Google Search"),
        (ClientContext(referrer="https://l.instagram.com/"), "Instagram Link"),
        (ClientContext(referrer="https://example.org/"), "Unknown"),
        (ClientContext(user_agent=ANDROID_UA), "Mobile Browser"),
        (ClientContext(user_agent=DESKTOP_UA), "Desktop Browser"),
    ],
)
def test_detect_source(client, expected):
    assert detect_source(client) == expected


@pytest.mark.parametrize(
    "client,expected",
    [
        (None, "Unknown"),
        (ClientContext(timezone="Asia/Tashkent", language="en-US"), "Uzbekistan"),
        (ClientContext(timezone="Europe/Berlin"), "Germany"),
        (ClientContext(timezone="Pacific/Fiji", language="ru-RU"), "Russia/CIS"),
        (ClientContext(language="en_GB"), "United Kingdom"),
        (ClientContext(language="en-AU"), "English-speaking country"),
        (ClientContext(language="ja-JP"), "Unknown"),
    ],
)
def test_approximate_location(client, expected):
    assert approximate_location(client) == expected


def test_anonymous_user_id_is_created_once(storage):
    first = get_anonymous_user_id(storage)
    assert re.match(r"^user_\d+_[0-9a-z]{9}$", first)
    assert storage.read(ANONYMOUS_USER_ID_KEY).value == first
    assert get_anonymous_user_id(storage) == first


def test_anonymous_user_id_without_storage(broken_storage):
    assert get_anonymous_user_id(broken_storage).startswith("session_")


def test_build_audit_entry_defaults():
    entry = build_audit_entry("DEMO1234ABCD5678", None, client=None, anonymous_user_id="user_1_abc", language="uz")
    assert entry.email == "Not provided"
    assert entry.referrer == "Direct"
    assert entry.source == "Direct"
    assert entry.approximate_location == "Unknown"

    doc = entry.model_dump(by_alias=True)
    for key in ("id", "key", "email", "timestamp", "userAgent", "source", "userId", "location", "language",
                "platform", "referrer"):
        assert key in doc


def test_audit_log_is_newest_first_and_capped(storage):
    ids = []
    for n in range(5):
        entry = build_audit_entry(f"CODE{n:012d}", None, client=None, anonymous_user_id="u", language="en")
        ids.append(entry.id)
        assert append_audit_entry(storage, entry, max_entries=3).ok

    log = load_audit_log(storage)
    assert [e["id"] for e in log] == [ids[4], ids[3], ids[2]]


def test_unreadable_log_reads_as_empty(broken_storage):
    assert load_audit_log(broken_storage) == []

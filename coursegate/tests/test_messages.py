"""Tests for the localized message table and language detection."""

from coursegate.core.messages import GENERIC_MESSAGE, LANGUAGE_PREFERENCE_KEY, MESSAGES, MessageCatalog


def test_every_message_has_both_languages():
    for message_id, entry in MESSAGES.items():
        assert entry.get("en"), message_id
        assert entry.get("uz"), message_id


def test_resolve_falls_back(catalog):
    assert catalog.resolve("invalid_key", "uz") == MESSAGES["invalid_key"]["uz"]
    assert catalog.resolve("invalid_key", "fr") == MESSAGES["invalid_key"]["en"]
    assert catalog.resolve("invalid_key") == MESSAGES["invalid_key"]["uz"]
    assert catalog.resolve("no_such_message", "en") == GENERIC_MESSAGE


def test_stored_preference_wins(catalog, storage):
    storage.write(LANGUAGE_PREFERENCE_KEY, "en")
    assert catalog.detect_language(storage, client_language="uz-UZ") == "en"


def test_unsupported_stored_preference_is_ignored(catalog, storage):
    storage.write(LANGUAGE_PREFERENCE_KEY, "klingon")
    assert catalog.detect_language(storage) == "uz"


def test_client_locale_primary_subtag(catalog):
    assert catalog.detect_language(client_language="en-GB") == "en"
    assert catalog.detect_language(client_language="uz_UZ") == "uz"
    assert catalog.detect_language(client_language="fr-FR") == "uz"
    assert catalog.detect_language() == "uz"


def test_unreadable_storage_means_no_preference(catalog, broken_storage):
    assert catalog.detect_language(broken_storage, client_language="en-US") == "en"
    assert catalog.ensure_default_language(broken_storage) is False


def test_ensure_default_language_does_not_overwrite(catalog, storage):
    assert catalog.ensure_default_language(storage) is True
    assert storage.read(LANGUAGE_PREFERENCE_KEY).value == "uz"

    storage.write(LANGUAGE_PREFERENCE_KEY, "en")
    catalog.ensure_default_language(storage)
    assert storage.read(LANGUAGE_PREFERENCE_KEY).value == "en"


def test_custom_catalog():
    catalog = MessageCatalog(table={"hello": {"en": "Hello", "ru": "Привет"}}, supported=("en", "ru"), default="en")
    assert catalog.resolve("hello", "ru") == "Привет"
    assert catalog.detect_language(client_language="ru-RU") == "ru"

"""
Localized user-facing messages.

A static message-id -> language -> text table. Error codes raised anywhere in
the core are message ids, so every failure can be rendered for the user in
the detected UI language. The table is plain data: swap in another mapping
(or more languages) through MessageCatalog.
"""

from typing import Dict, Iterable, Optional

GENERIC_MESSAGE = "An error occurred"
LANGUAGE_PREFERENCE_KEY = "preferred_language"

MessageTable = Dict[str, Dict[str, str]]

MESSAGES: MessageTable = {
    # Storage
    "storage_error": {
        "en": "Unable to save activation data. Please check your browser settings and try again.",
        "uz": "Faollashtirish ma'lumotlarini saqlab bo'lmadi. Brauzer sozlamalarini tekshiring va qayta urinib ko'ring.",
    },
    "storage_quota_exceeded": {
        "en": "Browser storage is full. Please clear some data and try again.",
        "uz": "Brauzer xotirasi to'lgan. Ba'zi ma'lumotlarni o'chirib, qayta urinib ko'ring.",
    },
    "security_error": {
        "en": "Security error. Please check your browser settings.",
        "uz": "Xavfsizlik xatosi. Brauzer sozlamalarini tekshiring.",
    },
    "network_error": {
        "en": "Network error. Please check your connection and try again.",
        "uz": "Tarmoq xatosi. Internetga ulanishni tekshiring va qayta urinib ko'ring.",
    },
    "activation_saved_temporarily": {
        "en": "Activation saved temporarily. You may need to reactivate when browser is closed.",
        "uz": "Faollashtirish vaqtincha saqlandi. Brauzer yopilganda qayta faollashtirish kerak bo'lishi mumkin.",
    },
    "key_saved_temporarily": {
        "en": "Key data saved temporarily. Key may be reusable when browser is closed.",
        "uz": "Kalit ma'lumotlari vaqtincha saqlandi. Brauzer yopilganda kalit qayta ishlatilishi mumkin.",
    },
    # Activation
    "activation_failed": {
        "en": "Activation failed. Please try again or contact support.",
        "uz": "Faollashtirish muvaffaqiyatsiz. Qayta urinib ko'ring yoki yordam so'rang.",
    },
    "validation_error": {
        "en": "Key validation error. Please try again.",
        "uz": "Kalit tekshirishda xato. Qayta urinib ko'ring.",
    },
    "submission_in_progress": {
        "en": "An activation is already in progress. Please wait.",
        "uz": "Faollashtirish allaqachon bajarilmoqda. Iltimos, kuting.",
    },
    "activation_cancelled": {
        "en": "Activation was cancelled.",
        "uz": "Faollashtirish bekor qilindi.",
    },
    # Input validation
    "email_required": {
        "en": "Email address is required.",
        "uz": "Email manzili kiritilishi shart",
    },
    "invalid_email": {
        "en": "Please enter a valid email address (for example: user@example.com)",
        "uz": "To'g'ri email manzili kiriting (masalan: user@example.com)",
    },
    "empty_key": {
        "en": "Please enter an activation key",
        "uz": "Iltimos, faollashtirish kalitini kiriting",
    },
    "invalid_key_length": {
        "en": "Activation key must be exactly 16 characters long",
        "uz": "Faollashtirish kaliti aynan 16 belgidan iborat bo'lishi kerak",
    },
    "invalid_key_characters": {
        "en": "Activation key can only contain letters and numbers",
        "uz": "Faollashtirish kalitida faqat harflar va raqamlar bo'lishi mumkin",
    },
    "invalid_key_format": {
        "en": "Invalid key format. Please enter a 16-character key in XXXX-XXXX-XXXX-XXXX format.",
        "uz": "Noto'g'ri kalit formati. XXXX-XXXX-XXXX-XXXX formatida 16 belgili kalitni kiriting.",
    },
    "key_already_used": {
        "en": "This activation key has already been used.",
        "uz": "Bu faollashtirish kaliti allaqachon ishlatilgan.",
    },
    "invalid_key": {
        "en": "Invalid activation key. Please check your key and try again.",
        "uz": "Noto'g'ri faollashtirish kaliti. Kalitni tekshiring va qayta urinib ko'ring.",
    },
    # Workflow stage status lines
    "stage_validating_email": {
        "en": "Checking email address...",
        "uz": "Email manzili tekshirilmoqda...",
    },
    "stage_validating_format": {
        "en": "Checking key format...",
        "uz": "Kalit formati tekshirilmoqda...",
    },
    "stage_checking_usage": {
        "en": "Checking whether the key was already used...",
        "uz": "Kalit mavjudligi tekshirilmoqda...",
    },
    "stage_checking_validity": {
        "en": "Checking key validity...",
        "uz": "Kalit haqiqiyligi tekshirilmoqda...",
    },
    "stage_activating": {
        "en": "Activating premium access...",
        "uz": "Premium kirish faollashtirilmoqda...",
    },
    "stage_marking_used": {
        "en": "Finalizing activation...",
        "uz": "Faollashtirish yakunlanmoqda...",
    },
    "stage_succeeded": {
        "en": "Premium access activated successfully!",
        "uz": "Premium kirish muvaffaqiyatli faollashtirildi!",
    },
    # Status
    "premium_active": {
        "en": "Premium access is active.",
        "uz": "Premium kirish faol.",
    },
    "premium_locked": {
        "en": "This chapter requires premium access.",
        "uz": "Bu bob premium kirishni talab qiladi.",
    },
}


class MessageCatalog:
    """Resolve message ids against a language table.

    Lookup order for a language: requested language, English, the catalog
    default, then the generic message.
    """

    def __init__(
        self,
        table: Optional[MessageTable] = None,
        supported: Iterable[str] = ("en", "uz"),
        default: str = "uz",
    ):
        self.table = table if table is not None else MESSAGES
        self.supported = tuple(supported)
        self.default = default

    @classmethod
    def from_settings(cls, settings_obj) -> "MessageCatalog":
        return cls(supported=settings_obj.SUPPORTED_LANGUAGES, default=settings_obj.DEFAULT_LANGUAGE)

    def resolve(self, message_id: str, language: Optional[str] = None) -> str:
        entry = self.table.get(message_id)
        if not entry:
            return GENERIC_MESSAGE
        lang = language or self.default
        return entry.get(lang) or entry.get("en") or entry.get(self.default) or GENERIC_MESSAGE

    def detect_language(self, storage=None, client_language: Optional[str] = None) -> str:
        """Persisted preference, else client locale, else the default.

        ``storage`` is anything with ``read(key)`` returning a StorageResult;
        an unreadable store is treated as "no preference".
        """
        if storage is not None:
            result = storage.read(LANGUAGE_PREFERENCE_KEY)
            if result.ok and result.found and result.value in self.supported:
                return result.value

        if client_language:
            primary = client_language.lower().replace("_", "-").split("-")[0]
            if primary in self.supported:
                return primary

        return self.default

    def ensure_default_language(self, storage) -> bool:
        """Persist the default language preference if none is stored yet.

        Returns True when a preference exists afterwards.
        """
        result = storage.read(LANGUAGE_PREFERENCE_KEY)
        if result.ok and result.found:
            return True
        return storage.write(LANGUAGE_PREFERENCE_KEY, self.default).ok

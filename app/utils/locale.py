"""Locale conversion from the admin UI format (en-GB) to the backend format (en_GB)."""

DEFAULT_BACKEND_LOCALE = "en_GB"


def to_backend_format(locale: str) -> str:
    return locale.replace("-", "_")


def normalize_to_backend(locale: str) -> str:
    """Normalize any incoming locale to the backend's underscore form; empty means en_GB."""
    if not locale:
        return DEFAULT_BACKEND_LOCALE
    return to_backend_format(locale) if "-" in locale else locale


# Snippet component names differ between the admin UI and the execution backend
_UI_TO_BACKEND_TYPE = {
    "DESCRIPTION": "DEFAULT",
    "CTA": "CTA",
    "FAQ": "FAQ",
}


def map_type_to_backend(ui_type: str) -> str:
    return _UI_TO_BACKEND_TYPE.get(ui_type, ui_type)

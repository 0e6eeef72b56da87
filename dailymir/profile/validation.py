"""Profile field rules and the avatar catalog.

Tier 1 leaf module: stdlib only. The server stays authoritative; these
checks only decide whether an update call is worth attempting.
"""

import re

USERNAME_MAX_LENGTH = 30
DISPLAY_NAME_MAX_LENGTH = 16
CUSTOM_UNIVERSITY_MAX_LENGTH = 80

USERNAME_REGEX = re.compile(r"^[a-z0-9._]{3,30}$")
DISPLAY_NAME_REGEX = re.compile(r"^[A-Za-z0-9 ]{2,16}$")

AVATAR_CATALOG: tuple[int, ...] = tuple(range(1, 13))
DEFAULT_AVATAR_ID = 1

_WHITESPACE = re.compile(r"\s+")


def normalize_username_input(value: str) -> str:
    """Trims, lowercases and cuts a username to its maximum length."""
    return value.strip().lower()[:USERNAME_MAX_LENGTH]


def collapse_display_name(value: str) -> str:
    """Collapses whitespace runs and trims, without cutting."""
    return _WHITESPACE.sub(" ", value).strip()


def normalize_display_name_input(value: str) -> str:
    """Collapses whitespace runs, trims and cuts to 16 characters."""
    return collapse_display_name(value)[:DISPLAY_NAME_MAX_LENGTH]


def is_valid_username(value: str) -> bool:
    return bool(USERNAME_REGEX.fullmatch(value))


def is_valid_display_name(value: str) -> bool:
    return bool(DISPLAY_NAME_REGEX.fullmatch(value))


def is_catalog_avatar(avatar_id: object) -> bool:
    return isinstance(avatar_id, int) and not isinstance(avatar_id, bool) and avatar_id in AVATAR_CATALOG


def safe_avatar_id(avatar_id: object) -> int:
    """Returns ``avatar_id`` if it is in the catalog, else the default avatar."""
    return avatar_id if is_catalog_avatar(avatar_id) else DEFAULT_AVATAR_ID  # type: ignore[return-value]


def avatar_url(base_url: str, avatar_id: int) -> str:
    """``{base}{id}.webp``, e.g. ``/avatars/3.webp``."""
    return f"{base_url}{avatar_id}.webp"


def default_username(username: str, email: str) -> str:
    """The username to prefill: the current one, else the email's local part."""
    if username:
        return normalize_username_input(username)
    return normalize_username_input(email.split("@")[0])

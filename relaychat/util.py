from __future__ import annotations

import os

from .constants import NAME_MAX_CHARS, ROSTER_SEP, ROUTE_DELIM, TARGET_SEP


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def normalize_name(value, *, max_chars: int = NAME_MAX_CHARS) -> str | None:
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if max_chars and len(s) > int(max_chars):
        return None

    # The roster separator would make USERLIST ambiguous. A name holding the
    # routing delimiter or the target separator could never be addressed.
    if ROSTER_SEP in s or ROUTE_DELIM in s or TARGET_SEP in s:
        return None

    if "\n" in s or "\r" in s or "\x00" in s:
        return None

    return s

from __future__ import annotations

ENCODING = "utf-8"


def encode_line(line: str) -> bytes:
    return (line + "\n").encode(ENCODING)


def decode_line(b: bytes) -> str:
    return strip_eol(b.decode(ENCODING, "replace"))


def strip_eol(s: str) -> str:
    if s.endswith("\n"):
        s = s[:-1]
    if s.endswith("\r"):
        s = s[:-1]
    return s

"""Header/body helpers for raw HTTP messages (core domain)."""

from __future__ import annotations

from typing import List, Sequence

HEADER_TERMINATOR = b"\r\n\r\n"


def body_offset(raw: bytes) -> int:
    """Index of the first body byte, or ``len(raw)`` when there is no body."""

    index = raw.find(HEADER_TERMINATOR)
    if index == -1:
        return len(raw)
    return index + len(HEADER_TERMINATOR)


def split_headers(raw: bytes) -> List[str]:
    """Header lines including the request/status line."""

    index = raw.find(HEADER_TERMINATOR)
    head = raw if index == -1 else raw[:index]
    text = head.decode("iso-8859-1")
    if index == -1:
        text = text.strip()
    return text.split("\r\n") if text else []


def build_http_message(headers: Sequence[str], body: bytes) -> bytes:
    return ("\r\n".join(headers) + "\r\n\r\n").encode("iso-8859-1") + body

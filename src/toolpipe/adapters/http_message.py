"""Raw HTTP bytes to core Message mapping adapter.

This keeps wire-format details out of the core matcher. Hosts that already
have parsed messages can build ``Message`` directly instead.
"""

from __future__ import annotations

from typing import Optional

from toolpipe.core.http import body_offset, split_headers
from toolpipe.core.models import Message
from toolpipe.core.ports import ScopePredicate


def build_message(
    raw: bytes,
    url: Optional[str] = None,
    in_scope: Optional[ScopePredicate] = None,
    is_request: bool = True,
    include_headers: bool = False,
) -> Message:
    """Build a core Message from a raw HTTP message.

    With ``include_headers`` the content is the whole message, otherwise only
    the body; header lines are always attached for header predicates.
    """

    content = raw if include_headers else raw[body_offset(raw) :]
    return Message(
        content=content,
        text=content.decode("utf-8", errors="replace"),
        headers=tuple(split_headers(raw)),
        url=url,
        in_scope=in_scope,
        is_request=is_request,
    )

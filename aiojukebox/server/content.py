"""Helpers to turn submitted URLs into content ids."""

from __future__ import annotations

import re
from urllib.parse import parse_qs, urlsplit

SHORT_LINK_HOSTS = ("youtu.be",)
"""Hosts whose first path segment is the content id."""

_EMBED_PATTERN = re.compile(r"/embed/([^/?]+)")


def _is_short_link(hostname: str) -> bool:
    return any(hostname == host or hostname.endswith("." + host) for host in SHORT_LINK_HOSTS)


def extract_content_id(source: str) -> str:
    """
    Extract the content id from a submitted URL.

    Short links use their first path segment, regular links their ``v`` query
    parameter, even when it is blank, and embed links the segment following
    ``/embed/``. Anything that is not an absolute URL, or a URL matching none
    of these forms, is used as the content id verbatim. No validation takes place.
    """
    try:
        parts = urlsplit(source.strip())
        hostname = parts.hostname
    except ValueError:
        return source
    if not parts.scheme or not hostname:
        return source

    if _is_short_link(hostname):
        segment = parts.path.lstrip("/").split("/", 1)[0]
        if segment:
            return segment

    video_ids = parse_qs(parts.query, keep_blank_values=True).get("v")
    if video_ids is not None:
        return video_ids[0]

    embed_match = _EMBED_PATTERN.search(parts.path)
    if embed_match:
        return embed_match.group(1)

    return source

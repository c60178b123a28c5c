"""
=============================================================================
REQUEST BODY ACQUISITION
=============================================================================

The body arrives as a stream of byte chunks. It is accumulated under a
hard size limit and then decoded according to Content-Type:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        BODY PIPELINE                                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   chunks ──► read_body() ──► total > limit? ──► PayloadTooLarge     │
    │                   │                                                  │
    │                   ▼                                                  │
    │              parse_body()                                            │
    │                   │                                                  │
    │     ┌─────────────┼────────────────┬───────────────────┐            │
    │     ▼             ▼                ▼                   ▼            │
    │  0 bytes     application/json   x-www-form-urlencoded  anything     │
    │  EmptyBody   JSONBody           FormBody               TextBody     │
    │  value {}    (or BadRequest)    flat dict, last wins   UTF-8 str    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The limit check happens per chunk, so an oversized upload is rejected as
soon as it crosses the limit rather than after it has been fully read.

Handlers dispatch on the body type:

    if isinstance(ctx.body, JSONBody):
        user = ctx.body.value["user"]

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union
from urllib.parse import parse_qsl
import json
import logging

from .errors import BadRequest, PayloadTooLarge


logger = logging.getLogger(__name__)


MAX_BODY_SIZE = 1024 * 1024  # 1 MiB


@dataclass(frozen=True)
class EmptyBody:
    """No payload. ``value`` is an empty dict so ``body.value.get()`` works."""

    value: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JSONBody:
    value: Any


@dataclass(frozen=True)
class FormBody:
    value: Dict[str, str]


@dataclass(frozen=True)
class TextBody:
    value: str


Body = Union[EmptyBody, JSONBody, FormBody, TextBody]


def parse_body(raw: bytes, content_type: Optional[str]) -> Body:
    """
    Decode a complete body.

    Args:
        raw: The full body bytes
        content_type: Request Content-Type header (may be None)

    Returns:
        One of EmptyBody, JSONBody, FormBody, TextBody

    Raises:
        BadRequest: Content-Type says JSON but the bytes are not JSON
    """
    if not raw:
        return EmptyBody()

    content_type = (content_type or "").lower()

    if "application/json" in content_type:
        try:
            return JSONBody(json.loads(raw))
        except (ValueError, UnicodeDecodeError) as e:
            raise BadRequest(f"Invalid JSON in request body: {e}") from e

    text = raw.decode("utf-8", errors="replace")

    if "application/x-www-form-urlencoded" in content_type:
        return FormBody(dict(parse_qsl(text, keep_blank_values=True)))

    return TextBody(text)


def read_body(
    chunks: Iterable[bytes],
    content_type: Optional[str],
    limit: int = MAX_BODY_SIZE,
) -> Body:
    """
    Accumulate a chunked body under ``limit`` bytes and decode it.

    Raises:
        PayloadTooLarge: as soon as the running total exceeds ``limit``
        BadRequest: malformed JSON
    """
    buffer = bytearray()
    for chunk in chunks:
        if not chunk:
            continue
        buffer.extend(chunk)
        if len(buffer) > limit:
            logger.debug(f"Body exceeded {limit} bytes, aborting read")
            raise PayloadTooLarge()
    return parse_body(bytes(buffer), content_type)

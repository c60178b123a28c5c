"""
=============================================================================
PATH PATTERNS
=============================================================================

Route templates are compiled once into anchored regular expressions:

    Template            Regex                          Params
    ──────────────────  ─────────────────────────────  ─────────────────
    /users              ^/users/?$                     []
    /users/:id          ^/users/([^/]+)/?$             ["id"]
    /a/:x/b/:y          ^/a/([^/]+)/b/([^/]+)/?$       ["x", "y"]
    /files/*            ^/files(?:/(.*))?$             ["wildcard"]
    /                   ^/?$                           []

Rules:

- Literal segments are matched verbatim (regex-escaped).
- ``:name`` captures exactly one segment (no slash).
- A trailing ``/*`` captures the remainder under the reserved name
  ``wildcard``. The remainder may be empty, so ``/files/*`` matches
  ``/files``, ``/files/`` and ``/files/a/b``.
- Any other template also matches with an optional trailing slash.
- A ``*`` segment anywhere but the end is a literal.
- Values come back exactly as they appear in the path. No URL decoding.

=============================================================================
"""

from dataclasses import dataclass
from typing import Dict, List, Tuple
import re
import threading


WILDCARD_PARAM = "wildcard"

_SEGMENT_PATTERN = "([^/]+)"
_WILDCARD_PATTERN = "(?:/(.*))?"


@dataclass(frozen=True)
class PathPattern:
    """Compiled form of a route template."""

    template: str
    regex: "re.Pattern[str]"
    param_names: Tuple[str, ...]


def compile_path(template: str) -> PathPattern:
    """
    Compile a route template.

    Args:
        template: Route template (e.g. "/users/:id", "/files/*")

    Returns:
        PathPattern with the anchored regex and ordered parameter names
    """
    param_names: List[str] = []

    has_wildcard = template.endswith("/*")
    body = template[:-2] if has_wildcard else template

    parts: List[str] = []
    for segment in body.split("/"):
        if segment.startswith(":") and len(segment) > 1:
            param_names.append(segment[1:])
            parts.append(_SEGMENT_PATTERN)
        else:
            parts.append(re.escape(segment))

    source = "/".join(parts)

    if has_wildcard:
        source += _WILDCARD_PATTERN
        param_names.append(WILDCARD_PARAM)
    else:
        # "/users/" and "/users" compile to the same thing
        if source.endswith("/"):
            source = source[:-1]
        source += "/?"

    return PathPattern(
        template=template,
        regex=re.compile(f"^{source}$"),
        param_names=tuple(param_names),
    )


def match_path(pattern: PathPattern, path: str) -> Tuple[bool, Dict[str, str]]:
    """
    Match a request path against a compiled pattern.

    Returns:
        (True, params) on a match, (False, {}) otherwise. Groups that did
        not participate in the match (an absent wildcard) come back as "".
    """
    match = pattern.regex.match(path)
    if match is None:
        return False, {}

    params: Dict[str, str] = {}
    for index, name in enumerate(pattern.param_names, start=1):
        params[name] = match.group(index) or ""
    return True, params


class PathPatternCache:
    """
    One compiled PathPattern per distinct template.

    Routes that share a template (every method registered by ``any()``)
    share the same compiled object.
    """

    def __init__(self):
        self._patterns: Dict[str, PathPattern] = {}
        self._lock = threading.Lock()

    def get(self, template: str) -> PathPattern:
        pattern = self._patterns.get(template)
        if pattern is not None:
            return pattern
        with self._lock:
            pattern = self._patterns.get(template)
            if pattern is None:
                pattern = compile_path(template)
                self._patterns[template] = pattern
            return pattern

    def __contains__(self, template: str) -> bool:
        return template in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

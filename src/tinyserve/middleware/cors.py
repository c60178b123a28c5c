"""
=============================================================================
CORS HEADERS
=============================================================================

Cross-Origin Resource Sharing headers are injected by the pipeline on
EVERY response, before routing, so even 404s and 429s carry them.

=============================================================================
ORIGIN NEGOTIATION
=============================================================================

    ┌──────────────────────────────┬────────────────────────────────────┐
    │ Situation                    │ Access-Control-Allow-Origin        │
    ├──────────────────────────────┼────────────────────────────────────┤
    │ no Origin header             │ *                                  │
    │ allow-list empty             │ *                                  │
    │ allow-list contains "*"      │ *                                  │
    │ Origin in allow-list         │ <origin>   (+ Vary: Origin)        │
    │ otherwise                    │ (header omitted)                   │
    └──────────────────────────────┴────────────────────────────────────┘

Whatever the origin outcome, the preflight trio is always sent:

    Access-Control-Allow-Methods: GET, POST, PUT, DELETE, PATCH, OPTIONS
    Access-Control-Allow-Headers: Content-Type, Authorization
    Access-Control-Max-Age: 86400

Vary: Origin matters when the allow-origin value is echoed: without it a
shared cache could hand origin A's response to origin B.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..http.response import ResponseWriter


DEFAULT_ALLOW_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"]
DEFAULT_ALLOW_HEADERS = ["Content-Type", "Authorization"]


@dataclass
class CORSPolicy:
    """
    Which origins may read responses.

        CORSPolicy()                                  # any origin
        CORSPolicy(allowed_domains=["https://app.example.com"])
    """

    # ─────────────────────────────────────────────────────────────────────
    # Origins allowed to read responses; "*" or an empty list means any
    # ─────────────────────────────────────────────────────────────────────
    allowed_domains: List[str] = field(default_factory=lambda: ["*"])

    allow_methods: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOW_METHODS))
    allow_headers: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOW_HEADERS))

    # ─────────────────────────────────────────────────────────────────────
    # Preflight cache duration in seconds
    # ─────────────────────────────────────────────────────────────────────
    max_age: int = 86400

    def allow_origin_for(self, origin: Optional[str]) -> Optional[str]:
        """
        The Access-Control-Allow-Origin value for ``origin``, or None
        when the origin is not allowed.
        """
        if not origin or not self.allowed_domains or "*" in self.allowed_domains:
            return "*"
        if origin in self.allowed_domains:
            return origin
        return None

    def apply(self, writer: ResponseWriter, origin: Optional[str]) -> None:
        """Set the CORS headers for a request carrying ``origin``."""
        allow_origin = self.allow_origin_for(origin)
        if allow_origin is not None:
            writer.set_header("Access-Control-Allow-Origin", allow_origin)
            if allow_origin != "*":
                _add_vary(writer, "Origin")

        writer.set_header("Access-Control-Allow-Methods", ", ".join(self.allow_methods))
        writer.set_header("Access-Control-Allow-Headers", ", ".join(self.allow_headers))
        writer.set_header("Access-Control-Max-Age", self.max_age)


def _add_vary(writer: ResponseWriter, name: str) -> None:
    vary = writer.get_header("Vary")
    if not vary:
        writer.set_header("Vary", name)
    elif name.lower() not in [v.strip().lower() for v in vary.split(",")]:
        writer.set_header("Vary", f"{vary}, {name}")

"""
=============================================================================
SECURITY HEADERS
=============================================================================

Injected on every response alongside the CORS headers:

    ┌─────────────────────────────┬────────────────────────────────────────┐
    │ Header                      │ Value                                  │
    ├─────────────────────────────┼────────────────────────────────────────┤
    │ X-Content-Type-Options      │ nosniff                                │
    │ X-Frame-Options             │ DENY                                   │
    │ Content-Security-Policy     │ default-src 'self'; script-src 'self'; │
    │                             │ object-src 'none'                      │
    │ X-XSS-Protection            │ 1; mode=block                          │
    │ Strict-Transport-Security   │ max-age=31536000; includeSubDomains    │
    │                             │ (TLS transports only)                  │
    └─────────────────────────────┴────────────────────────────────────────┘

HSTS over plaintext is ignored by browsers and can break local
development, so it is only sent when the transport is TLS-backed.

=============================================================================
"""

from ..http.response import ResponseWriter


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Content-Security-Policy": "default-src 'self'; script-src 'self'; object-src 'none'",
    "X-XSS-Protection": "1; mode=block",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


def apply_security_headers(writer: ResponseWriter, secure: bool) -> None:
    for name, value in SECURITY_HEADERS.items():
        writer.set_header(name, value)
    if secure:
        writer.set_header("Strict-Transport-Security", HSTS_VALUE)

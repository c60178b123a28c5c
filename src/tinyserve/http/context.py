"""
=============================================================================
REQUEST CONTEXT AND RESPONSE HELPERS
=============================================================================

Handlers and middlewares receive a single ``RequestContext``:

    def get_user(ctx):
        return ctx.json({"id": ctx.params["id"]})

    def create_user(ctx):
        return ctx.status(201).json(ctx.body.value)

    def legacy(ctx):
        return ctx.redirect("/v2/users", 301)

    ┌─────────────────────────────────────────────────────────────────────┐
    │                        RequestContext                               │
    ├─────────────────────────────────────────────────────────────────────┤
    │  request   inbound Request          params   {"id": "42"}           │
    │  response  ResponseWriter (raw)     query    {"page": "2"}          │
    │  headers   lower-cased names        body     EmptyBody/JSONBody/... │
    │  path      "/users/42"              state    {} (middleware scratch)│
    ├─────────────────────────────────────────────────────────────────────┤
    │  text() json() html() form() binary() redirect() status() raw()     │
    └─────────────────────────────────────────────────────────────────────┘

Helpers only BUILD a HandlerResponse; nothing is written until the
pipeline serializes it.

=============================================================================
"""

from typing import Any, Dict, Optional, Union

from .response import HandlerResponse, ResponseWriter


class ResponseHelpers:
    """
    Response builders, optionally bound to a status code.

    ``ctx.status(201)`` returns a ResponseHelpers bound to 201 so
    ``ctx.status(201).json(...)`` reads naturally. An explicit ``status``
    argument to a helper always wins over the bound code. ``redirect``
    ignores the bound code and keeps its own 302 default.
    """

    def __init__(self, writer: Optional[ResponseWriter] = None, code: Optional[int] = None):
        self._writer = writer
        self._code = code

    def _status(self, status: Optional[int]) -> int:
        if status is not None:
            return status
        if self._code is not None:
            return self._code
        return 200

    def text(self, content: str, status: Optional[int] = None) -> HandlerResponse:
        return HandlerResponse(
            status_code=self._status(status),
            body=content,
            headers={"Content-Type": "text/plain"},
        )

    def json(self, data: Any, status: Optional[int] = None) -> HandlerResponse:
        return HandlerResponse(
            status_code=self._status(status),
            body=data,
            headers={"Content-Type": "application/json"},
        )

    def html(self, content: str, status: Optional[int] = None) -> HandlerResponse:
        return HandlerResponse(
            status_code=self._status(status),
            body=content,
            headers={"Content-Type": "text/html"},
        )

    def form(self, content: str, status: Optional[int] = None) -> HandlerResponse:
        return HandlerResponse(
            status_code=self._status(status),
            body=content,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    def binary(
        self,
        content: Union[bytes, bytearray],
        content_type: str = "application/octet-stream",
        status: Optional[int] = None,
    ) -> HandlerResponse:
        return HandlerResponse(
            status_code=self._status(status),
            body=bytes(content),
            headers={
                "Content-Type": content_type,
                "Content-Length": str(len(content)),
            },
            is_raw=True,
        )

    def redirect(self, url: str, status: int = 302) -> HandlerResponse:
        return HandlerResponse(
            status_code=status,
            body=None,
            headers={"Location": url},
        )

    def status(self, code: int) -> "ResponseHelpers":
        return ResponseHelpers(self._writer, code)

    def raw(self) -> ResponseWriter:
        """
        The underlying writer.

        A handler that calls ``raw().end(...)`` takes over the response;
        whatever it returns afterwards is ignored.
        """
        return self._writer


class RequestContext(ResponseHelpers):
    """
    Per-request state handed to middlewares and the handler.

    Attributes:
        request: The inbound Request
        response: The transport's ResponseWriter
        params: Path parameters from the matched route
        query: Query parameters (last value wins on duplicates)
        body: Parsed body (EmptyBody when there is none)
        headers: Request headers, names lower-cased
        path: Request path without query string
        state: Scratch space shared along the middleware chain
    """

    def __init__(
        self,
        request,
        response: ResponseWriter,
        params: Optional[Dict[str, str]] = None,
        query: Optional[Dict[str, str]] = None,
        body: Any = None,
        path: str = "/",
    ):
        super().__init__(response)
        self.request = request
        self.response = response
        self.params = params or {}
        self.query = query or {}
        self.body = body
        self.headers: Dict[str, str] = dict(request.headers)
        self.path = path
        self.state: Dict[str, Any] = {}

    @property
    def method(self) -> str:
        return self.request.method

    def __repr__(self) -> str:
        return f"<RequestContext {self.request.method} {self.path} params={self.params}>"

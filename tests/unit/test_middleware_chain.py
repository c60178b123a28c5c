"""
Unit tests for the middleware continuation chain.
"""

import pytest

from conftest import make_request
from tinyserve.http import BufferedResponseWriter, MiddlewareError, RequestContext
from tinyserve.middleware import FunctionMiddleware, Middleware, MiddlewareChain, function_middleware, run_chain


def make_context() -> RequestContext:
    request = make_request("GET", "/")
    return RequestContext(request=request, response=BufferedResponseWriter(), path="/")


class TestRunChain:
    """Tests for run_chain."""

    def test_no_middlewares_calls_handler(self):
        """Test an empty chain calls the handler directly."""
        ctx = make_context()
        result = run_chain(ctx, [], lambda c: c.text("hi"))
        assert result.body == "hi"

    def test_order_and_unwinding(self):
        """Test middlewares run in order and unwind in reverse."""
        events = []

        def outer(ctx, next):
            events.append("outer in")
            result = next()
            events.append("outer out")
            return result

        def inner(ctx, next):
            events.append("inner in")
            result = next()
            events.append("inner out")
            return result

        def handler(ctx):
            events.append("handler")
            return ctx.text("ok")

        run_chain(make_context(), [outer, inner], handler)
        assert events == ["outer in", "inner in", "handler", "inner out", "outer out"]

    def test_short_circuit_never_reaches_handler(self):
        """Test a middleware that does not call next() stops the chain."""
        reached = []

        def deny(ctx, next):
            return ctx.status(403).json({"error": "Forbidden"})

        def later(ctx, next):
            reached.append("later")
            return next()

        def handler(ctx):
            reached.append("handler")

        result = run_chain(make_context(), [deny, later], handler)

        assert result.status_code == 403
        assert reached == []

    def test_middleware_can_replace_result(self):
        """Test a middleware may transform the downstream result."""

        def add_header(ctx, next):
            result = next()
            result.headers["X-Wrapped"] = "yes"
            return result

        result = run_chain(make_context(), [add_header], lambda c: c.text("body"))
        assert result.headers["X-Wrapped"] == "yes"

    def test_state_shared_along_chain(self):
        """Test context.state is visible to later middlewares and the handler."""

        def set_user(ctx, next):
            ctx.state["user"] = "alice"
            return next()

        result = run_chain(make_context(), [set_user], lambda c: c.json({"user": c.state["user"]}))
        assert result.body == {"user": "alice"}

    def test_next_twice_raises(self):
        """Test calling next() twice from one middleware is an error."""
        calls = []

        def greedy(ctx, next):
            next()
            return next()

        def handler(ctx):
            calls.append(1)
            return ctx.text("ok")

        with pytest.raises(MiddlewareError, match="greedy"):
            run_chain(make_context(), [greedy], handler)
        assert calls == [1]

    def test_exceptions_propagate(self):
        """Test handler exceptions pass through the chain."""

        def passthrough(ctx, next):
            return next()

        def handler(ctx):
            raise KeyError("missing")

        with pytest.raises(KeyError):
            run_chain(make_context(), [passthrough], handler)


class TestMiddlewareChain:
    """Tests for MiddlewareChain."""

    def test_globals_run_before_extra(self):
        """Test run() applies globals, then route middlewares."""
        order = []
        chain = MiddlewareChain()
        chain.add(lambda ctx, next: order.append("global") or next())

        def route_mw(ctx, next):
            order.append("route")
            return next()

        chain.run(make_context(), lambda c: order.append("handler"), [route_mw])
        assert order == ["global", "route", "handler"]

    def test_add_rejects_non_callable(self):
        """Test only callables are accepted."""
        with pytest.raises(TypeError):
            MiddlewareChain().add("not a middleware")

    def test_len_and_iter(self):
        """Test introspection."""
        first = lambda ctx, next: next()
        chain = MiddlewareChain([first])
        assert len(chain) == 1
        assert list(chain) == [first]


class TestMiddlewareClasses:
    """Tests for the Middleware base classes."""

    def test_subclass(self):
        """Test class-based middleware runs in a chain."""

        class Tagger(Middleware):
            def __call__(self, context, next):
                context.state["tagged"] = True
                return next()

        tagger = Tagger()
        ctx = make_context()
        run_chain(ctx, [tagger], lambda c: c.text("ok"))

        assert ctx.state["tagged"] is True
        assert tagger.name == "Tagger"

    def test_function_middleware(self):
        """Test wrapping a function keeps its name."""

        @function_middleware
        def timing(ctx, next):
            return next()

        assert isinstance(timing, FunctionMiddleware)
        assert timing.name == "timing"
        assert run_chain(make_context(), [timing], lambda c: c.text("x")).body == "x"

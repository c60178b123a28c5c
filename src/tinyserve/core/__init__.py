"""
Transports: the TCP listener, HTTP/1.1 connections, HTTP/2 over TLS,
the TLS context and the worker pool.
"""

from .connection import BodyReader, Connection, HTTP11Protocol, HTTP11ResponseWriter
from .http2 import H2Protocol
from .socket_server import SocketServer
from .thread_pool import ThreadPool
from .tls import create_ssl_context

__all__ = [
    "BodyReader",
    "Connection",
    "HTTP11Protocol",
    "HTTP11ResponseWriter",
    "H2Protocol",
    "SocketServer",
    "ThreadPool",
    "create_ssl_context",
]

"""
The network engine the factory drives.

    thread_pool.py   per-service bounded worker pool
    connection.py    one client connection (plain or TLS)
    connector.py     bound listening socket + acceptor threads
    engine.py        Server: connectors + handler + pool
"""

from .connection import Connection, ConnectionState
from .connector import ServerConnector
from .engine import Server
from .thread_pool import ThreadPool, create_pool

__all__ = [
    "Connection",
    "ConnectionState",
    "Server",
    "ServerConnector",
    "ThreadPool",
    "create_pool",
]

"""
Built-in status handler.

Mounted by the CLI on every service it starts; applications can mount it
too:

    factory.start("billing", {"/status": StatusHandler(factory, "billing")})

    GET /status   200 {"service": "billing", "status": "running",
                       "uptime_seconds": 12.3, "ports": [9000],
                       "pool": {...}}
"""

import platform
import time

from .http import HTTPStatus, ResponseBuilder
from .http.request import HTTPRequest
from .http.response import HTTPResponse


class StatusHandler:
    """Reports whether ``service_name`` is running and how busy it is."""

    def __init__(self, factory, service_name: str, include_system_info: bool = False):
        self.factory = factory
        self.service_name = service_name
        self.include_system_info = include_system_info

    def __call__(self, request: HTTPRequest) -> HTTPResponse:
        instance = self.factory.get(self.service_name)

        if instance is None:
            body = {"service": self.service_name, "status": "stopped"}
            status = HTTPStatus.SERVICE_UNAVAILABLE
        else:
            body = {
                "service": self.service_name,
                "status": "running",
                "uptime_seconds": round(time.time() - instance.started_at, 1),
                "ports": instance.ports,
                "pool": instance.thread_pool.stats,
            }
            status = HTTPStatus.OK

        if self.include_system_info:
            body["system"] = {
                "hostname": platform.node(),
                "python": platform.python_version(),
            }

        return (ResponseBuilder()
            .status(status)
            .header("Cache-Control", "no-store")
            .json(body)
            .build())

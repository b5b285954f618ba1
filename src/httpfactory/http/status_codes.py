"""
Status codes the engine, the routing contexts and the baseline filters
answer with. Each member carries its reason phrase:

    HTTPStatus.SERVICE_UNAVAILABLE          # 503, saturated worker pool
    HTTPStatus.SERVICE_UNAVAILABLE.phrase   # "Service Unavailable"

Members compare equal to plain ints, so handlers may use either.
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """Status code with its reason phrase."""

    def __new__(cls, code: int, phrase: str):
        member = int.__new__(cls, code)
        member._value_ = code
        member.phrase = phrase
        return member

    OK = 200, "OK"
    CREATED = 201, "Created"
    ACCEPTED = 202, "Accepted"
    NO_CONTENT = 204, "No Content"

    BAD_REQUEST = 400, "Bad Request"
    UNAUTHORIZED = 401, "Unauthorized"
    FORBIDDEN = 403, "Forbidden"
    NOT_FOUND = 404, "Not Found"
    METHOD_NOT_ALLOWED = 405, "Method Not Allowed"
    REQUEST_TIMEOUT = 408, "Request Timeout"
    PAYLOAD_TOO_LARGE = 413, "Payload Too Large"
    REQUEST_HEADER_FIELDS_TOO_LARGE = 431, "Request Header Fields Too Large"

    # Dispatch failures, pool saturation and async timeouts land here.
    INTERNAL_SERVER_ERROR = 500, "Internal Server Error"
    NOT_IMPLEMENTED = 501, "Not Implemented"
    SERVICE_UNAVAILABLE = 503, "Service Unavailable"
    HTTP_VERSION_NOT_SUPPORTED = 505, "HTTP Version Not Supported"

    def __str__(self) -> str:
        return str(self.value)

    @property
    def is_success(self) -> bool:
        return 200 <= self.value < 300

    @property
    def is_error(self) -> bool:
        return self.value >= 400

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MALFORMED_FRAME = "malformed_frame"
    EMPTY_RESPONSE_BODY = "empty_response_body"
    HTTP_ERROR = "http_error"
    STREAM_ERROR_EVENT = "stream_error_event"
    TRANSPORT_ERROR = "transport_error"
    NETWORK_ABORT = "network_abort"


class ChatStreamError(Exception):
    """A failure that ends the current submission.

    `str(err)` is the text shown in the error banner.
    """

    def __init__(self, kind: ErrorKind, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"ChatStreamError({self.kind.value!r}, {self.message!r}, status_code={self.status_code})"

"""Status codes and the error a request handler reports to its caller."""

from __future__ import annotations

from enum import IntEnum


class Code(IntEnum):
    """Canonical RPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16

    @property
    def label(self) -> str:
        """The code's name as it appears on the wire, e.g. ``NotFound``."""
        special = {Code.OK: "OK", Code.CANCELLED: "Canceled"}
        if self in special:
            return special[self]
        return "".join(part.capitalize() for part in self.name.split("_"))


class StatusError(Exception):
    """An error that carries a status code back to the client."""

    def __init__(self, code: Code, message: str) -> None:
        super().__init__(message)
        self.code = Code(code)
        self.message = message

    def __str__(self) -> str:
        return f"rpc error: code = {self.code.label} desc = {self.message}"

    def __repr__(self) -> str:
        return f"StatusError({self.code.name}, {self.message!r})"
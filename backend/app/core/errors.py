"""Ledger result type and error taxonomy

Service functions that can fail for business reasons return ``Ok(value)`` or
``Err(...)`` instead of raising. Routers translate ``Err`` into an HTTP
response; scripts and other callers that prefer exceptions use ``unwrap()``.

Whether an ``Err`` left the database mutated depends on the path: the
insufficient-credits error from ``record_usage`` is returned *after* the
subscription was drained and marked exhausted, while validation errors never
touch the database.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    PAYMENT_REQUIRED = "payment_required"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limit"
    STORAGE = "storage"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.PAYMENT_REQUIRED: 402,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.STORAGE: 500,
}


class LedgerError(Exception):
    """Raised by ``Err.unwrap()``"""

    def __init__(self, err: "Err"):
        super().__init__(f"{err.code}: {err.message}")
        self.err = err

    @property
    def kind(self) -> ErrorKind:
        return self.err.kind

    @property
    def code(self) -> str:
        return self.err.code


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    code: str  # e.g. "payment_required:credits"
    message: str

    @property
    def ok(self) -> bool:
        return False

    @property
    def status_code(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def unwrap(self):
        raise LedgerError(self)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


Result = Union[Ok[T], Err]


def validation_error(code: str, message: str) -> Err:
    return Err(ErrorKind.VALIDATION, code, message)


def payment_required(message: str) -> Err:
    return Err(ErrorKind.PAYMENT_REQUIRED, "payment_required:credits", message)


def not_found(entity: str, message: str) -> Err:
    return Err(ErrorKind.NOT_FOUND, f"not_found:{entity}", message)


def rate_limited(message: str) -> Err:
    return Err(ErrorKind.RATE_LIMITED, "rate_limit:chat", message)


def storage_error(message: str) -> Err:
    return Err(ErrorKind.STORAGE, "bad_request:database", message)

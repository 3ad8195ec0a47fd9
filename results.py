"""Result types shared by both storage backends.

Every storage operation returns one of three results:

* ``Ok(data)`` -- the operation succeeded.
* ``DomainError(kind, error)`` -- an expected business outcome such as a
  missing record or a cross-team access attempt.
* ``TransportError(error)`` -- the store itself failed (connection, SQL).

All three expose ``success`` and ``to_dict()`` so UI code can keep branching
on the ``{"success": ..., "data"/"error": ...}`` envelope.
"""
from dataclasses import dataclass, field
from typing import Any, Optional

# Domain error kinds
NOT_FOUND = "not_found"
ACCESS_DENIED = "access_denied"
ALREADY_EXISTS = "already_exists"
IN_USE = "in_use"
INVALID_CREDENTIALS = "invalid_credentials"
INVALID = "invalid"


class StorageError(Exception):
    pass


class ConfigurationError(StorageError):
    """Required configuration (e.g. the database URL) is missing or invalid."""


class ConnectionTimeout(StorageError):
    """The connection probe did not answer within the allowed time."""


class InvalidRecord(StorageError, ValueError):
    """Caller-supplied values that cannot be stored as given."""


@dataclass(frozen=True)
class Ok:
    data: Any = None
    success = True

    def to_dict(self):
        return {"success": True, "data": self.data}


@dataclass(frozen=True)
class DomainError:
    kind: str
    error: str
    success = False

    def to_dict(self):
        return {"success": False, "error": self.error}


@dataclass(frozen=True)
class TransportError:
    error: str
    cause: Optional[BaseException] = field(default=None, compare=False, repr=False)
    success = False

    def to_dict(self):
        return {"success": False, "error": self.error}


def not_found(message):
    return DomainError(NOT_FOUND, message)


def access_denied(message):
    return DomainError(ACCESS_DENIED, message)


def invalid(message):
    return DomainError(INVALID, message)

"""Tagged outcomes returned by the team services.

Every service operation returns either ``Ok(value)`` or ``Err(kind, message)``.
Callers branch on the type; the HTTP layer maps ``ErrorKind`` to a status code.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    FORBIDDEN = "Forbidden"
    ALREADY_IN_TEAM = "AlreadyInTeam"
    TEAM_FULL = "TeamFull"
    DUPLICATE_PENDING = "DuplicatePending"
    INVALID_STATE = "InvalidState"
    NOT_FOUND = "NotFound"
    LEADER_CANNOT_LEAVE = "LeaderCannotLeave"


DEFAULT_MESSAGES = {
    ErrorKind.FORBIDDEN: "You are not allowed to do that",
    ErrorKind.ALREADY_IN_TEAM: "You are already a member of a team. Leave your current team first.",
    ErrorKind.TEAM_FULL: "Team is full",
    ErrorKind.DUPLICATE_PENDING: "A pending request already exists",
    ErrorKind.INVALID_STATE: "This is no longer pending",
    ErrorKind.NOT_FOUND: "Not found",
    ErrorKind.LEADER_CANNOT_LEAVE: "Transfer leadership before leaving the team",
}


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T = None

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    message: str = ""

    def __post_init__(self):
        if not self.message:
            object.__setattr__(self, "message", DEFAULT_MESSAGES[self.kind])

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[Any], Err]

from dataclasses import dataclass, field
from typing import Generic, List, TypeVar, Union

T = TypeVar("T")
E = TypeVar("E", bound="WasteLensError")


class WasteLensError(Exception):
    """Base class for every error the core hands back to a caller."""


class ValidationError(WasteLensError):
    """
    Malformed input: a shipping address missing fields, a classification
    response out of range, etc. Always carries human-readable messages.
    """

    def __init__(self, messages: List[str]):
        self.messages = list(messages)
        super().__init__("; ".join(self.messages) or "Validation failed")


class CollaboratorError(WasteLensError):
    """An external call (vision model, Firestore, local storage) failed."""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        self.message = message
        super().__init__(f"{collaborator}: {message}")


class DataIntegrityWarning(UserWarning):
    """A stored record failed a sanity check and was left out of aggregation."""


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class Err(Generic[E]):
    error: E
    ok: bool = field(default=False, init=False)


Result = Union[Ok[T], Err[WasteLensError]]

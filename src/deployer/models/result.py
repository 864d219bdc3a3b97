"""Tagged result type returned at the device backend boundary."""

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from deployer.errors import BackendError

T = TypeVar("T")


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Remote operation succeeded."""

    value: T = None

    def unwrap(self, operation: str) -> T:
        return self.value


@dataclass(frozen=True)
class Err:
    """Remote operation failed with a message."""

    message: str

    def unwrap(self, operation: str) -> Any:
        raise BackendError(operation, self.message)


BackendResult = Union[Ok[T], Err]

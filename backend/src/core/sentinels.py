from typing import Any, TypeVar, Union

T = TypeVar("T")


class MissingType:
    """
    Type of the MISSING sentinel: a patch field the caller did not send.

    Group patches need to tell "leave unchanged" (MISSING) apart from
    "clear this field" (None), e.g. notes.
    """
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(MissingType, cls).__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False

    def __copy__(self):
        return self

    def __deepcopy__(self, memo: Any):
        return self


MISSING = MissingType()

Maybe = Union[T, MissingType]


def is_set(value: Any) -> bool:
    """True if a patch field was provided (including an explicit None)."""
    return value is not MISSING

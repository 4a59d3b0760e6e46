from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


def _key(name: str | Enum) -> str:
    # Enum members and their plain string values address the same slot
    return name.value if isinstance(name, Enum) else name


class Registry(Generic[T]):
    """
    Named slots for pluggable implementations (job processors, dead letter
    handlers). Keys may be given as enum members or their string values.

    Re-registering a key replaces the previous implementation until the
    registry is frozen.
    """

    def __init__(self, name: str):
        self.name = name
        self._slots: dict[str, T] = {}
        self._frozen = False

    def register(self, name: str | Enum, implementation: T) -> None:
        key = _key(name)
        if self._frozen:
            raise RuntimeError(
                f"Cannot register '{key}' in {self.name.lower()} registry: "
                "registry is frozen in production mode"
            )
        self._slots[key] = implementation

    def get(self, name: str | Enum) -> T:
        key = _key(name)
        try:
            return self._slots[key]
        except KeyError:
            raise KeyError(
                f"No {self.name.lower()} implementation registered with name: {key}"
            ) from None

    def has(self, name: str | Enum) -> bool:
        return _key(name) in self._slots

    def list(self) -> list[str]:
        """Registered keys in registration order."""
        return list(self._slots)

    def freeze(self) -> None:
        """Reject further registrations (done at startup outside development)."""
        self._frozen = True

    def is_frozen(self) -> bool:
        return self._frozen

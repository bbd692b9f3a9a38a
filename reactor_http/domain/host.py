"""Validated bind host value."""

from dataclasses import dataclass


@dataclass(frozen=True)
class Host:
    """Non-empty hostname or address the server binds to."""

    value: str

    def __post_init__(self) -> None:
        if not self.value:
            raise ValueError(f"Could not construct Host from '{self.value}'")

    def __str__(self) -> str:
        return self.value


LOCALHOST = Host("localhost")

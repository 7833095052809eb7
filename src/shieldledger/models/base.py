"""
Common behaviour for versioned ledger entities.

Entities are frozen dataclasses. An operation never mutates one in place: it
derives a replacement with `evolve(...)` and hands it to the store, which
stamps the next version on commit.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, ClassVar, TypeVar

E = TypeVar("E", bound="LedgerEntity")


@dataclass(frozen=True)
class LedgerEntity:
    kind: ClassVar[str] = ""

    @property
    def key(self) -> str:
        raise NotImplementedError

    def evolve(self: E, **changes: Any) -> E:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict; enums collapse to their values."""
        result = asdict(self)
        for name, value in result.items():
            if isinstance(value, Enum):
                result[name] = value.value
        return result

    @classmethod
    def from_dict(cls: type[E], data: dict[str, Any]) -> E:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

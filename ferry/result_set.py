"""Immutable result of a single read, create, update or destroy call."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping, Optional


@dataclass(frozen=True)
class ResultSet:
    """Records returned by a proxy, plus optional metadata.

    records is always a tuple. A single mapping is wrapped into a
    one-element tuple and None becomes an empty tuple.
    """
    records: tuple = ()
    total_count: Optional[int] = None
    message: Optional[str] = None

    def __post_init__(self):
        records: Any = self.records
        if records is None:
            records = ()
        elif isinstance(records, Mapping):
            records = (records,)
        else:
            records = tuple(records)
        object.__setattr__(self, "records", records)

        if self.total_count is not None:
            object.__setattr__(self, "total_count", int(self.total_count))

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[Mapping]:
        return iter(self.records)

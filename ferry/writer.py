"""Writers serialize records for a proxy.

Every field passes through transform_field() before the concrete writer
formats the record(s).
"""

from __future__ import annotations

import datetime
import json
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence, Union

import numpy as np
import pandas as pd


class Writer(ABC):
    """Base writer: routes a single record or a sequence of records."""

    def write(self, data: Union[Mapping, Sequence[Mapping]]) -> Any:
        if isinstance(data, Mapping):
            return self.write_record(self.process_record(data))
        return self.write_records([self.process_record(r) for r in data])

    def process_record(self, record: Mapping) -> dict:
        return {name: self.transform_field(name, value) for name, value in record.items()}

    def transform_field(self, name: str, value: Any) -> Any:
        """Convert a field value to a plain serializable value.

        Dates become ISO 8601 strings and numpy values become native
        Python values. Nested mappings and lists are converted recursively.
        """
        if isinstance(value, (datetime.date, datetime.datetime)):
            return value.isoformat()
        if isinstance(value, np.generic):
            return value.item()
        if isinstance(value, np.ndarray):
            return value.tolist()
        if isinstance(value, Mapping):
            return {k: self.transform_field(k, v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.transform_field(name, v) for v in value]
        return value

    @abstractmethod
    def write_records(self, records: list[dict]) -> Any:
        ...

    @abstractmethod
    def write_record(self, record: dict) -> Any:
        ...


class JsonWriter(Writer):
    """Writes JSON text, optionally wrapped as {root_property: payload}."""

    def __init__(self, root_property: str = "", indent: int | None = None):
        self.root_property = root_property
        self.indent = indent

    def write_records(self, records: list[dict]) -> str:
        return self._dump(records)

    def write_record(self, record: dict) -> str:
        return self._dump(record)

    def _dump(self, payload: Any) -> str:
        if self.root_property:
            payload = {self.root_property: payload}
        return json.dumps(payload, indent=self.indent)


class DataFrameWriter(Writer):
    """Writes records as a pandas DataFrame, one row per record."""

    def write_records(self, records: list[dict]) -> pd.DataFrame:
        return pd.DataFrame.from_records(records)

    def write_record(self, record: dict) -> pd.DataFrame:
        return pd.DataFrame.from_records([record])


WRITER_TYPES = {
    "json": JsonWriter,
    "dataframe": DataFrameWriter,
}

"""Readers convert raw proxy payloads into ResultSets.

A Reader is configured with dotted paths (see ferry.paths) that locate
the records, the total count and a message inside the converted payload,
plus optional per-record field mappings.

Key types:
- Reader: ABC with read() and overridable processing hooks
- JsonReader: JSON text/bytes or an already-decoded tree
- DataFrameReader: pandas DataFrame, one record per row
- ReaderError, MissingDataError, MissingMetadataError
"""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

import pandas as pd

from ferry.paths import (
    MISSING,
    ROOT_PATH,
    delete_property,
    find_property_value,
    parse_path_string,
)
from ferry.result_set import ResultSet


class ReaderError(Exception):
    """Raised when a payload cannot be turned into a ResultSet."""
    pass


class MissingDataError(ReaderError):
    """The configured data_property is absent from the payload."""
    pass


class MissingMetadataError(ReaderError):
    """A configured total_property or message_property is absent."""
    pass


# ---------------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------------

class Reader(ABC):
    """Base reader.

    Args:
        data_property: Path to the records. "." (default) is the root.
        total_property: Path to the total record count, "" to disable.
        message_property: Path to a message string, "" to disable.
        data_mappings: Source path -> target key, applied to each record.
            A target of "" deletes the source field instead of renaming.
    """

    def __init__(
        self,
        data_property: str = ROOT_PATH,
        total_property: str = "",
        message_property: str = "",
        data_mappings: Optional[Mapping[str, str]] = None,
    ):
        self.data_property = data_property
        self.total_property = total_property
        self.message_property = message_property
        self.data_mappings = dict(data_mappings or {})

        # Parse eagerly so malformed paths fail at construction.
        self._data_path = parse_path_string(data_property)
        self._total_path = parse_path_string(total_property) if total_property else None
        self._message_path = parse_path_string(message_property) if message_property else None
        self._mapping_paths = [
            (source, parse_path_string(source), target)
            for source, target in self.data_mappings.items()
        ]

    def read(self, raw: Any) -> ResultSet:
        """Convert raw into a ResultSet.

        Raises:
            MissingDataError: data_property does not resolve.
            MissingMetadataError: total/message property does not resolve.
            ReaderError: payload cannot be converted.
        """
        data = self.convert_raw(raw)
        records = self.extract_records(data)
        total_count = self.extract_total_count(data)
        message = self.extract_message(data)

        records = self.process_records(records)
        if total_count is None:
            total_count = len(records)
        return ResultSet(records=records, total_count=total_count, message=message)

    @abstractmethod
    def convert_raw(self, raw: Any) -> Any:
        """Turn the raw payload into a tree of mappings and lists."""
        ...

    def extract_records(self, data: Any) -> list[Mapping]:
        value = find_property_value(data, self._data_path)
        if value is MISSING:
            raise MissingDataError(
                f"data_property {self.data_property!r} not found in payload"
            )
        if value is None:
            return []
        if isinstance(value, Mapping):
            return [value]
        if isinstance(value, (str, bytes)):
            raise ReaderError(
                f"data_property {self.data_property!r} holds a string, not records"
            )

        records = list(value)
        for i, record in enumerate(records):
            if not isinstance(record, Mapping):
                raise ReaderError(
                    f"record {i} at {self.data_property!r} is "
                    f"{type(record).__name__}, expected a mapping"
                )
        return records

    def extract_total_count(self, data: Any) -> Optional[int]:
        if self._total_path is None:
            return None
        value = self._extract_metadata(data, self._total_path, self.total_property)
        try:
            return int(value)
        except (TypeError, ValueError) as exc:
            raise ReaderError(
                f"total_property {self.total_property!r} is not an integer: {value!r}"
            ) from exc

    def extract_message(self, data: Any) -> Optional[str]:
        if self._message_path is None:
            return None
        value = self._extract_metadata(data, self._message_path, self.message_property)
        return None if value is None else str(value)

    def _extract_metadata(self, data: Any, segments: list[str], path: str) -> Any:
        value = find_property_value(data, segments)
        if value is MISSING:
            raise MissingMetadataError(f"property {path!r} not found in payload")
        return value

    def process_records(self, records: list[Mapping]) -> list[dict]:
        """Hook: copy and process each record. Raw data is left untouched."""
        return [self.process_record(copy.deepcopy(dict(r))) for r in records]

    def process_record(self, record: dict) -> dict:
        """Hook: process one record. Default applies data_mappings."""
        return self.apply_data_mappings(record)

    def apply_data_mappings(self, record: dict) -> dict:
        for source, segments, target in self._mapping_paths:
            value = find_property_value(record, segments)
            if value is MISSING:
                continue
            if target:
                # Delete first so a nested source may map onto its own top key.
                delete_property(record, segments)
                record[target] = value
            else:
                delete_property(record, segments)
        return record


# ---------------------------------------------------------------------------
# Concrete readers
# ---------------------------------------------------------------------------

class JsonReader(Reader):
    """Reads JSON text or bytes. Already-decoded payloads pass through."""

    def convert_raw(self, raw: Any) -> Any:
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        if isinstance(raw, str):
            try:
                return json.loads(raw)
            except json.JSONDecodeError as exc:
                raise ReaderError(f"invalid JSON payload: {exc}") from exc
        return raw


class DataFrameReader(Reader):
    """Reads a pandas DataFrame, one record per row. NaN becomes None."""

    def convert_raw(self, raw: Any) -> Any:
        if not isinstance(raw, pd.DataFrame):
            raise ReaderError(
                f"DataFrameReader expects a DataFrame, got {type(raw).__name__}"
            )
        frame = raw.astype(object).where(pd.notna(raw), None)
        return frame.to_dict(orient="records")


READER_TYPES = {
    "json": JsonReader,
    "dataframe": DataFrameReader,
}

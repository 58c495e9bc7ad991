"""Tests for ferry.writer.

Unit tests:
- write() routes single records and sequences
- transform_field converts dates, numpy scalars/arrays, nested values
- JsonWriter root_property wrapping
- DataFrameWriter produces one row per record
"""

import datetime
import json

import numpy as np
import pandas as pd

from ferry.writer import DataFrameWriter, JsonWriter, Writer


class RecordingWriter(Writer):
    """Writer that reports which entry point it was called through."""

    def write_records(self, records):
        return ("many", records)

    def write_record(self, record):
        return ("one", record)


class TestRouting:

    def test_single_mapping(self):
        assert RecordingWriter().write({"id": 1}) == ("one", {"id": 1})

    def test_sequence(self):
        assert RecordingWriter().write([{"id": 1}, {"id": 2}]) == (
            "many", [{"id": 1}, {"id": 2}],
        )

    def test_empty_sequence(self):
        assert RecordingWriter().write([]) == ("many", [])


class TestTransformField:

    def test_dates(self):
        out = RecordingWriter().write({
            "day": datetime.date(2024, 3, 1),
            "at": datetime.datetime(2024, 3, 1, 12, 30),
        })
        assert out[1] == {"day": "2024-03-01", "at": "2024-03-01T12:30:00"}

    def test_numpy_values(self):
        out = RecordingWriter().write({
            "n": np.int64(3),
            "x": np.float32(0.5),
            "v": np.array([1, 2]),
        })
        record = out[1]
        assert record == {"n": 3, "x": 0.5, "v": [1, 2]}
        assert type(record["n"]) is int

    def test_nested(self):
        out = RecordingWriter().write({"meta": {"when": datetime.date(2024, 1, 2)},
                                       "tags": (np.int64(1), "a")})
        assert out[1] == {"meta": {"when": "2024-01-02"}, "tags": [1, "a"]}

    def test_source_record_untouched(self):
        record = {"day": datetime.date(2024, 3, 1)}
        RecordingWriter().write(record)
        assert record == {"day": datetime.date(2024, 3, 1)}


class TestJsonWriter:

    def test_records(self):
        text = JsonWriter().write([{"id": 1}, {"id": 2}])
        assert json.loads(text) == [{"id": 1}, {"id": 2}]

    def test_root_property(self):
        text = JsonWriter(root_property="data").write({"id": 1})
        assert json.loads(text) == {"data": {"id": 1}}

    def test_serializes_converted_values(self):
        text = JsonWriter().write({"n": np.int64(5), "day": datetime.date(2020, 1, 1)})
        assert json.loads(text) == {"n": 5, "day": "2020-01-01"}


class TestDataFrameWriter:

    def test_rows(self):
        frame = DataFrameWriter().write([{"id": 1, "name": "a"}, {"id": 2, "name": "b"}])
        assert isinstance(frame, pd.DataFrame)
        assert list(frame["id"]) == [1, 2]
        assert list(frame.columns) == ["id", "name"]

    def test_single(self):
        frame = DataFrameWriter().write({"id": 9})
        assert len(frame) == 1
        assert frame.iloc[0]["id"] == 9

"""Tests for ferry.request and ferry.result_set.

Unit tests:
- ResultSet normalizes records and is immutable
- Requests get unique ids and report their action
- resolve/reject store the result and settle the embedded future
- Results arriving after abort are kept but do not settle the request
- A settled request ignores further results
- ReadRequest window validation and page-derived start/limit
"""

import pytest

from ferry.future import FutureState
from ferry.request import (
    CreateRequest,
    CrudAction,
    DestroyRequest,
    ReadRequest,
    UpdateRequest,
)
from ferry.result_set import ResultSet


# ---------------------------------------------------------------------------
# ResultSet
# ---------------------------------------------------------------------------

class TestResultSet:

    def test_defaults(self):
        rs = ResultSet()
        assert rs.records == ()
        assert rs.total_count is None
        assert rs.message is None
        assert len(rs) == 0

    def test_none_records(self):
        assert ResultSet(records=None).records == ()

    def test_single_mapping_wrapped(self):
        assert ResultSet(records={"id": 1}).records == ({"id": 1},)

    def test_list_becomes_tuple(self):
        rs = ResultSet(records=[{"id": 1}, {"id": 2}], total_count="10")
        assert rs.records == ({"id": 1}, {"id": 2})
        assert rs.total_count == 10
        assert list(rs) == [{"id": 1}, {"id": 2}]

    def test_immutable(self):
        rs = ResultSet()
        with pytest.raises(AttributeError):
            rs.total_count = 5


# ---------------------------------------------------------------------------
# Request lifecycle
# ---------------------------------------------------------------------------

class TestRequestLifecycle:

    def test_unique_ids(self):
        a, b = ReadRequest(), CreateRequest({"x": 1})
        assert a.id != b.id

    def test_actions(self):
        assert ReadRequest().action is CrudAction.READ
        assert CreateRequest().action is CrudAction.CREATE
        assert UpdateRequest().action is CrudAction.UPDATE
        assert DestroyRequest().action is CrudAction.DESTROY

    def test_params_copied(self):
        params = {"q": "x"}
        request = ReadRequest(params=params)
        params["q"] = "changed"
        assert request.params == {"q": "x"}

    def test_resolve(self):
        request = ReadRequest()
        seen = []
        request.on_success(lambda rs, req: seen.append((rs, req)))
        rs = ResultSet(records=[{"id": 1}])
        request.resolve(rs)
        assert request.was_successful
        assert request.is_complete
        assert request.result_set is rs
        assert seen == [(rs, request)]

    def test_resolve_without_result_set(self):
        request = UpdateRequest({"id": 1})
        request.resolve()
        assert request.result_set == ResultSet()

    def test_reject(self):
        request = ReadRequest()
        seen = []
        request.on_failure(lambda err, req: seen.append(err))
        request.reject("boom")
        assert request.has_errored
        assert request.error == "boom"
        assert seen == ["boom"]

    def test_abort(self):
        request = ReadRequest()
        seen = []
        request.on_abort(lambda req: seen.append(req))
        request.abort()
        assert request.was_aborted
        assert seen == [request]

    def test_late_result_after_abort_kept_for_diagnostics(self):
        request = ReadRequest()
        successes = []
        request.on_success(lambda *a: successes.append(a))
        request.abort()
        rs = ResultSet(records=[{"id": 1}])
        request.resolve(rs)
        assert request.state is FutureState.ABORTED
        assert request.result_set is rs
        assert successes == []

    def test_settled_request_ignores_further_results(self):
        request = ReadRequest()
        first = ResultSet(records=[{"id": 1}])
        request.resolve(first)
        request.resolve(ResultSet(records=[{"id": 2}]))
        request.reject("late")
        assert request.result_set is first
        assert request.error is None
        assert request.was_successful

    def test_notify(self):
        request = ReadRequest()
        seen = []
        request.on_progress(lambda *a: seen.append(a))
        request.notify(1, 2)
        assert seen == [(1, 2)]


# ---------------------------------------------------------------------------
# ReadRequest windows
# ---------------------------------------------------------------------------

class TestReadRequestWindow:

    def test_defaults(self):
        request = ReadRequest()
        assert (request.start, request.limit) == (0, 0)
        assert not request.is_paged
        assert not request.is_ranged

    def test_page_derives_start_and_limit(self):
        request = ReadRequest(page=3, page_size=10)
        assert request.start == 20
        assert request.limit == 10
        assert request.is_paged
        assert not request.is_ranged

    def test_range(self):
        request = ReadRequest(start=5, limit=5)
        assert request.is_ranged

    @pytest.mark.parametrize("kwargs", [
        {"page": 0, "page_size": 10},
        {"page": 1},
        {"page": 1, "page_size": 0},
        {"start": -1},
        {"limit": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            ReadRequest(**kwargs)


class TestWriteRequest:

    def test_single_record_wrapped(self):
        request = CreateRequest({"name": "a"})
        assert request.records == [{"name": "a"}]

    def test_records_list(self):
        records = [{"id": 1}, {"id": 2}]
        request = DestroyRequest(records)
        assert request.records == records
        assert request.records[0] is records[0]

"""Tests for ferry.operation.Operation and its subclasses.

Unit tests:
- execute() hands every request to the proxy once, in order
- Records are assembled in request-issue order, not completion order
- total_count/message come from the first request
- apply callback runs before resolution and never for a settled operation
- First rejection rejects the operation, siblings cannot change it
- abort(): pending requests aborted, proxy.abort called, late results dropped
- Action constraints of Load/Save/DestroyOperation
"""

import pytest

from ferry.errors import ConfigurationError
from ferry.future import FutureState
from ferry.operation import (
    DestroyOperation,
    LoadOperation,
    Operation,
    SaveOperation,
)
from ferry.proxy import Proxy, ProxyError
from ferry.request import CreateRequest, DestroyRequest, ReadRequest, UpdateRequest
from ferry.result_set import ResultSet


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ManualProxy(Proxy):
    """Proxy that holds requests until the test settles them."""

    def __init__(self):
        super().__init__()
        self.performed = []
        self.aborted = []

    @property
    def name(self):
        return "manual"

    @property
    def supports_paging(self):
        return True

    def _hold(self, request):
        self.performed.append(request)

    create = read = update = destroy = _hold

    def abort(self, request):
        self.aborted.append(request)


def page(*ids, total=None):
    return ResultSet(records=[{"id": i} for i in ids], total_count=total)


def paged_requests(n, page_size=2):
    return [ReadRequest(page=p, page_size=page_size) for p in range(1, n + 1)]


# ---------------------------------------------------------------------------
# Execution and aggregation
# ---------------------------------------------------------------------------

class TestExecute:

    def test_requires_proxy(self):
        with pytest.raises(ConfigurationError):
            Operation(None)

    def test_performs_each_request_once(self):
        proxy = ManualProxy()
        requests = paged_requests(3)
        op = LoadOperation(proxy, requests=requests)
        assert op.execute() is op
        op.execute()
        assert proxy.performed == requests

    def test_out_of_order_completion_assembles_in_issue_order(self):
        proxy = ManualProxy()
        p1, p2, p3 = paged_requests(3)
        op = LoadOperation(proxy, requests=[p1, p2, p3]).execute()

        p3.resolve(page("p3r1", "p3r2"))
        p1.resolve(page("p1r1", "p1r2", total=6))
        assert op.state is FutureState.PENDING
        p2.resolve(page("p2r1", "p2r2"))

        assert op.was_successful
        assert [r["id"] for r in op.result_set.records] == [
            "p1r1", "p1r2", "p2r1", "p2r2", "p3r1", "p3r2",
        ]
        assert op.result_set.total_count == 6

    def test_resolves_with_result_set_and_operation(self):
        proxy = ManualProxy()
        request = ReadRequest()
        op = LoadOperation(proxy, requests=[request]).execute()
        seen = []
        op.on_success(lambda rs, o: seen.append((rs, o)))
        request.resolve(page(1, total=1))
        assert seen == [(op.result_set, op)]

    def test_total_defaults_to_record_count(self):
        proxy = ManualProxy()
        a, b = ReadRequest(), ReadRequest()
        op = LoadOperation(proxy, requests=[a, b]).execute()
        a.resolve(page(1))
        b.resolve(page(2, 3))
        assert op.result_set.total_count == 3

    def test_no_requests_resolves_immediately(self):
        op = SaveOperation(ManualProxy()).execute()
        assert op.was_successful
        assert op.result_set.records == ()

    def test_progress_per_successful_request(self):
        proxy = ManualProxy()
        a, b = ReadRequest(), ReadRequest()
        op = LoadOperation(proxy, requests=[a, b])
        progress = []
        op.on_progress(lambda req, o: progress.append(req))
        op.execute()
        b.resolve(page(2))
        a.resolve(page(1))
        assert progress == [b, a]

    def test_apply_runs_before_success_listeners(self):
        proxy = ManualProxy()
        request = ReadRequest()
        order = []
        op = LoadOperation(proxy, requests=[request],
                           apply=lambda rs, o: order.append(("apply", o.state)))
        op.on_success(lambda rs, o: order.append(("success", o.state)))
        op.execute()
        request.resolve(page(1))
        assert order == [
            ("apply", FutureState.PENDING),
            ("success", FutureState.RESOLVED),
        ]

    def test_cannot_add_after_execute(self):
        op = LoadOperation(ManualProxy()).execute()
        with pytest.raises(RuntimeError):
            op.add_request(ReadRequest())

    def test_request_bookkeeping(self):
        proxy = ManualProxy()
        a, b, c = ReadRequest(), ReadRequest(), ReadRequest()
        op = LoadOperation(proxy, requests=[a, b, c]).execute()
        a.resolve()
        b.reject("err")
        assert op.successful_requests == [a]
        assert op.errored_requests == [b]
        assert op.incomplete_requests == [c]
        assert not op.requests_are_complete
        assert not op.requests_were_successful


# ---------------------------------------------------------------------------
# Rejection
# ---------------------------------------------------------------------------

class TestRejection:

    def test_first_rejection_rejects(self):
        proxy = ManualProxy()
        a, b, c = ReadRequest(), ReadRequest(), ReadRequest()
        applied = []
        op = LoadOperation(proxy, requests=[a, b, c],
                           apply=lambda rs, o: applied.append(rs)).execute()
        failures = []
        op.on_failure(lambda err, o: failures.append((err, o)))

        b.reject("backend down")
        assert op.has_errored
        assert op.error == "backend down"
        assert failures == [("backend down", op)]

        # Siblings keep running but cannot change the outcome.
        a.resolve(page(1))
        c.reject("second")
        assert op.has_errored
        assert op.error == "backend down"
        assert applied == []
        assert a.was_successful

    def test_abort_after_rejection_is_noop(self):
        proxy = ManualProxy()
        a, b = ReadRequest(), ReadRequest()
        op = LoadOperation(proxy, requests=[a, b]).execute()
        a.reject("err")
        op.abort()
        assert op.has_errored
        assert proxy.aborted == []


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------

class TestAbort:

    def test_abort_aborts_pending_requests_and_notifies_proxy(self):
        proxy = ManualProxy()
        a, b, c = paged_requests(3)
        op = LoadOperation(proxy, requests=[a, b, c]).execute()
        a.resolve(page(1))

        aborts = []
        op.on_abort(lambda o: aborts.append(o))
        op.abort()

        assert op.was_aborted
        assert a.was_successful
        assert b.was_aborted and c.was_aborted
        assert proxy.aborted == [b, c]
        assert aborts == [op]

    def test_abort_is_idempotent(self):
        proxy = ManualProxy()
        request = ReadRequest()
        op = LoadOperation(proxy, requests=[request]).execute()
        aborts = []
        op.on_abort(lambda o: aborts.append(o))
        op.abort()
        op.abort()
        assert aborts == [op]
        assert proxy.aborted == [request]

    def test_late_results_discarded(self):
        proxy = ManualProxy()
        a, b = paged_requests(2)
        applied = []
        op = LoadOperation(proxy, requests=[a, b],
                           apply=lambda rs, o: applied.append(rs)).execute()
        successes = []
        op.on_success(lambda *args: successes.append(args))

        op.abort()
        a.resolve(page(1))
        b.resolve(page(2))

        assert op.was_aborted
        assert applied == []
        assert successes == []
        # Kept on the request for diagnostics only.
        assert a.result_set.records == ({"id": 1},)

    def test_late_success_listener_never_fires_after_abort(self):
        op = LoadOperation(ManualProxy(), requests=[ReadRequest()]).execute()
        op.abort()
        calls = []
        op.on_success(lambda *a: calls.append(a))
        op.on_abort(lambda *a: calls.append("aborted"))
        assert calls == ["aborted"]

    def test_request_aborted_elsewhere_aborts_operation(self):
        proxy = ManualProxy()
        a, b = ReadRequest(), ReadRequest()
        op = LoadOperation(proxy, requests=[a, b]).execute()
        a.abort()
        assert op.was_aborted
        assert b.was_aborted

    def test_abort_before_execute(self):
        proxy = ManualProxy()
        request = ReadRequest()
        op = LoadOperation(proxy, requests=[request])
        op.abort()
        op.execute()
        assert op.was_aborted
        assert proxy.performed == []

    def test_abort_from_progress_listener(self):
        proxy = ManualProxy()
        a, b = ReadRequest(), ReadRequest()
        op = LoadOperation(proxy, requests=[a, b])
        op.on_progress(lambda req, o: o.abort())
        op.execute()
        a.resolve(page(1))
        assert op.was_aborted
        assert b.was_aborted
        b.resolve(page(2))
        assert op.was_aborted

    def test_perform_error_aborts_and_reraises(self):
        class RefusingUpdates(ManualProxy):
            def update(self, request):
                raise ProxyError("refused", request_id=request.id)

        proxy = RefusingUpdates()
        create, update = CreateRequest(), UpdateRequest()
        op = SaveOperation(proxy, requests=[create, update])
        with pytest.raises(ProxyError):
            op.execute()
        assert proxy.performed == [create]
        assert op.was_aborted
        assert create.was_aborted
        assert create in proxy.aborted


# ---------------------------------------------------------------------------
# Subclasses
# ---------------------------------------------------------------------------

class TestActionConstraints:

    def test_load_accepts_reads_only(self):
        with pytest.raises(ConfigurationError):
            LoadOperation(ManualProxy(), requests=[CreateRequest()])

    def test_save_accepts_create_and_update(self):
        op = SaveOperation(ManualProxy(), requests=[CreateRequest(), UpdateRequest()])
        assert len(op.requests) == 2
        with pytest.raises(ConfigurationError):
            op.add_request(DestroyRequest())

    def test_destroy_accepts_destroy_only(self):
        with pytest.raises(ConfigurationError):
            DestroyOperation(ManualProxy(), requests=[ReadRequest()])

    def test_load_add_records_flag(self):
        assert LoadOperation(ManualProxy(), add_records=True).add_records is True
        assert LoadOperation(ManualProxy()).add_records is False

    def test_unique_ids(self):
        proxy = ManualProxy()
        assert Operation(proxy).id != Operation(proxy).id

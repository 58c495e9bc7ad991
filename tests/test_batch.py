"""Tests for ferry.operation.OperationBatch.

Unit tests:
- Resolves with (target, batch) only when every operation resolves
- Rejects on the first rejecting operation
- Operation progress and success are reported as batch progress
- abort() aborts pending operations and then the batch
- An operation aborted on its own aborts the batch
"""

from ferry.future import FutureState
from ferry.operation import LoadOperation, OperationBatch, SaveOperation
from ferry.proxy import Proxy
from ferry.request import CreateRequest, ReadRequest
from ferry.result_set import ResultSet


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class ManualProxy(Proxy):
    """Proxy that holds requests until the test settles them."""

    def __init__(self):
        super().__init__()
        self.performed = []

    @property
    def name(self):
        return "manual"

    def _hold(self, request):
        self.performed.append(request)

    create = read = update = destroy = _hold


def make_batch(n, target="target"):
    proxy = ManualProxy()
    operations = [LoadOperation(proxy, requests=[ReadRequest()]) for _ in range(n)]
    batch = OperationBatch(operations, target=target).execute()
    return batch, operations


def settle(operation, ok=True):
    request = operation.requests[0]
    if ok:
        request.resolve(ResultSet())
    else:
        request.reject("failed")


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class TestBatchOutcome:

    def test_all_succeed(self):
        batch, ops = make_batch(3)
        resolved = []
        batch.on_success(lambda target, b: resolved.append((target, b)))

        settle(ops[2])
        settle(ops[0])
        assert batch.state is FutureState.PENDING
        settle(ops[1])

        assert batch.was_successful
        assert resolved == [("target", batch)]

    def test_any_rejects(self):
        batch, ops = make_batch(3)
        failures = []
        batch.on_failure(lambda target, b: failures.append(b))

        settle(ops[0])
        settle(ops[1], ok=False)
        settle(ops[2])

        assert batch.has_errored
        assert failures == [batch]
        assert batch.errored_operations == [ops[1]]

    def test_empty_batch_resolves(self):
        batch = OperationBatch([], target=None)
        assert batch.was_successful

    def test_execute_is_idempotent(self):
        batch, ops = make_batch(2)
        batch.execute()
        assert len(ops[0].proxy.performed) == 2

    def test_progress_from_success_and_child_progress(self):
        proxy = ManualProxy()
        a = SaveOperation(proxy, requests=[CreateRequest({"n": 1}), CreateRequest({"n": 2})])
        b = SaveOperation(proxy, requests=[CreateRequest({"n": 3})])
        batch = OperationBatch([a, b], target="t")
        progress = []
        batch.on_progress(lambda target, bt: progress.append(target))
        batch.execute()

        a.requests[0].resolve()   # a progress
        a.requests[1].resolve()   # a progress + a success
        assert len(progress) == 3
        b.requests[0].resolve()   # b progress + b success, then batch resolves
        assert len(progress) == 5
        assert batch.was_successful


# ---------------------------------------------------------------------------
# Abort
# ---------------------------------------------------------------------------

class TestBatchAbort:

    def test_abort_aborts_pending_children(self):
        batch, ops = make_batch(3)
        settle(ops[0])
        aborts = []
        batch.on_abort(lambda target, b: aborts.append(b))

        batch.abort()

        assert batch.was_aborted
        assert ops[0].was_successful
        assert ops[1].was_aborted and ops[2].was_aborted
        assert aborts == [batch]

    def test_abort_idempotent(self):
        batch, _ = make_batch(2)
        aborts = []
        batch.on_abort(lambda *a: aborts.append(a))
        batch.abort()
        batch.abort()
        assert len(aborts) == 1

    def test_child_abort_aborts_batch(self):
        batch, ops = make_batch(2)
        ops[1].abort()
        assert batch.was_aborted
        assert ops[0].was_aborted

    def test_late_results_after_abort(self):
        batch, ops = make_batch(2)
        batch.abort()
        settle(ops[0])
        settle(ops[1])
        assert batch.was_aborted
        assert ops[0].was_aborted

"""Operations: caller-visible CRUD calls composed of Requests.

An Operation owns its Requests, hands them to a proxy, and settles its
own Future from theirs:

    execute()
        |
        v
    proxy.perform(request)  x N
        |
        +-- every request resolves  --> aggregate (issue order)
        |                               apply(result_set, op)
        |                               resolve(result_set, op)
        +-- any request rejects     --> reject(error, op)
        +-- abort() / child aborted --> abort(op), late results discarded

OperationBatch combines whole Operations the same way.

Key types:
- Operation: Base with request bookkeeping and abort handling
- LoadOperation, SaveOperation, DestroyOperation: Action-constrained
- OperationBatch: Aggregate over Operations
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Callable, Iterable, Optional

from ferry.errors import ConfigurationError
from ferry.future import Future, FutureState, FutureView, when_all
from ferry.proxy import Proxy
from ferry.request import CrudAction, Request
from ferry.result_set import ResultSet

logger = logging.getLogger(__name__)

_operation_ids = itertools.count(1)

ApplyResult = Callable[[ResultSet, "Operation"], Any]


# ---------------------------------------------------------------------------
# Operation
# ---------------------------------------------------------------------------

class Operation(FutureView):
    """A CRUD call made up of one or more Requests.

    Args:
        proxy: Proxy the requests are performed against.
        target: The object the operation acts for (returned to listeners
            through operation.target).
        requests: Initial requests. More may be added before execute().
        apply: Called as apply(result_set, operation) once every request
            resolved and before the operation itself resolves. Never
            called for an operation that is already settled.

    Future arguments:
    - success: (result_set, operation)
    - failure: (error, operation)
    - abort: (operation,)
    - progress: (request, operation) for each request that succeeds
    """

    allowed_actions: frozenset = frozenset(CrudAction)

    def __init__(
        self,
        proxy: Proxy,
        target: Any = None,
        requests: Iterable[Request] = (),
        apply: Optional[ApplyResult] = None,
    ):
        if proxy is None:
            raise ConfigurationError([f"{type(self).__name__} requires a proxy"])
        super().__init__(Future())
        self.id: int = next(_operation_ids)
        self.proxy = proxy
        self.target = target
        self.requests: list[Request] = []
        self._apply = apply
        self._started = False
        self._aborting = False
        for request in requests:
            self.add_request(request)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, requests={len(self.requests)}, "
            f"state={self.state.value})"
        )

    def add_request(self, request: Request) -> None:
        if self._started:
            raise RuntimeError(f"{self!r}: cannot add requests after execute()")
        if request.action not in self.allowed_actions:
            raise ConfigurationError([
                f"{type(self).__name__} does not accept {request.action.value} requests"
            ])
        self.requests.append(request)

    # -- request bookkeeping ------------------------------------------------

    @property
    def incomplete_requests(self) -> list[Request]:
        return [r for r in self.requests if not r.is_complete]

    @property
    def successful_requests(self) -> list[Request]:
        return [r for r in self.requests if r.was_successful]

    @property
    def errored_requests(self) -> list[Request]:
        return [r for r in self.requests if r.has_errored]

    @property
    def requests_are_complete(self) -> bool:
        return all(r.is_complete for r in self.requests)

    @property
    def requests_were_successful(self) -> bool:
        return all(r.was_successful for r in self.requests)

    @property
    def error(self) -> Any:
        """Error the operation was rejected with, if any."""
        if self.state is FutureState.REJECTED:
            return self._future.args[0]
        return None

    @property
    def result_set(self) -> Optional[ResultSet]:
        if self.state is FutureState.RESOLVED:
            return self._future.args[0]
        return None

    # -- execution ----------------------------------------------------------

    def execute(self) -> Operation:
        """Hand every request to the proxy. A second call is a no-op."""
        if self._started:
            return self
        self._started = True

        for request in self.requests:
            request.on_success(self._on_request_success)

        master = when_all(self.requests)
        master.on_success(self._on_requests_resolved)
        master.on_failure(self._on_request_failed)
        master.on_abort(self._on_request_aborted)

        try:
            for request in self.requests:
                if request.is_complete:
                    continue
                self.proxy.perform(request)
        except Exception:
            # Requests already handed over must not outlive the operation.
            self.abort()
            raise
        return self

    def _on_request_success(self, result_set: ResultSet, request: Request) -> None:
        self._future.notify(request, self)

    def _on_requests_resolved(self, results: list) -> None:
        if self.state is not FutureState.PENDING:
            logger.debug(f"{self!r}: requests resolved after settlement, discarded")
            return
        result_set = self.aggregate_results()
        if self._apply is not None:
            self._apply(result_set, self)
        self._future.resolve(result_set, self)

    def _on_request_failed(self, error: Any, request: Request) -> None:
        logger.debug(f"{self!r}: {request!r} failed: {error}")
        self._future.reject(error, self)

    def _on_request_aborted(self, request: Request) -> None:
        if not self._aborting:
            self.abort()

    def aggregate_results(self) -> ResultSet:
        """Concatenate request records in issue order.

        total_count and message come from the first request's ResultSet.
        A missing total falls back to the number of records.
        """
        records: list = []
        for request in self.requests:
            if request.result_set is not None:
                records.extend(request.result_set.records)

        first = self.requests[0].result_set if self.requests else None
        total_count = first.total_count if first is not None else None
        if total_count is None:
            total_count = len(records)
        message = first.message if first is not None else None
        return ResultSet(records=records, total_count=total_count, message=message)

    # -- abort --------------------------------------------------------------

    def abort(self) -> Operation:
        """Abort pending requests, then the operation. Idempotent.

        Has no effect on an operation that already settled.
        """
        if self.state is not FutureState.PENDING or self._aborting:
            return self

        self._aborting = True
        try:
            for request in self.incomplete_requests:
                request.abort()
                self.proxy.abort(request)
            self._future.abort(self)
        finally:
            self._aborting = False
        logger.debug(f"{self!r}: aborted")
        return self


class LoadOperation(Operation):
    """Read-only operation.

    add_records tells the target to append the loaded records rather
    than replace its contents.
    """

    allowed_actions = frozenset({CrudAction.READ})

    def __init__(self, proxy, target=None, requests=(), apply=None, add_records: bool = False):
        super().__init__(proxy, target=target, requests=requests, apply=apply)
        self.add_records = add_records


class SaveOperation(Operation):
    allowed_actions = frozenset({CrudAction.CREATE, CrudAction.UPDATE})


class DestroyOperation(Operation):
    allowed_actions = frozenset({CrudAction.DESTROY})


# ---------------------------------------------------------------------------
# OperationBatch
# ---------------------------------------------------------------------------

class OperationBatch(FutureView):
    """Aggregate outcome of several Operations.

    Resolves once every operation resolves, rejects on the first
    rejection, and aborts if any operation is aborted. Operation progress
    and operation success are both reported as batch progress.

    Future arguments (success, failure, abort and progress alike):
    (target, batch).
    """

    def __init__(self, operations: Iterable[Operation], target: Any = None):
        super().__init__(Future())
        self.operations: list[Operation] = list(operations)
        self.target = target
        self._aborting = False

        for operation in self.operations:
            operation.on_progress(self._notify)
            operation.on_success(self._notify)

        master = when_all(self.operations)
        master.on_success(lambda results: self._future.resolve(self.target, self))
        master.on_failure(self._on_operation_failed)
        master.on_abort(self._on_operation_aborted)

    def __repr__(self) -> str:
        return f"OperationBatch(operations={len(self.operations)}, state={self.state.value})"

    @property
    def errored_operations(self) -> list[Operation]:
        return [op for op in self.operations if op.has_errored]

    def execute(self) -> OperationBatch:
        """Execute every operation that has not started yet."""
        for operation in self.operations:
            operation.execute()
        return self

    def _notify(self, *args) -> None:
        self._future.notify(self.target, self)

    def _on_operation_failed(self, error: Any, operation: Operation) -> None:
        logger.debug(f"{self!r}: {operation!r} failed: {error}")
        self._future.reject(self.target, self)

    def _on_operation_aborted(self, *args) -> None:
        if not self._aborting:
            self.abort()

    def abort(self) -> OperationBatch:
        """Abort every pending operation, then the batch. Idempotent."""
        if self.state is not FutureState.PENDING or self._aborting:
            return self

        self._aborting = True
        try:
            for operation in self.operations:
                operation.abort()
            self._future.abort(self.target, self)
        finally:
            self._aborting = False
        return self

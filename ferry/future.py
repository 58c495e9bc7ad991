"""Cancellable four-state futures.

Every asynchronous unit in ferry (Request, Operation, OperationBatch)
reports its outcome through a Future. A Future starts pending and moves
exactly once to resolved, rejected or aborted. The aborted state exists
so callers can tell a user-initiated cancellation apart from a failure.

All transitions and listener invocations are synchronous: listeners run
inside the resolve()/reject()/abort()/notify() call that triggered them,
in registration order.

Key types:
- FutureState: Lifecycle enum
- Future: Owned, settable future with per-category listener lists
- FutureView: Read-only subscription surface over an owned Future
- when_all: Master future over several children
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Sequence


Listener = Callable[..., Any]


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

class FutureState(Enum):
    """Future lifecycle states."""
    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self is not FutureState.PENDING


# ---------------------------------------------------------------------------
# Future
# ---------------------------------------------------------------------------

class Future:
    """Settable future with progress, success, failure, abort and settled
    listeners.

    notify() is only honoured while pending. resolve(), reject() and
    abort() move a pending future to the matching terminal state and are
    no-ops afterwards, so a resolved or rejected future cannot be aborted.

    Registering a listener for the terminal state the future is already
    in invokes it immediately with the settlement arguments. Listeners for
    other categories are dropped once the future settles.
    """

    def __init__(self):
        self._state = FutureState.PENDING
        self._args: tuple = ()
        self._progress: list[Listener] = []
        self._settled: list[Listener] = []
        self._terminal: dict[FutureState, list[Listener]] = {
            FutureState.RESOLVED: [],
            FutureState.REJECTED: [],
            FutureState.ABORTED: [],
        }

    def __repr__(self) -> str:
        return f"Future({self._state.value})"

    @property
    def state(self) -> FutureState:
        return self._state

    @property
    def args(self) -> tuple:
        """Arguments the future settled with (empty while pending)."""
        return self._args

    # -- state transitions --------------------------------------------------

    def notify(self, *args) -> None:
        if self._state is not FutureState.PENDING:
            return
        for listener in list(self._progress):
            listener(*args)

    def resolve(self, *args) -> bool:
        return self._settle(FutureState.RESOLVED, args)

    def reject(self, *args) -> bool:
        return self._settle(FutureState.REJECTED, args)

    def abort(self, *args) -> bool:
        return self._settle(FutureState.ABORTED, args)

    def _settle(self, state: FutureState, args: tuple) -> bool:
        """Move to a terminal state. Returns False if already settled."""
        if self._state is not FutureState.PENDING:
            return False

        self._state = state
        self._args = args
        listeners = self._terminal[state] + self._settled

        # Nothing registered before settlement can fire again.
        self._progress = []
        self._settled = []
        for pending in self._terminal.values():
            pending.clear()

        for listener in listeners:
            listener(*args)
        return True

    # -- subscription -------------------------------------------------------

    def on_progress(self, listener: Listener) -> Future:
        if self._state is FutureState.PENDING:
            self._progress.append(listener)
        return self

    def on_success(self, listener: Listener) -> Future:
        return self._subscribe(FutureState.RESOLVED, listener)

    def on_failure(self, listener: Listener) -> Future:
        return self._subscribe(FutureState.REJECTED, listener)

    def on_abort(self, listener: Listener) -> Future:
        return self._subscribe(FutureState.ABORTED, listener)

    def on_settled(self, listener: Listener) -> Future:
        if self._state is FutureState.PENDING:
            self._settled.append(listener)
        else:
            listener(*self._args)
        return self

    def _subscribe(self, state: FutureState, listener: Listener) -> Future:
        if self._state is FutureState.PENDING:
            self._terminal[state].append(listener)
        elif self._state is state:
            listener(*self._args)
        return self

    def view(self) -> FutureView:
        """Return a read-only view that cannot settle this future."""
        return FutureView(self)


# ---------------------------------------------------------------------------
# Read-only view
# ---------------------------------------------------------------------------

class FutureView:
    """Subscription surface over a Future owned by someone else.

    Request, Operation and OperationBatch extend this class: observers
    can subscribe to them but only the owner settles the underlying
    future. Registration methods return the view for chaining.
    """

    def __init__(self, future: Future):
        self._future = future

    @property
    def state(self) -> FutureState:
        return self._future.state

    @property
    def is_complete(self) -> bool:
        return self._future.state.is_terminal

    @property
    def was_successful(self) -> bool:
        return self._future.state is FutureState.RESOLVED

    @property
    def has_errored(self) -> bool:
        return self._future.state is FutureState.REJECTED

    @property
    def was_aborted(self) -> bool:
        return self._future.state is FutureState.ABORTED

    def on_progress(self, listener: Listener):
        self._future.on_progress(listener)
        return self

    def on_success(self, listener: Listener):
        self._future.on_success(listener)
        return self

    def on_failure(self, listener: Listener):
        self._future.on_failure(listener)
        return self

    def on_abort(self, listener: Listener):
        self._future.on_abort(listener)
        return self

    def on_settled(self, listener: Listener):
        self._future.on_settled(listener)
        return self


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def when_all(children: Sequence) -> Future:
    """Combine children into a master Future.

    The master resolves with a list holding each child's resolve
    arguments (as a tuple, in input order) once every child has resolved.
    It rejects with the first rejecting child's arguments, and aborts with
    the first aborted child's arguments. Later child outcomes leave the
    master unchanged. Child progress is passed through as master progress.

    Children may be Futures or FutureViews. An empty input resolves
    immediately with an empty list.
    """
    children = list(children)
    master = Future()
    if not children:
        master.resolve([])
        return master

    results: list = [None] * len(children)
    remaining = len(children)

    def make_success_listener(index: int) -> Listener:
        def on_child_success(*args):
            nonlocal remaining
            results[index] = args
            remaining -= 1
            if remaining == 0:
                master.resolve(results)
        return on_child_success

    for index, child in enumerate(children):
        child.on_progress(master.notify)
        child.on_success(make_success_listener(index))
        child.on_failure(master.reject)
        child.on_abort(master.abort)

    return master

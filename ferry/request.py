"""Requests: one per physical CRUD call made to a proxy.

A Request embeds a Future. The proxy settles it with resolve(result_set)
or reject(error), optionally preceded by notify() calls. The owning
Operation may abort it. Requests are never reused.

Key types:
- CrudAction: create / read / update / destroy
- Request: ABC carrying id, params and the settled result or error
- ReadRequest: model id or paging/range window
- CreateRequest, UpdateRequest, DestroyRequest: carry records to write
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from ferry.future import Future, FutureState, FutureView
from ferry.result_set import ResultSet

logger = logging.getLogger(__name__)

_request_ids = itertools.count(1)


class CrudAction(Enum):
    """The four persistence actions a proxy performs."""
    CREATE = "create"
    READ = "read"
    UPDATE = "update"
    DESTROY = "destroy"


# ---------------------------------------------------------------------------
# Request
# ---------------------------------------------------------------------------

class Request(FutureView, ABC):
    """Base request.

    The settled value is stored even when the Request was aborted first,
    so late proxy results remain available for diagnostics. A Request that
    already resolved or rejected ignores further results.

    Future arguments:
    - success: (result_set, request)
    - failure: (error, request)
    - abort: (request,)
    - progress: whatever the proxy passes to notify()
    """

    def __init__(self, params: Optional[Mapping[str, Any]] = None):
        super().__init__(Future())
        self.id: int = next(_request_ids)
        self.params: dict[str, Any] = dict(params or {})
        self.result_set: Optional[ResultSet] = None
        self.error: Any = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.id}, state={self.state.value})"

    @property
    @abstractmethod
    def action(self) -> CrudAction:
        ...

    def notify(self, *args) -> None:
        self._future.notify(*args)

    def resolve(self, result_set: Optional[ResultSet] = None) -> None:
        if self._already_settled("resolve"):
            return
        if result_set is None:
            result_set = ResultSet()
        self.result_set = result_set
        if not self._future.resolve(result_set, self):
            logger.debug(f"{self!r}: result arrived after abort, discarded")

    def reject(self, error: Any) -> None:
        if self._already_settled("reject"):
            return
        self.error = error
        if not self._future.reject(error, self):
            logger.debug(f"{self!r}: error arrived after abort: {error}")

    def abort(self) -> None:
        self._future.abort(self)

    def _already_settled(self, how: str) -> bool:
        if self.state in (FutureState.RESOLVED, FutureState.REJECTED):
            logger.debug(f"{self!r}: ignoring {how}(), already settled")
            return True
        return False


# ---------------------------------------------------------------------------
# Read
# ---------------------------------------------------------------------------

class ReadRequest(Request):
    """Read records, optionally by model id or within a window.

    A page window (page, page_size) implies start = (page - 1) * page_size
    and limit = page_size unless start/limit are given. A limit of 0
    means no limit.
    """

    def __init__(
        self,
        params: Optional[Mapping[str, Any]] = None,
        model_id: Any = None,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        start: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        if page is not None:
            if page < 1:
                raise ValueError(f"page must be >= 1, got {page}")
            if page_size is None or page_size < 1:
                raise ValueError(f"page_size must be >= 1 when page is set, got {page_size}")
            if start is None:
                start = (page - 1) * page_size
            if limit is None:
                limit = page_size
        start = 0 if start is None else start
        limit = 0 if limit is None else limit
        if start < 0:
            raise ValueError(f"start must be >= 0, got {start}")
        if limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")

        super().__init__(params)
        self.model_id = model_id
        self.page = page
        self.page_size = page_size
        self.start = start
        self.limit = limit

    @property
    def action(self) -> CrudAction:
        return CrudAction.READ

    @property
    def is_paged(self) -> bool:
        return self.page is not None

    @property
    def is_ranged(self) -> bool:
        return self.page is None and (self.start > 0 or self.limit > 0)


# ---------------------------------------------------------------------------
# Write
# ---------------------------------------------------------------------------

class WriteRequest(Request):
    """Base for requests that carry records to the proxy."""

    def __init__(
        self,
        records: Union[Mapping, Sequence[Mapping]] = (),
        params: Optional[Mapping[str, Any]] = None,
    ):
        super().__init__(params)
        if isinstance(records, Mapping):
            records = [records]
        self.records: list[Mapping] = list(records)


class CreateRequest(WriteRequest):

    @property
    def action(self) -> CrudAction:
        return CrudAction.CREATE


class UpdateRequest(WriteRequest):

    @property
    def action(self) -> CrudAction:
        return CrudAction.UPDATE


class DestroyRequest(WriteRequest):

    @property
    def action(self) -> CrudAction:
        return CrudAction.DESTROY

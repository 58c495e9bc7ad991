"""RecordCollection: a minimal target that loads, saves and destroys
plain dict records through a proxy.

Loads may be paged. A paged load issues one ReadRequest per page inside
a single LoadOperation, and the pages are assembled in page order no
matter which request completes first. Results of a load that was aborted
are ignored.
"""

from __future__ import annotations

from typing import Any, Iterable, Iterator, Mapping, Optional

from ferry.errors import ConfigurationError
from ferry.operation import (
    DestroyOperation,
    LoadOperation,
    Operation,
    OperationBatch,
    SaveOperation,
)
from ferry.proxy import Proxy, UnsupportedOperationError
from ferry.request import CreateRequest, DestroyRequest, ReadRequest, UpdateRequest
from ferry.result_set import ResultSet


class RecordCollection:
    """Ordered collection of dict records backed by a proxy.

    Args:
        proxy: Proxy to load/save through. Falls back to parent's proxy.
        parent: Collection whose proxy is inherited when proxy is None.
        page_size: Enables paged loading when set.
        id_property: Record key holding the id.
        clear_on_page_load: Replace contents on page loads (default) or
            append to them.
        records: Initial records.
    """

    def __init__(
        self,
        proxy: Optional[Proxy] = None,
        parent: Optional[RecordCollection] = None,
        page_size: Optional[int] = None,
        id_property: str = "id",
        clear_on_page_load: bool = True,
        records: Iterable[dict] = (),
    ):
        if page_size is not None and page_size < 1:
            raise ValueError(f"page_size must be >= 1, got {page_size}")
        self._proxy = proxy
        self.parent = parent
        self.page_size = page_size
        self.id_property = id_property
        self.clear_on_page_load = clear_on_page_load
        self.records: list[dict] = list(records)
        self.total_count: Optional[int] = None
        self.loaded_pages: list[int] = []
        self.active_load_operations: list[LoadOperation] = []

    def __repr__(self) -> str:
        return f"RecordCollection(records={len(self.records)}, loading={self.is_loading})"

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[dict]:
        return iter(self.records)

    @property
    def proxy(self) -> Optional[Proxy]:
        if self._proxy is not None:
            return self._proxy
        if self.parent is not None:
            return self.parent.proxy
        return None

    @property
    def is_loading(self) -> bool:
        return bool(self.active_load_operations)

    def get_by_id(self, record_id: Any) -> Optional[dict]:
        for record in self.records:
            if record.get(self.id_property) == record_id:
                return record
        return None

    def is_page_loaded(self, page: int) -> bool:
        return page in self.loaded_pages

    def _require_proxy(self) -> Proxy:
        proxy = self.proxy
        if proxy is None:
            raise ConfigurationError([
                "Cannot persist: no proxy configured on the collection or its parent"
            ])
        return proxy

    # -----------------------------------------------------------------------
    # Loading
    # -----------------------------------------------------------------------

    def load(
        self,
        params: Optional[Mapping] = None,
        add_records: Optional[bool] = None,
    ) -> LoadOperation:
        """Load all records, or page 1 when page_size is set."""
        if self.page_size:
            return self.load_page(1, params=params, add_records=add_records)
        return self._load([ReadRequest(params=params)], bool(add_records))

    def load_range(
        self,
        start: int,
        end: int,
        params: Optional[Mapping] = None,
        add_records: Optional[bool] = None,
    ) -> LoadOperation:
        """Load records start..end (inclusive, zero based).

        With page_size set this loads every page the range touches.
        """
        if start < 0 or end < start:
            raise ValueError(f"invalid range: {start}..{end}")
        if self.page_size:
            start_page = start // self.page_size + 1
            end_page = end // self.page_size + 1
            return self.load_page_range(start_page, end_page, params=params,
                                        add_records=add_records)

        proxy = self._require_proxy()
        if not proxy.supports_ranges:
            raise UnsupportedOperationError(f"{proxy.name} proxy does not support start/limit")
        request = ReadRequest(params=params, start=start, limit=end - start + 1)
        return self._load([request], bool(add_records))

    def load_page(
        self,
        page: int,
        params: Optional[Mapping] = None,
        add_records: Optional[bool] = None,
    ) -> LoadOperation:
        return self.load_page_range(page, page, params=params, add_records=add_records)

    def load_page_range(
        self,
        start_page: int,
        end_page: int,
        params: Optional[Mapping] = None,
        add_records: Optional[bool] = None,
    ) -> LoadOperation:
        """Load pages start_page..end_page (inclusive, one based).

        One ReadRequest is issued per page. add_records defaults to
        ``not clear_on_page_load``.
        """
        if start_page < 1 or end_page < start_page:
            raise ValueError(f"invalid page range: {start_page}..{end_page}")
        if not self.page_size:
            raise ConfigurationError(["page_size must be set to load paged data"])
        proxy = self._require_proxy()
        if not proxy.supports_paging:
            raise UnsupportedOperationError(f"{proxy.name} proxy does not support paging")
        if add_records is None:
            add_records = not self.clear_on_page_load

        requests = [
            ReadRequest(params=params, page=page, page_size=self.page_size)
            for page in range(start_page, end_page + 1)
        ]
        operation = self._load(requests, add_records, execute=False)

        pages = list(range(start_page, end_page + 1))

        def record_pages(result_set: ResultSet, op: LoadOperation) -> None:
            self.loaded_pages = self.loaded_pages + pages if add_records else pages

        operation.on_success(record_pages)
        operation.execute()
        return operation

    def _load(self, requests: list[ReadRequest], add_records: bool,
              execute: bool = True) -> LoadOperation:
        proxy = self._require_proxy()
        operation = LoadOperation(
            proxy,
            target=self,
            requests=requests,
            apply=self._apply_load,
            add_records=add_records,
        )
        self.active_load_operations.append(operation)
        operation.on_settled(lambda *args: self._remove_active(operation))
        if execute:
            operation.execute()
        return operation

    def _remove_active(self, operation: LoadOperation) -> None:
        if operation in self.active_load_operations:
            self.active_load_operations.remove(operation)

    def _apply_load(self, result_set: ResultSet, operation: LoadOperation) -> None:
        first = operation.requests[0].result_set if operation.requests else None
        if first is not None and first.total_count is not None:
            self.total_count = first.total_count

        if not operation.add_records:
            self.records = []
        self.records.extend(dict(r) for r in result_set.records)

    # -----------------------------------------------------------------------
    # Saving and destroying
    # -----------------------------------------------------------------------

    def save(self, records: Optional[Iterable[dict]] = None) -> SaveOperation:
        """Create records without an id and update the rest.

        Records returned by the proxy (new ids, computed fields) are merged
        into the saved records in order. Saved records not yet in the
        collection are added once the save succeeds.
        """
        proxy = self._require_proxy()
        records = list(self.records if records is None else records)
        new = [r for r in records if r.get(self.id_property) is None]
        existing = [r for r in records if r.get(self.id_property) is not None]

        requests = []
        if new:
            requests.append(CreateRequest(new))
        if existing:
            requests.append(UpdateRequest(existing))

        operation = SaveOperation(proxy, target=self, requests=requests,
                                  apply=self._apply_save)
        return operation.execute()

    def _apply_save(self, result_set: ResultSet, operation: SaveOperation) -> None:
        for request in operation.requests:
            returned = request.result_set.records if request.result_set else ()
            for record, data in zip(request.records, returned):
                record.update(data)
            for record in request.records:
                if not any(record is r for r in self.records):
                    self.records.append(record)

    def destroy(self, records: Iterable[dict]) -> DestroyOperation:
        """Destroy records through the proxy and drop them on success."""
        proxy = self._require_proxy()
        request = DestroyRequest(list(records))
        operation = DestroyOperation(proxy, target=self, requests=[request],
                                     apply=self._apply_destroy)
        return operation.execute()

    def _apply_destroy(self, result_set: ResultSet, operation: DestroyOperation) -> None:
        doomed = {id(r) for request in operation.requests for r in request.records}
        self.records = [r for r in self.records if id(r) not in doomed]

    def sync(
        self,
        to_save: Iterable[dict] = (),
        to_destroy: Iterable[dict] = (),
    ) -> OperationBatch:
        """Save and destroy records as one batch of per-record operations."""
        proxy = self._require_proxy()
        operations: list[Operation] = []
        for record in to_save:
            request_type = CreateRequest if record.get(self.id_property) is None else UpdateRequest
            operations.append(SaveOperation(proxy, target=self,
                                            requests=[request_type(record)],
                                            apply=self._apply_save))
        for record in to_destroy:
            operations.append(DestroyOperation(proxy, target=self,
                                               requests=[DestroyRequest(record)],
                                               apply=self._apply_destroy))
        return OperationBatch(operations, target=self).execute()

"""Proxy abstraction: the backend contract that settles Requests.

A proxy receives a Request through one of create/read/update/destroy and
must eventually make exactly one terminal call on it (resolve or reject),
optionally preceded by notify() calls. abort() is a best-effort hook for
releasing proxy-side resources of a Request that was already aborted.

Key types:
- Proxy: ABC with the four CRUD entry points and perform() dispatch
- ProxyError: Value a proxy rejects a Request with
- UnsupportedOperationError: Raised for unavailable operations
- ProxyRegistry: Explicit type name -> factory registry

Concrete proxies:
- MemoryProxy: Serves a fixed payload through its reader (read only)
- StorageProxy: Key/value storage medium with id bookkeeping
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable, MutableMapping, Optional, Union

from ferry.errors import ConfigurationError
from ferry.reader import JsonReader, Reader, ReaderError
from ferry.request import CrudAction, ReadRequest, Request
from ferry.result_set import ResultSet
from ferry.writer import JsonWriter, Writer

logger = logging.getLogger(__name__)


class ProxyError(Exception):
    """Error a proxy rejects a Request with."""

    def __init__(self, message: str, request_id: Optional[int] = None):
        self.request_id = request_id
        super().__init__(message)


class UnsupportedOperationError(Exception):
    """Raised when an operation is not supported by the proxy."""
    pass


# ---------------------------------------------------------------------------
# Proxy ABC
# ---------------------------------------------------------------------------

class Proxy(ABC):
    """Abstract persistence proxy.

    Subclasses implement the four CRUD methods. Paging and range reads
    are only accepted when the matching capability property is True.
    """

    def __init__(self, reader: Optional[Reader] = None, writer: Optional[Writer] = None):
        self.reader = reader if reader is not None else JsonReader()
        self.writer = writer if writer is not None else JsonWriter()

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"

    @property
    @abstractmethod
    def name(self) -> str:
        """Proxy type name."""
        ...

    @property
    def supports_paging(self) -> bool:
        return False

    @property
    def supports_ranges(self) -> bool:
        return False

    @property
    def supported_actions(self) -> frozenset[CrudAction]:
        return frozenset(CrudAction)

    @abstractmethod
    def create(self, request: Request) -> None:
        ...

    @abstractmethod
    def read(self, request: ReadRequest) -> None:
        ...

    @abstractmethod
    def update(self, request: Request) -> None:
        ...

    @abstractmethod
    def destroy(self, request: Request) -> None:
        ...

    def abort(self, request: Request) -> None:
        """Release resources held for an aborted request. Default: no-op."""
        pass

    def perform(self, request: Request) -> None:
        """Dispatch request to the method matching its action.

        Raises:
            ConfigurationError: Unknown action.
            UnsupportedOperationError: Action or read window the proxy
                cannot serve.
        """
        handlers: dict[CrudAction, Callable[[Any], None]] = {
            CrudAction.CREATE: self.create,
            CrudAction.READ: self.read,
            CrudAction.UPDATE: self.update,
            CrudAction.DESTROY: self.destroy,
        }
        handler = handlers.get(request.action)
        if handler is None:
            raise ConfigurationError([f"Unknown action: {request.action!r}"])
        self.check_request(request)

        logger.debug(f"{self.name}: {request.action.value} request {request.id}")
        handler(request)

    def batch(self, requests: Iterable[Request]) -> None:
        for request in requests:
            self.perform(request)

    def check_request(self, request: Request) -> None:
        """Raise synchronously if this proxy cannot serve request."""
        if request.action not in self.supported_actions:
            raise UnsupportedOperationError(
                f"{self.name} proxy does not support {request.action.value}"
            )
        if isinstance(request, ReadRequest):
            self.check_read_window(request)

    def check_read_window(self, request: ReadRequest) -> None:
        if request.is_paged and not self.supports_paging:
            raise UnsupportedOperationError(f"{self.name} proxy does not support paging")
        if request.is_ranged and not self.supports_ranges:
            raise UnsupportedOperationError(f"{self.name} proxy does not support start/limit")


def _window(records: list, start: int, limit: int) -> list:
    """Slice records to [start, start + limit). limit 0 means no limit."""
    if limit:
        return records[start:start + limit]
    return records[start:]


# ---------------------------------------------------------------------------
# MemoryProxy
# ---------------------------------------------------------------------------

class MemoryProxy(Proxy):
    """Read-only proxy over a fixed payload.

    The payload is passed through the proxy's reader on every read, so
    data_property/total_property/mappings apply exactly as they would to
    a remote response. The reader's total count is reported unchanged
    when a window is applied.
    """

    def __init__(
        self,
        data: Any = None,
        id_property: str = "id",
        reader: Optional[Reader] = None,
        writer: Optional[Writer] = None,
    ):
        super().__init__(reader=reader, writer=writer)
        self.data = data
        self.id_property = id_property

    @property
    def name(self) -> str:
        return "memory"

    @property
    def supports_paging(self) -> bool:
        return True

    @property
    def supports_ranges(self) -> bool:
        return True

    @property
    def supported_actions(self) -> frozenset[CrudAction]:
        return frozenset({CrudAction.READ})

    def check_request(self, request: Request) -> None:
        super().check_request(request)
        if self.data is None:
            raise ConfigurationError(["No `data` set on MemoryProxy"])

    def read(self, request: ReadRequest) -> None:
        if self.data is None:
            raise ConfigurationError(["No `data` set on MemoryProxy"])
        try:
            result = self.reader.read(self.data)
        except ReaderError as exc:
            request.reject(exc)
            return

        records = list(result.records)
        if request.model_id is not None:
            wanted = str(request.model_id)
            records = [r for r in records if str(r.get(self.id_property)) == wanted]
        else:
            records = _window(records, request.start, request.limit)
        request.resolve(ResultSet(
            records=records,
            total_count=result.total_count,
            message=result.message,
        ))

    def create(self, request: Request) -> None:
        raise UnsupportedOperationError("memory proxy is read-only")

    def update(self, request: Request) -> None:
        raise UnsupportedOperationError("memory proxy is read-only")

    def destroy(self, request: Request) -> None:
        raise UnsupportedOperationError("memory proxy is read-only")


# ---------------------------------------------------------------------------
# StorageProxy
# ---------------------------------------------------------------------------

class StorageProxy(Proxy):
    """Proxy over a string key/value storage medium.

    Layout inside the medium:
    - "{storage_key}-recordIds": JSON list of ids (as strings)
    - "{storage_key}-recordCounter": last id handed out
    - "{storage_key}-{id}": JSON {"version": ..., "data": record}

    Ids are compared as strings so numeric and string ids mix. New ids
    are integers that skip any id already stored.
    """

    def __init__(
        self,
        storage_key: str,
        storage: Optional[MutableMapping[str, str]] = None,
        id_property: str = "id",
        version: int = 1,
        reader: Optional[Reader] = None,
        writer: Optional[Writer] = None,
    ):
        if not storage_key:
            raise ConfigurationError(["StorageProxy requires a storage_key"])
        super().__init__(reader=reader, writer=writer)
        self.storage_key = storage_key
        self.storage: MutableMapping[str, str] = storage if storage is not None else {}
        self.id_property = id_property
        self.version = version

    def __repr__(self) -> str:
        return f"StorageProxy(storage_key={self.storage_key!r})"

    @property
    def name(self) -> str:
        return "storage"

    @property
    def supports_paging(self) -> bool:
        return True

    @property
    def supports_ranges(self) -> bool:
        return True

    # -- CRUD ---------------------------------------------------------------

    def create(self, request: Request) -> None:
        returned = []
        for record in request.records:
            new_id = self.get_new_id()
            record_ids = self.get_record_ids()
            record_ids.append(str(new_id))
            self.set_record(record, new_id)
            self.set_record_ids(record_ids)
            returned.append({self.id_property: new_id})
        request.resolve(ResultSet(records=returned))

    def read(self, request: ReadRequest) -> None:
        record_ids = self.get_record_ids()
        if request.model_id is not None:
            wanted = str(request.model_id)
            selected = [wanted] if wanted in record_ids else []
        else:
            selected = _window(record_ids, request.start, request.limit)

        records = [r for r in (self.get_record(i) for i in selected) if r is not None]
        request.resolve(ResultSet(records=records, total_count=len(record_ids)))

    def update(self, request: Request) -> None:
        if not self._check_ids(request):
            return
        record_ids = self.get_record_ids()
        for record in request.records:
            record_id = str(record[self.id_property])
            if record_id not in record_ids:
                record_ids.append(record_id)
            self.set_record(record)
        self.set_record_ids(record_ids)
        request.resolve()

    def destroy(self, request: Request) -> None:
        if not self._check_ids(request):
            return
        record_ids = self.get_record_ids()
        for record in request.records:
            record_id = str(record[self.id_property])
            if record_id in record_ids:
                self.remove_record(record_id)
                record_ids.remove(record_id)
        self.set_record_ids(record_ids)
        request.resolve()

    def _check_ids(self, request: Request) -> bool:
        for record in request.records:
            if record.get(self.id_property) is None:
                request.reject(ProxyError(
                    f"cannot {request.action.value} a record without "
                    f"{self.id_property!r}",
                    request_id=request.id,
                ))
                return False
        return True

    # -- records ------------------------------------------------------------

    def set_record(self, record: Any, record_id: Any = None) -> None:
        if record_id is None:
            record_id = record[self.id_property]
        data = self.writer.process_record(record)
        data[self.id_property] = record_id
        self.storage[self.record_key(record_id)] = json.dumps(
            {"version": self.version, "data": data}
        )

    def get_record(self, record_id: Any) -> Optional[dict]:
        raw = self.storage.get(self.record_key(record_id))
        if not raw:
            return None
        payload = json.loads(raw)
        return self.migrate(payload["version"], payload["data"])

    def remove_record(self, record_id: Any) -> None:
        self.storage.pop(self.record_key(record_id), None)

    def migrate(self, version: int, data: dict) -> dict:
        """Hook for upgrading records stored by an older version."""
        return data

    # -- bookkeeping --------------------------------------------------------

    def get_record_ids(self) -> list[str]:
        raw = self.storage.get(self.record_ids_key)
        return json.loads(raw) if raw else []

    def set_record_ids(self, record_ids: Iterable[Any]) -> None:
        self.storage[self.record_ids_key] = json.dumps([str(i) for i in record_ids])

    def get_new_id(self) -> int:
        counter = int(self.storage.get(self.record_counter_key) or 0)
        current = set(self.get_record_ids())
        new_id = counter + 1
        while str(new_id) in current:
            new_id += 1
        self.storage[self.record_counter_key] = str(new_id)
        return new_id

    @property
    def record_ids_key(self) -> str:
        return f"{self.storage_key}-recordIds"

    @property
    def record_counter_key(self) -> str:
        return f"{self.storage_key}-recordCounter"

    def record_key(self, record_id: Any) -> str:
        if record_id is None:
            raise ValueError("record_id required")
        return f"{self.storage_key}-{record_id}"

    def clear(self) -> None:
        for record_id in self.get_record_ids():
            self.remove_record(record_id)
        self.storage.pop(self.record_ids_key, None)
        self.storage.pop(self.record_counter_key, None)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

ProxyFactory = Callable[..., Proxy]


class ProxyRegistry:
    """Maps proxy type names to factories.

    create() accepts a Proxy instance (returned unchanged), a type name,
    or a mapping with a "type" key whose other keys are passed to the
    factory as keyword arguments.
    """

    def __init__(self):
        self._factories: dict[str, ProxyFactory] = {}

    def __contains__(self, type_name: str) -> bool:
        return type_name in self._factories

    def register(self, type_name: str, factory: ProxyFactory) -> None:
        if type_name in self._factories:
            raise ValueError(f"Proxy type already registered: {type_name!r}")
        self._factories[type_name] = factory

    def types(self) -> list[str]:
        return sorted(self._factories)

    def create(self, config: Union[Proxy, str, dict], **overrides) -> Proxy:
        if isinstance(config, Proxy):
            return config
        if isinstance(config, str):
            type_name, options = config, {}
        else:
            options = dict(config)
            type_name = options.pop("type", None)

        factory = self._factories.get(type_name)
        if factory is None:
            raise ConfigurationError([
                f"Unknown proxy type: {type_name!r}. Valid: {self.types()}"
            ])
        options.update(overrides)
        return factory(**options)


def default_registry() -> ProxyRegistry:
    """Fresh registry holding the built-in proxies."""
    registry = ProxyRegistry()
    registry.register("memory", MemoryProxy)
    registry.register("storage", StorageProxy)
    return registry

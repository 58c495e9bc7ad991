"""Simulated network proxy and request statistics.

SimulatedProxy wraps a backend proxy and delivers each Request to it
after a sampled latency on a SimPy environment. In-flight requests
overlap in simulated time and complete out of order, while every
callback still runs on a single thread.

Key types:
- LatencyDistribution: ABC for opaque latency sampling
- LognormalLatency: Lognormal distribution with minimum floor
- FixedLatency: Constant latency (testing)
- SimulatedProxy: Latency/failure-injecting wrapper over a backend proxy
- SimulatedFailure: ProxyError a simulated request is rejected with
- Statistics: Per-request rows with pandas/parquet export

Latency profiles are in ferry/profiles/*.toml, loaded by
load_latency_profile().
"""

from __future__ import annotations

import logging
import tomllib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Generator, Optional

import numpy as np
import pandas as pd
import pyarrow as pa
import pyarrow.parquet as pq
import simpy

from ferry.future import FutureState
from ferry.proxy import Proxy, ProxyError
from ferry.request import CrudAction, ReadRequest, Request

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Latency distributions
# ---------------------------------------------------------------------------

class LatencyDistribution(ABC):
    """Round-trip time of one simulated request."""

    @abstractmethod
    def sample(self, rng: np.random.RandomState) -> float:
        """Milliseconds until the request is delivered, drawn from rng."""
        ...


@dataclass(frozen=True)
class LognormalLatency(LatencyDistribution):
    """Request latency with a long right tail, clamped at a floor.

    Parameterised by mu = ln(median round trip). A larger sigma gives more
    slow outliers, which is what reorders page completions in a paged load.
    """
    mu: float
    sigma: float
    min_latency_ms: float = 1.0

    def sample(self, rng: np.random.RandomState) -> float:
        raw = rng.lognormal(mean=self.mu, sigma=self.sigma)
        return max(raw, self.min_latency_ms)

    @classmethod
    def from_median(cls, median_ms: float, sigma: float,
                    min_latency_ms: float = 1.0) -> LognormalLatency:
        """Build from the median round trip in milliseconds."""
        return cls(mu=float(np.log(median_ms)), sigma=sigma,
                   min_latency_ms=min_latency_ms)


@dataclass(frozen=True)
class FixedLatency(LatencyDistribution):
    """Every request takes latency_ms. Completion follows issue order."""
    latency_ms: float

    def sample(self, rng: np.random.RandomState) -> float:
        return self.latency_ms


# ---------------------------------------------------------------------------
# Latency profile loading
# ---------------------------------------------------------------------------

_PROFILES_DIR = Path(__file__).parent / "profiles"
_PROFILE_CACHE: dict[str, dict] = {}

_VALID_PROFILES = frozenset({"instant", "lan", "wan"})


def load_latency_profile(name: str) -> dict:
    """Load a latency profile from TOML, with caching."""
    if name in _PROFILE_CACHE:
        return _PROFILE_CACHE[name]

    toml_path = _PROFILES_DIR / f"{name}.toml"
    if not toml_path.exists():
        raise ValueError(
            f"Unknown latency profile: {name!r}. Valid: {sorted(_VALID_PROFILES)}"
        )

    with open(toml_path, "rb") as f:
        profile = tomllib.load(f)

    _PROFILE_CACHE[name] = profile
    return profile


def latency_from_profile(name: str) -> LatencyDistribution:
    """Build the LatencyDistribution described by a named profile."""
    latency = load_latency_profile(name)["latency"]
    if latency["distribution"] == "fixed":
        return FixedLatency(latency_ms=latency["latency_ms"])
    return LognormalLatency.from_median(
        median_ms=latency["median_ms"],
        sigma=latency["sigma"],
        min_latency_ms=latency.get("min_latency_ms", 1.0),
    )


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

# Arrow schema for parquet output
_ARROW_SCHEMA = pa.schema([
    ("request_id", pa.int64()),
    ("action", pa.string()),
    ("state", pa.string()),
    ("t_submit", pa.float64()),
    ("t_settle", pa.float64()),
    ("latency_ms", pa.float64()),
    ("record_count", pa.int32()),
    ("page", pa.int32()),
    ("error", pa.string()),
])


def _rows_to_arrow_table(rows: list[dict]) -> pa.Table:
    """Build the per-request table. Missing page/error cells become nulls."""
    columns = {
        field.name: pa.array([row.get(field.name) for row in rows], type=field.type)
        for field in _ARROW_SCHEMA
    }
    return pa.table(columns, schema=_ARROW_SCHEMA)


class Statistics:
    """Settled-request statistics for one simulated run."""

    def __init__(self):
        self.rows: list[dict] = []
        self.resolved: int = 0
        self.rejected: int = 0
        self.aborted: int = 0
        self.records_delivered: int = 0

    def record_request(self, request: Request, t_submit: float, t_settle: float) -> None:
        """Record a settled request."""
        if request.state is FutureState.RESOLVED:
            self.resolved += 1
        elif request.state is FutureState.REJECTED:
            self.rejected += 1
        elif request.state is FutureState.ABORTED:
            self.aborted += 1

        record_count = len(request.result_set) if request.result_set is not None else 0
        if request.state is FutureState.RESOLVED:
            self.records_delivered += record_count

        self.rows.append({
            "request_id": request.id,
            "action": request.action.value,
            "state": request.state.value,
            "t_submit": t_submit,
            "t_settle": t_settle,
            "latency_ms": t_settle - t_submit,
            "record_count": record_count,
            "page": request.page if isinstance(request, ReadRequest) else None,
            "error": str(request.error) if request.error is not None else None,
        })

    @property
    def total(self) -> int:
        """Total requests recorded."""
        return self.resolved + self.rejected + self.aborted

    @property
    def success_rate(self) -> float:
        """Fraction of requests that resolved."""
        if self.total == 0:
            return 0.0
        return self.resolved / self.total

    def to_dataframe(self) -> pd.DataFrame:
        """Export request rows to DataFrame for analysis."""
        if not self.rows:
            return pd.DataFrame()
        return _rows_to_arrow_table(self.rows).to_pandas()

    def export_parquet(self, path: str) -> None:
        """Export to parquet file."""
        if not self.rows:
            # Write empty file with correct schema
            pq.write_table(
                pa.table({f.name: pa.array([], type=f.type) for f in _ARROW_SCHEMA},
                         schema=_ARROW_SCHEMA),
                path, compression="snappy",
            )
            return
        pq.write_table(_rows_to_arrow_table(self.rows), path, compression="snappy")


# ---------------------------------------------------------------------------
# Simulated proxy
# ---------------------------------------------------------------------------

class SimulatedFailure(ProxyError):
    """Injected failure of a simulated request."""
    pass


class SimulatedProxy(Proxy):
    """Delivers requests to a backend proxy after a sampled latency.

    Each request becomes a SimPy process. The latency is split into
    ``chunks`` equal steps and request.notify(step, chunks) is sent after
    each. The request is then rejected with SimulatedFailure with
    probability ``failure_rate``, otherwise handed to the backend. An
    exception raised by the backend handler rejects the request with that
    exception. Requests the backend cannot serve fail in perform(),
    before anything is scheduled.

    abort() interrupts the request's process. The request is never
    settled by the interrupt itself.
    """

    def __init__(
        self,
        backend: Proxy,
        env: simpy.Environment,
        latency: LatencyDistribution,
        rng: np.random.RandomState,
        failure_rate: float = 0.0,
        chunks: int = 1,
        statistics: Optional[Statistics] = None,
    ):
        if not 0.0 <= failure_rate <= 1.0:
            raise ValueError(f"failure_rate must be in [0, 1], got {failure_rate}")
        if chunks < 1:
            raise ValueError(f"chunks must be >= 1, got {chunks}")
        super().__init__(reader=backend.reader, writer=backend.writer)
        self.backend = backend
        self.env = env
        self.latency = latency
        self.rng = rng
        self.failure_rate = failure_rate
        self.chunks = chunks
        self.statistics = statistics
        self._processes: dict[int, simpy.Process] = {}

    def __repr__(self) -> str:
        return f"SimulatedProxy(backend={self.backend!r})"

    @property
    def name(self) -> str:
        return f"simulated-{self.backend.name}"

    @property
    def supports_paging(self) -> bool:
        return self.backend.supports_paging

    @property
    def supports_ranges(self) -> bool:
        return self.backend.supports_ranges

    @property
    def supported_actions(self) -> frozenset[CrudAction]:
        return self.backend.supported_actions

    def check_request(self, request: Request) -> None:
        self.backend.check_request(request)

    @property
    def in_flight(self) -> int:
        return len(self._processes)

    def create(self, request: Request) -> None:
        self._schedule(request, self.backend.create)

    def read(self, request: ReadRequest) -> None:
        self._schedule(request, self.backend.read)

    def update(self, request: Request) -> None:
        self._schedule(request, self.backend.update)

    def destroy(self, request: Request) -> None:
        self._schedule(request, self.backend.destroy)

    def abort(self, request: Request) -> None:
        process = self._processes.get(request.id)
        # A process cannot interrupt itself; it notices the abort on its own.
        if process is None or not process.is_alive or process is self.env.active_process:
            return
        process.interrupt("aborted")

    def _schedule(self, request: Request, handler) -> None:
        t_submit = self.env.now
        if self.statistics is not None:
            stats = self.statistics
            request.on_settled(
                lambda *args: stats.record_request(request, t_submit, self.env.now)
            )
        self._processes[request.id] = self.env.process(self._deliver(request, handler))

    def _deliver(self, request: Request, handler) -> Generator:
        """SimPy process: wait, report progress, then settle."""
        step = self.latency.sample(self.rng) / self.chunks
        try:
            for i in range(1, self.chunks + 1):
                yield self.env.timeout(step)
                if request.is_complete:
                    logger.debug(f"{request!r} settled while in flight, dropping delivery")
                    return
                request.notify(i, self.chunks)
            if request.is_complete:
                return

            if self.failure_rate and self.rng.random_sample() < self.failure_rate:
                request.reject(SimulatedFailure(
                    f"simulated {request.action.value} failure",
                    request_id=request.id,
                ))
            else:
                try:
                    handler(request)
                except Exception as exc:
                    logger.warning(f"{self.backend.name} failed {request!r}: {exc}")
                    request.reject(exc)
        except simpy.Interrupt:
            logger.debug(f"{request!r} interrupted at t={self.env.now:.1f}")
        finally:
            self._processes.pop(request.id, None)

"""Configuration parsing and validation for ferry proxies.

This module contains:
- load_proxy_config(): entry point for TOML configuration files
- build_proxy_config(): same, from an already-parsed dict
- validate_config(): collects errors and warnings before anything is built

Example:

    [proxy]
    type = "storage"
    storage_key = "users"

    [reader]
    type = "json"
    data_property = "."

    [reader.mappings]
    "profile.name" = "name"

    [simulation]
    seed = 42
    profile = "wan"
    failure_rate = 0.01
    chunks = 2

Latency profiles are in ferry/profiles/*.toml, loaded by
ferry.simulation.load_latency_profile().
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass
from typing import Optional

import numpy as np
import simpy

from ferry.errors import ConfigurationError
from ferry.proxy import Proxy, ProxyRegistry, default_registry
from ferry.reader import READER_TYPES, Reader
from ferry.simulation import (
    SimulatedProxy,
    Statistics,
    latency_from_profile,
    load_latency_profile,
)
from ferry.writer import WRITER_TYPES, Writer

logger = logging.getLogger(__name__)

__all__ = [
    "ConfigurationError",
    "ProxyConfig",
    "build_proxy_config",
    "load_proxy_config",
    "validate_config",
]

_KNOWN_SECTIONS = frozenset({"proxy", "reader", "writer", "simulation"})


@dataclass(frozen=True)
class ProxyConfig:
    """Fully constructed proxy stack.

    proxy is what callers use. When a [simulation] section is present it
    is a SimulatedProxy wrapping backend, and environment/statistics are
    set; otherwise proxy is backend and both are None.
    """
    proxy: Proxy
    backend: Proxy
    reader: Reader
    writer: Writer
    environment: Optional[simpy.Environment] = None
    statistics: Optional[Statistics] = None
    seed: Optional[int] = None


def load_proxy_config(
    config_path: str,
    *,
    seed_override: int | None = None,
    registry: ProxyRegistry | None = None,
) -> ProxyConfig:
    """Load proxy configuration from TOML file.

    Args:
        config_path: Path to TOML configuration file.
        seed_override: If provided, overrides the simulation seed.
        registry: Proxy registry to resolve [proxy].type against.
            Defaults to default_registry().

    Returns:
        ProxyConfig ready to use.
    """
    with open(config_path, "rb") as f:
        raw = tomllib.load(f)
    return build_proxy_config(raw, seed_override=seed_override, registry=registry)


def build_proxy_config(
    raw: dict,
    *,
    seed_override: int | None = None,
    registry: ProxyRegistry | None = None,
) -> ProxyConfig:
    """Build a ProxyConfig from a parsed configuration dict."""
    registry = registry if registry is not None else default_registry()

    if seed_override is not None:
        raw = dict(raw)
        raw["simulation"] = dict(raw.get("simulation", {}), seed=seed_override)

    errors, warnings = validate_config(raw, registry=registry)
    if errors:
        raise ConfigurationError(errors)
    for warning in warnings:
        logger.warning(warning)

    reader = _build_reader(raw.get("reader", {}))
    writer = _build_writer(raw.get("writer", {}))
    proxy_cfg = dict(raw["proxy"])
    backend = registry.create(proxy_cfg, reader=reader, writer=writer)

    sim_cfg = raw.get("simulation")
    if not sim_cfg or not sim_cfg.get("enabled", True):
        return ProxyConfig(proxy=backend, backend=backend, reader=reader, writer=writer)

    seed = sim_cfg.get("seed")
    rng = np.random.RandomState(seed) if seed is not None else np.random.RandomState()
    env = simpy.Environment()
    statistics = Statistics()
    proxy = SimulatedProxy(
        backend,
        env,
        latency_from_profile(sim_cfg.get("profile", "instant")),
        rng,
        failure_rate=sim_cfg.get("failure_rate", 0.0),
        chunks=sim_cfg.get("chunks", 1),
        statistics=statistics,
    )
    logger.debug(f"Built {proxy!r} with seed={seed}")
    return ProxyConfig(
        proxy=proxy,
        backend=backend,
        reader=reader,
        writer=writer,
        environment=env,
        statistics=statistics,
        seed=seed,
    )


def _build_reader(reader_cfg: dict) -> Reader:
    """Build Reader from [reader] config section."""
    reader_type = READER_TYPES[reader_cfg.get("type", "json")]
    return reader_type(
        data_property=reader_cfg.get("data_property", "."),
        total_property=reader_cfg.get("total_property", ""),
        message_property=reader_cfg.get("message_property", ""),
        data_mappings=reader_cfg.get("mappings", {}),
    )


def _build_writer(writer_cfg: dict) -> Writer:
    """Build Writer from [writer] config section."""
    writer_type = writer_cfg.get("type", "json")
    if writer_type == "json":
        return WRITER_TYPES["json"](root_property=writer_cfg.get("root_property", ""))
    return WRITER_TYPES[writer_type]()


def validate_config(
    config: dict,
    registry: ProxyRegistry | None = None,
) -> tuple[list[str], list[str]]:
    """Validate configuration and return errors/warnings.

    Returns:
        (errors, warnings) where:
        - errors: List of fatal configuration errors
        - warnings: List of non-fatal warnings
    """
    registry = registry if registry is not None else default_registry()
    errors = []
    warnings = []

    for section in sorted(set(config) - _KNOWN_SECTIONS):
        warnings.append(f"Unknown configuration section [{section}] ignored")

    # Proxy section
    proxy = config.get("proxy")
    if not isinstance(proxy, dict):
        errors.append("[proxy] section is required")
    else:
        proxy_type = proxy.get("type")
        if proxy_type is None:
            errors.append("proxy.type is required")
        elif proxy_type not in registry:
            errors.append(f"proxy.type must be one of {registry.types()}, got '{proxy_type}'")
        if proxy_type == "storage" and not proxy.get("storage_key"):
            errors.append("proxy.storage_key is required for the storage proxy")

    # Reader section
    reader = config.get("reader", {})
    reader_type = reader.get("type", "json")
    if reader_type not in READER_TYPES:
        errors.append(f"reader.type must be one of {sorted(READER_TYPES)}, got '{reader_type}'")
    for key in ("data_property", "total_property", "message_property"):
        if key in reader and not isinstance(reader[key], str):
            errors.append(f"reader.{key} must be a string")
    if reader.get("data_property") == "":
        errors.append("reader.data_property must not be empty (use '.' for the root)")
    mappings = reader.get("mappings", {})
    if not isinstance(mappings, dict):
        errors.append("reader.mappings must be a table")
    else:
        for source, target in mappings.items():
            if not isinstance(target, str):
                errors.append(f"reader.mappings.{source} must map to a string")

    # Writer section
    writer = config.get("writer", {})
    writer_type = writer.get("type", "json")
    if writer_type not in WRITER_TYPES:
        errors.append(f"writer.type must be one of {sorted(WRITER_TYPES)}, got '{writer_type}'")
    elif writer_type != "json" and "root_property" in writer:
        warnings.append(f"writer.root_property is ignored by the {writer_type} writer")

    # Simulation section
    sim = config.get("simulation")
    if sim is not None:
        if not sim.get("enabled", True) and len(sim) > 1:
            warnings.append("simulation.enabled = false, other simulation settings ignored")

        failure_rate = sim.get("failure_rate", 0.0)
        if not 0.0 <= failure_rate <= 1.0:
            errors.append(f"simulation.failure_rate must be in [0, 1], got {failure_rate}")

        chunks = sim.get("chunks", 1)
        if not isinstance(chunks, int) or chunks < 1:
            errors.append(f"simulation.chunks must be an integer >= 1, got {chunks}")

        profile = sim.get("profile", "instant")
        try:
            load_latency_profile(profile)
        except ValueError as exc:
            errors.append(f"simulation.profile: {exc}")

        seed = sim.get("seed")
        if seed is not None and (not isinstance(seed, int) or seed < 0):
            errors.append(f"simulation.seed must be a non-negative integer, got {seed}")

    return errors, warnings

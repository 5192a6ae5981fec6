from __future__ import annotations

import os
import re
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping

ENV_PREFIX = "AM_"

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h)")


class ConfigError(ValueError):
    pass


def parse_bool(raw: str) -> bool:
    return raw.strip().lower() in {"1", "t", "true", "yes", "y", "on"}


def parse_duration(raw: str) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) or unit suffixed parts such as
    ``500ms``, ``10s``, ``1m30s`` or ``2h``.
    """
    text = raw.strip().lower()
    if not text:
        raise ConfigError("empty duration")
    try:
        return float(text)
    except ValueError:
        pass

    pos = 0
    total = 0.0
    scale = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}
    for m in _DURATION_PART_RE.finditer(text):
        if m.start() != pos:
            break
        total += float(m.group(1)) * scale[m.group(2)]
        pos = m.end()
    if pos != len(text) or pos == 0:
        raise ConfigError(f"{raw!r} is not a valid duration")
    return total


@dataclass(frozen=True)
class Settings:
    # HTTP
    addr: str = ""
    port: int = 8900
    debug: bool = False
    log_format: str = "console"  # console|json

    # Storage
    dir: str = "/tmp"
    # When running in a container this is the host directory mounted at `dir`.
    external_dir: str | None = None
    db_path: str = "amgr.db"

    # Orchestrator
    orchestrator: str = "marathon"  # marathon|docker
    marathon_hosts: str = "localhost:8080"
    marathon_query_interval_s: float = 10.0
    marathon_timeout_s: float = 10.0
    docker_label: str | None = None
    key_mode: str = "path"  # path|name

    # Restart batching
    queue_capacity: int = 100
    restart_batch_count: int = 5
    restart_batch_timeout_s: float = 5.0
    flush_on_stop: bool = True

    @property
    def serve_addr(self) -> str:
        return f"{self.addr}:{self.port}"

    @property
    def host_dir(self) -> str:
        return self.external_dir or self.dir


# env var suffix -> (field, parser)
_ENV_FIELDS: dict[str, tuple[str, Any]] = {
    "ADDR": ("addr", str),
    "PORT": ("port", int),
    "DEBUG": ("debug", parse_bool),
    "LOG_FORMAT": ("log_format", str),
    "DIR": ("dir", str),
    "EXTERNAL_DIR": ("external_dir", str),
    "DB_PATH": ("db_path", str),
    "ORCHESTRATOR": ("orchestrator", str),
    "MARATHON_HOSTS": ("marathon_hosts", str),
    "MARATHON_QUERY_INTERVAL": ("marathon_query_interval_s", parse_duration),
    "MARATHON_TIMEOUT": ("marathon_timeout_s", parse_duration),
    "DOCKER_LABEL": ("docker_label", str),
    "KEY_MODE": ("key_mode", str),
    "QUEUE_CAPACITY": ("queue_capacity", int),
    "RESTART_BATCH_COUNT": ("restart_batch_count", int),
    "RESTART_BATCH_TIMEOUT": ("restart_batch_timeout_s", parse_duration),
    "FLUSH_ON_STOP": ("flush_on_stop", parse_bool),
}


def _from_env(environ: Mapping[str, str], prefix: str) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for suffix, (name, parse) in _ENV_FIELDS.items():
        raw = environ.get(prefix + suffix)
        if raw is None or raw == "":
            continue
        try:
            out[name] = parse(raw)
        except ValueError as e:
            raise ConfigError(f"{prefix}{suffix}={raw!r} is invalid: {e}") from e
    return out


def validate(s: Settings) -> None:
    if not os.path.isdir(s.dir):
        raise ConfigError(f"directory={s.dir} does not exist")
    if s.orchestrator not in {"marathon", "docker"}:
        raise ConfigError(f"orchestrator must be 'marathon' or 'docker', got {s.orchestrator!r}")
    if s.key_mode not in {"path", "name"}:
        raise ConfigError(f"key_mode must be 'path' or 'name', got {s.key_mode!r}")
    if s.log_format not in {"console", "json"}:
        raise ConfigError(f"log_format must be 'console' or 'json', got {s.log_format!r}")
    if not 0 < s.port < 65536:
        raise ConfigError(f"port={s.port} is out of range")
    if s.queue_capacity < 1:
        raise ConfigError("queue_capacity must be at least 1")
    if s.restart_batch_count < 1:
        raise ConfigError("restart_batch_count must be at least 1")
    if s.marathon_query_interval_s <= 0 or s.restart_batch_timeout_s <= 0:
        raise ConfigError("intervals and timeouts must be positive")


def load_settings(
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
    prefix: str = ENV_PREFIX,
) -> Settings:
    """Build settings from defaults, then CLI overrides, then environment.

    Environment variables win over command-line values. ``None`` values in
    ``overrides`` are ignored so argparse defaults can be passed straight in.
    """
    known = {f.name for f in fields(Settings)}
    values: dict[str, Any] = {}
    for name, value in (overrides or {}).items():
        if name not in known:
            raise ConfigError(f"unknown setting {name!r}")
        if value is not None:
            values[name] = value
    values.update(_from_env(os.environ if environ is None else environ, prefix))

    s = replace(Settings(), **values)
    if not s.external_dir:
        s = replace(s, external_dir=s.dir)
    validate(s)
    return s

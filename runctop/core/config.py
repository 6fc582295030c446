"""Runtime configuration read from ``RUNCTOP_*`` environment variables.

``main.py`` translates its command line flags into these variables, the
same way the rest of the tool is configured, so library code only ever
looks at the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional


DEFAULT_RUNC_ROOT = "/run/containerd/runc/k8s.io"
# Bulk listing and per-key lookups trade staleness differently; keep both.
DEFAULT_LIST_TTL = 10.0
DEFAULT_GET_TTL = 20.0
DEFAULT_REFRESH_INTERVAL = 5.0


def _env_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_flag(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class RuntimeConfig:
    runc_root: str = DEFAULT_RUNC_ROOT
    runc_bin: str = "runc"
    lsof_bin: str = "lsof"
    nsenter_bin: str = "nsenter"
    ifconfig_bin: str = "ifconfig"
    use_sudo: bool = True
    proc_root: str = "/proc"
    list_ttl: float = DEFAULT_LIST_TTL
    get_ttl: float = DEFAULT_GET_TTL
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    with_interfaces: bool = False
    verbose: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "RuntimeConfig":
        env = os.environ if environ is None else environ
        return cls(
            runc_root=env.get("RUNCTOP_RUNC_ROOT") or DEFAULT_RUNC_ROOT,
            runc_bin=env.get("RUNCTOP_RUNC_BIN") or "runc",
            lsof_bin=env.get("RUNCTOP_LSOF_BIN") or "lsof",
            nsenter_bin=env.get("RUNCTOP_NSENTER_BIN") or "nsenter",
            ifconfig_bin=env.get("RUNCTOP_IFCONFIG_BIN") or "ifconfig",
            use_sudo=_env_flag(env, "RUNCTOP_USE_SUDO", True),
            proc_root=env.get("RUNCTOP_PROC_ROOT") or "/proc",
            list_ttl=_env_float(env, "RUNCTOP_LIST_TTL", DEFAULT_LIST_TTL),
            get_ttl=_env_float(env, "RUNCTOP_GET_TTL", DEFAULT_GET_TTL),
            refresh_interval=_env_float(env, "RUNCTOP_REFRESH_INTERVAL", DEFAULT_REFRESH_INTERVAL),
            with_interfaces=_env_flag(env, "RUNCTOP_INTERFACES", False),
            verbose=_env_flag(env, "RUNCTOP_VERBOSE", False),
        )

    def command_prefix(self) -> List[str]:
        """Prefix for external tools; they all need root in practice."""
        return ["sudo"] if self.use_sudo else []

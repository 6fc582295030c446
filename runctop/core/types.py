"""Core shared data types for runctop.

This module centralizes the dataclasses passed between the source adapters,
the assembler, discovery and the cache. Keeping them apart from the
collaborators that fill them in lets every layer import them without
circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


IMAGE_NAME_ANNOTATION = "io.kubernetes.cri.image-name"


@dataclass
class LsofOutput:
    """One open-file record as reported by ``lsof -F``."""

    command: str = ""
    pid: str = ""
    user: str = ""
    fd: str = ""
    type: str = ""
    device: str = ""
    size_off: str = ""
    node: str = ""
    name: str = ""


@dataclass
class NetworkUsage:
    """Byte counters summed across every interface in the network namespace."""

    received_bytes: int = 0
    transmitted_bytes: int = 0


@dataclass
class ResourceUsage:
    """CPU/memory snapshot of the container init process.

    NOTE: ``cpu_usage`` is ``(user + system) * 100``, i.e. cumulative CPU
    seconds scaled by 100. It is not normalized by wall-clock time or core
    count and only ever grows while the process runs.
    """

    cpu_usage: float = 0.0
    memory_usage: Dict[str, int] = field(default_factory=dict)  # "RSS"/"VMS" in kB
    swap_usage: int = 0  # kB


@dataclass
class ResourceLimits:
    # Placeholders, nothing computes or enforces limits yet
    cpu_limit: float = 0.0  # percentage or cores
    memory_limit: int = 0  # kB
    disk_io_limit: int = 0  # IOPS or MB/s
    network_limit: int = 0  # MB/s


# Enrichment attributes written by the assembler. They are either all None
# (never populated) or all set (population succeeded).
ENRICHMENT_FIELDS = (
    "open_files",
    "network_usage",
    "mounted_volumes",
    "exposed_ports",
    "start_command",
    "security_profiles",
    "env_variables",
    "resource_usage",
)


@dataclass
class Container:
    """A runc managed container, keyed in the cache by its host PID.

    Identity and lifecycle fields come straight from ``runc list``; the
    enrichment fields stay ``None`` until ``ContainerAssembler.populate``
    succeeds for this record.
    """

    id: str
    pid: int
    status: str = ""
    bundle: str = ""
    rootfs: str = ""
    created: str = ""
    annotations: Dict[str, str] = field(default_factory=dict)
    owner: str = ""
    oci_version: str = ""

    open_files: Optional[List[LsofOutput]] = None
    network_usage: Optional[NetworkUsage] = None
    mounted_volumes: Optional[List[str]] = None
    exposed_ports: Optional[List[int]] = None
    start_command: Optional[str] = None
    security_profiles: Optional[List[str]] = None
    env_variables: Optional[List[str]] = None
    resource_usage: Optional[ResourceUsage] = None
    resource_limits: ResourceLimits = field(default_factory=ResourceLimits)

    # Only filled when interface enrichment is switched on
    network_interfaces: Optional[Dict[str, str]] = None

    @classmethod
    def from_runc(cls, entry: Dict[str, Any]) -> "Container":
        """Build a bare record from one object of ``runc list --format json``."""
        return cls(
            id=str(entry.get("id") or ""),
            pid=int(entry.get("pid") or 0),
            status=entry.get("status") or "",
            bundle=entry.get("bundle") or "",
            rootfs=entry.get("rootfs") or "",
            created=entry.get("created") or "",
            annotations=dict(entry.get("annotations") or {}),
            owner=entry.get("owner") or "",
            oci_version=entry.get("ociVersion") or "",
        )

    @property
    def cache_key(self) -> str:
        return str(self.pid)

    @property
    def is_populated(self) -> bool:
        return all(getattr(self, name) is not None for name in ENRICHMENT_FIELDS)

    @property
    def image_name(self) -> Optional[str]:
        return self.annotations.get(IMAGE_NAME_ANNOTATION)

    def created_at(self) -> Optional[datetime]:
        """Parse ``created`` (RFC3339, nanosecond precision) or return None."""
        raw = self.created.strip()
        if not raw:
            return None
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        # datetime only understands microseconds; trim any extra digits
        if "." in raw:
            head, _, rest = raw.partition(".")
            digits = ""
            while rest and rest[0].isdigit():
                digits += rest[0]
                rest = rest[1:]
            raw = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            return None

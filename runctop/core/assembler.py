"""Container population: run every source adapter for one container.

Population is all-or-nothing. The first adapter failure aborts the pass
with an ``AssemblyError`` naming the step, and the container keeps its
bare identity fields. A container whose process exits between discovery
and population therefore fails as a whole; callers skip it for the cycle.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .config import RuntimeConfig
from .errors import AssemblyError, FetchError
from .sources import IPidSource, default_sources
from .types import Container


# step name -> Container attribute
STEP_ATTRIBUTES = {
    "open files": "open_files",
    "network usage": "network_usage",
    "mounted volumes": "mounted_volumes",
    "exposed ports": "exposed_ports",
    "start command": "start_command",
    "security profiles": "security_profiles",
    "environment variables": "env_variables",
    "resource usage": "resource_usage",
    "network interfaces": "network_interfaces",
}


class ContainerAssembler:
    def __init__(self, sources: Optional[Mapping[str, IPidSource]] = None,
                 config: Optional[RuntimeConfig] = None):
        if sources is None:
            sources = default_sources(config)
        unknown = [name for name in sources if name not in STEP_ATTRIBUTES]
        if unknown:
            raise ValueError(f"unknown enrichment steps: {', '.join(unknown)}")
        self.sources = dict(sources)

    def populate(self, container: Container) -> Container:
        """Enrich ``container`` in place and return it.

        Steps run sequentially in source order. Results are only written
        back once every step succeeded.
        """
        results: Dict[str, Any] = {}
        for step, source in self.sources.items():
            try:
                results[STEP_ATTRIBUTES[step]] = source.fetch(container.pid)
            except FetchError as e:
                raise AssemblyError(step, container.pid, e) from e

        for attr, value in results.items():
            setattr(container, attr, value)
        return container

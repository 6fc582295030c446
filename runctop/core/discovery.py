"""Container discovery through ``runc list``."""

from __future__ import annotations

import json
from typing import List, Optional

from .assembler import ContainerAssembler
from .config import RuntimeConfig
from .errors import AssemblyError, DecodeError, DiscoveryError, EmptyOutputError
from .sources import Runner, run_command
from .types import Container


class RuncDiscovery:
    """Lists the containers under one runc root and optionally populates them."""

    def __init__(self, config: Optional[RuntimeConfig] = None,
                 assembler: Optional[ContainerAssembler] = None,
                 runner: Runner = run_command):
        self.config = config or RuntimeConfig.from_env()
        self._assembler = assembler
        self._runner = runner

    @property
    def assembler(self) -> ContainerAssembler:
        if self._assembler is None:
            self._assembler = ContainerAssembler(config=self.config)
        return self._assembler

    def list_command(self) -> List[str]:
        return self.config.command_prefix() + [
            self.config.runc_bin, "--root", self.config.runc_root, "list", "--format", "json",
        ]

    @staticmethod
    def decode(output: str) -> List[Container]:
        """Decode the JSON listing into bare containers.

        Empty output is an error: a node always runs at least its infra
        containers. A literal ``null`` is what runc prints for zero
        containers and decodes to an empty list.
        """
        if not output or not output.strip():
            raise EmptyOutputError("runc output is empty")
        try:
            payload = json.loads(output)
        except ValueError as e:
            raise DecodeError(f"failed to unmarshal the runc output: {e}") from e
        if payload is None:
            return []
        if not isinstance(payload, list):
            raise DecodeError(f"failed to unmarshal the runc output: expected a list, got {type(payload).__name__}")
        containers: List[Container] = []
        for entry in payload:
            if not isinstance(entry, dict):
                raise DecodeError(f"failed to unmarshal the runc output: unexpected entry {entry!r}")
            try:
                containers.append(Container.from_runc(entry))
            except (TypeError, ValueError) as e:
                raise DecodeError(f"failed to unmarshal the runc output: {e}") from e
        return containers

    def discover(self, populate: bool = False) -> List[Container]:
        """Fresh containers from runc; populated ones when ``populate`` is set.

        With population a single failing container aborts the whole call.
        """
        containers = self.decode(self._runner(self.list_command()))
        if populate:
            for container in containers:
                try:
                    self.assembler.populate(container)
                except AssemblyError as e:
                    raise DiscoveryError(f"failed to populate container {container.pid}: {e}") from e
        return containers

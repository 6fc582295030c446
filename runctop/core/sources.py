"""Container data source abstractions.

Every piece of enrichment data comes from exactly one external mechanism:

* psutil (CPU times, memory, environment, command line)
* ``lsof -F`` (open files)
* ``/proc/<pid>/...`` pseudo-files (network counters, listening ports,
  mounts, LSM label, swap)
* ``nsenter ... ifconfig`` (interface addresses, optional)

Each mechanism sits behind the small ``IPidSource`` interface so the
assembler can be driven by fakes in tests. The text parsers are plain
module level functions for the same reason.

Adapters raise ``FetchError`` when the source could not be read at all and
``ExecutionError`` when an external tool failed to run. Output that was
read fine but contains nothing useful is returned as an empty value.
"""

from __future__ import annotations

import os
import subprocess
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Set

import psutil

from .config import RuntimeConfig
from .errors import ExecutionError, FetchError
from .types import LsofOutput, NetworkUsage, ResourceUsage


Runner = Callable[[List[str]], str]


def run_command(argv: List[str]) -> str:
    """Run ``argv`` and return its stdout.

    No timeout is applied: a hung tool blocks the caller. Output is decoded
    as UTF-8 with replacement since lsof prints file names as raw bytes.
    """
    try:
        result = subprocess.run(argv, capture_output=True, text=True,
                                encoding="utf-8", errors="replace")
    except OSError as e:  # binary not found, not executable, ...
        raise ExecutionError(argv, stderr=str(e)) from e
    if result.returncode != 0:
        raise ExecutionError(argv, result.returncode, result.stderr)
    return result.stdout


# ---------------- Parsers ---------------- #

_LSOF_FIELDS = {
    'c': 'command',
    'u': 'user',
    'f': 'fd',
    't': 'type',
    'D': 'device',
    's': 'size_off',
    'i': 'node',
    'n': 'name',
}


def parse_lsof_output(text: str) -> List[LsofOutput]:
    """Parse ``lsof -F`` field output into records.

    Each line is a one character tag followed by the value. A new record
    starts at every ``p`` line after the first; the final record has no
    terminating ``p`` line and is flushed at the end.
    """
    entries: List[LsofOutput] = []
    entry = LsofOutput()
    for line in text.split('\n'):
        if len(line) <= 1:
            continue
        tag, value = line[0], line[1:]
        if tag == 'p':
            if entry.pid:
                entries.append(entry)
                entry = LsofOutput()
            entry.pid = value
        elif tag in _LSOF_FIELDS:
            setattr(entry, _LSOF_FIELDS[tag], value)
    if entry.pid:
        entries.append(entry)
    return entries


def parse_net_dev(text: str) -> NetworkUsage:
    """Sum rx/tx bytes (columns 2 and 10) over every interface line."""
    received = 0
    transmitted = 0
    for line in text.split('\n'):
        fields = line.split()
        if len(fields) <= 10:
            continue
        try:
            rx = int(fields[1])
            tx = int(fields[9])
        except ValueError:
            continue
        received += rx
        transmitted += tx
    return NetworkUsage(received_bytes=received, transmitted_bytes=transmitted)


def parse_mounts(text: str) -> List[str]:
    volumes: List[str] = []
    for line in text.split('\n'):
        parts = line.split(' ')
        if len(parts) > 2:
            volumes.append(parts[1])
    return volumes


def parse_security_profiles(text: str) -> List[str]:
    return [token.strip() for token in text.split(',')]


TCP_LISTEN = "0A"


def parse_listen_ports(text: str, inodes: Optional[Set[str]] = None) -> List[int]:
    """Local ports of LISTEN sockets in ``/proc/<pid>/net/tcp`` or ``tcp6``.

    When ``inodes`` is given only sockets owned by those inodes count.
    """
    ports: List[int] = []
    for line in text.split('\n')[1:]:
        fields = line.split()
        if len(fields) < 10 or fields[3] != TCP_LISTEN:
            continue
        if inodes is not None and fields[9] not in inodes:
            continue
        try:
            ports.append(int(fields[1].rsplit(':', 1)[1], 16))
        except (IndexError, ValueError):
            continue
    return ports


def parse_vm_swap(text: str) -> int:
    """``VmSwap`` in kB from ``/proc/<pid>/status``; 0 when absent (kernel threads)."""
    for line in text.split('\n'):
        if line.startswith('VmSwap:'):
            fields = line.split()
            try:
                return int(fields[1])
            except (IndexError, ValueError):
                return 0
    return 0


def parse_inet_lines(text: str) -> Dict[str, str]:
    """Map first token -> second token for every line containing ``inet ``."""
    info: Dict[str, str] = {}
    for line in text.split('\n'):
        if 'inet ' in line:
            fields = line.split()
            if len(fields) > 1:
                info[fields[0]] = fields[1]
    return info


# ---------------- Source interface ---------------- #

class IPidSource(ABC):
    """Abstract interface every per-process data source implements."""

    @abstractmethod
    def fetch(self, pid: int) -> Any:
        """Return the value for ``pid`` or raise ``FetchError``."""


def _process(pid: int) -> psutil.Process:
    try:
        return psutil.Process(pid)
    except psutil.Error as e:
        raise FetchError(f"process {pid}: {e}") from e


def read_proc_file(config: RuntimeConfig, pid: int, relpath: str) -> str:
    """Text of ``<proc_root>/<pid>/<relpath>``; undecodable bytes are replaced."""
    path = os.path.join(config.proc_root, str(pid), relpath)
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as fh:
            return fh.read()
    except OSError as e:
        raise FetchError(f"cannot read {path}: {e}") from e


class ResourceUsageSource(IPidSource):
    """CPU and memory figures for the init process.

    CPU and RSS/VMS come from psutil; swap is ``VmSwap`` from the status
    file, which avoids walking smaps on every refresh.
    """

    def __init__(self, config: RuntimeConfig):
        self.config = config

    def fetch(self, pid: int) -> ResourceUsage:
        proc = _process(pid)
        try:
            times = proc.cpu_times()
        except psutil.Error as e:
            raise FetchError(f"error getting CPU usage: {e}") from e
        try:
            mem = proc.memory_info()
        except psutil.Error as e:
            raise FetchError(f"error getting memory usage: {e}") from e
        swap = parse_vm_swap(read_proc_file(self.config, pid, "status"))

        return ResourceUsage(
            # Cumulative, not a rate
            cpu_usage=(times.user + times.system) * 100,
            memory_usage={"RSS": mem.rss // 1024, "VMS": mem.vms // 1024},
            swap_usage=swap,
        )


class EnvironmentSource(IPidSource):
    def fetch(self, pid: int) -> List[str]:
        proc = _process(pid)
        try:
            environ = proc.environ()
        except psutil.Error as e:
            raise FetchError(f"process {pid}: {e}") from e
        return [f"{key}={value}" for key, value in environ.items()]


class StartCommandSource(IPidSource):
    def fetch(self, pid: int) -> str:
        proc = _process(pid)
        try:
            cmdline = proc.cmdline()
        except psutil.Error as e:
            raise FetchError(f"process {pid}: {e}") from e
        return " ".join(cmdline).strip()


def socket_inodes(config: RuntimeConfig, pid: int) -> Set[str]:
    """Inode numbers of every ``socket:[N]`` descriptor held by ``pid``."""
    fd_dir = os.path.join(config.proc_root, str(pid), "fd")
    try:
        names = os.listdir(fd_dir)
    except OSError as e:
        raise FetchError(f"cannot list {fd_dir}: {e}") from e
    inodes: Set[str] = set()
    for name in names:
        try:
            target = os.readlink(os.path.join(fd_dir, name))
        except OSError:
            continue  # closed since listdir
        if target.startswith("socket:[") and target.endswith("]"):
            inodes.add(target[len("socket:["):-1])
    return inodes


class ExposedPortsSource(IPidSource):
    """Local ports of every listening TCP socket of the process.

    Read from the process's own ``net/tcp`` and ``net/tcp6`` so the
    table is the one of the container network namespace, not ours.
    Entries are kept only when the socket inode is one of the process's
    descriptors, since those tables list every socket in the namespace.
    """

    def __init__(self, config: RuntimeConfig):
        self.config = config

    def fetch(self, pid: int) -> List[int]:
        inodes = socket_inodes(self.config, pid)
        ports = parse_listen_ports(read_proc_file(self.config, pid, "net/tcp"), inodes)
        try:
            tcp6 = read_proc_file(self.config, pid, "net/tcp6")
        except FetchError:
            tcp6 = ""  # IPv6 disabled
        ports.extend(parse_listen_ports(tcp6, inodes))
        return ports


class OpenFilesSource(IPidSource):
    def __init__(self, config: RuntimeConfig, runner: Runner = run_command):
        self.config = config
        self._runner = runner

    def command(self, pid: int) -> List[str]:
        return self.config.command_prefix() + [self.config.lsof_bin, "-F", "-n", "-p", str(pid)]

    def fetch(self, pid: int) -> List[LsofOutput]:
        return parse_lsof_output(self._runner(self.command(pid)))


class NetworkInterfacesSource(IPidSource):
    """Interface addresses inside the process network namespace."""

    def __init__(self, config: RuntimeConfig, runner: Runner = run_command):
        self.config = config
        self._runner = runner

    def command(self, pid: int) -> List[str]:
        return self.config.command_prefix() + [
            self.config.nsenter_bin, "-t", str(pid), "-n", self.config.ifconfig_bin]

    def fetch(self, pid: int) -> Dict[str, str]:
        return parse_inet_lines(self._runner(self.command(pid)))


class _ProcFileSource(IPidSource):
    """Reads ``<proc_root>/<pid>/<relpath>`` and hands the text to a parser."""

    relpath = ""

    def __init__(self, config: RuntimeConfig):
        self.config = config

    def path(self, pid: int) -> str:
        return os.path.join(self.config.proc_root, str(pid), self.relpath)

    def read(self, pid: int) -> str:
        return read_proc_file(self.config, pid, self.relpath)

    def fetch(self, pid: int) -> Any:
        return self.parse(self.read(pid))

    def parse(self, text: str) -> Any:
        raise NotImplementedError


class NetworkUsageSource(_ProcFileSource):
    relpath = "net/dev"

    def parse(self, text: str) -> NetworkUsage:
        return parse_net_dev(text)


class MountedVolumesSource(_ProcFileSource):
    relpath = "mounts"

    def parse(self, text: str) -> List[str]:
        return parse_mounts(text)


class SecurityProfileSource(_ProcFileSource):
    relpath = "attr/current"

    def parse(self, text: str) -> List[str]:
        return parse_security_profiles(text)


def default_sources(config: Optional[RuntimeConfig] = None,
                    runner: Runner = run_command) -> "OrderedDict[str, IPidSource]":
    """Production adapters keyed by step name, in population order."""
    config = config or RuntimeConfig.from_env()
    sources: "OrderedDict[str, IPidSource]" = OrderedDict()
    sources["open files"] = OpenFilesSource(config, runner)
    sources["network usage"] = NetworkUsageSource(config)
    sources["mounted volumes"] = MountedVolumesSource(config)
    sources["exposed ports"] = ExposedPortsSource(config)
    sources["start command"] = StartCommandSource()
    sources["security profiles"] = SecurityProfileSource(config)
    sources["environment variables"] = EnvironmentSource()
    sources["resource usage"] = ResourceUsageSource(config)
    if config.with_interfaces:
        sources["network interfaces"] = NetworkInterfacesSource(config, runner)
    return sources

"""Exception taxonomy shared by the adapters, discovery and the cache."""

from __future__ import annotations

from typing import List, Optional


class RuncTopError(Exception):
    """Base class for every failure raised by the aggregation layer."""


class FetchError(RuncTopError):
    """A source adapter could not produce its value."""


class ExecutionError(FetchError):
    """An external tool could not be run or exited non-zero."""

    def __init__(self, argv: List[str], returncode: Optional[int] = None, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr.strip()
        if returncode is None:
            message = f"error executing {' '.join(self.argv)}"
        else:
            message = f"error executing {' '.join(self.argv)}: exit status {returncode}"
        if self.stderr:
            message += f" ({self.stderr})"
        super().__init__(message)


class EmptyOutputError(RuncTopError):
    """The container listing ran but printed nothing."""


class DecodeError(RuncTopError):
    """The container listing could not be decoded."""


class AssemblyError(RuncTopError):
    def __init__(self, step: str, pid: int, cause: BaseException):
        self.step = step
        self.pid = pid
        super().__init__(f"failed to get {step}: {cause}")


class DiscoveryError(RuncTopError):
    pass


class InvalidKeyError(RuncTopError, ValueError):
    pass


class ContainerNotFoundError(RuncTopError, KeyError):
    def __init__(self, key: str):
        self.key = key
        super().__init__(f"no running container with PID {key}")

    def __str__(self) -> str:
        return self.args[0]

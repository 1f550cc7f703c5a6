"""Exception types raised by the tunnel generation stages."""
from __future__ import annotations


class TunnelError(Exception):
    """Base class for every failure reported by :mod:`tunnel3d`."""


class PreconditionError(TunnelError, ValueError):
    """A required input is missing or malformed."""


class ConsistencyError(TunnelError, ValueError):
    """Array sizes disagree with the dimensions they are declared against."""


class PipelineBusyError(TunnelError, RuntimeError):
    """A stage was requested while another stage is still running."""

"""Error taxonomy for peakresolve.

Components raise these instead of generic exceptions so that the workflow
controller can decide, per its error-handling mode, whether to stop, skip
or retry a stage.
"""


class PeakResolveError(Exception):
    """Base class for all peakresolve errors."""


class ConfigError(PeakResolveError):
    """Missing or invalid method name, or an out-of-range configuration value."""


class DataError(PeakResolveError):
    """Input data cannot support the requested model (e.g. too few samples)."""


class MathError(PeakResolveError):
    """Singular linear system or a degenerate width during a computation."""


class ProcessError(PeakResolveError):
    """Generic algorithmic failure signalled explicitly by a component."""


__all__ = [
    'PeakResolveError',
    'ConfigError',
    'DataError',
    'MathError',
    'ProcessError',
]

"""RandomX v1/v2 benchmark runner."""

VERSION = "v1.0.0"


class RunnerError(RuntimeError):
    """Base class for runner errors."""

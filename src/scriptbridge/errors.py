"""
Failures propagated out of the bridge.

A failed ``decode`` is not an exception; it returns ``False``. Everything else
that goes wrong inside the runtime is drained from the runtime's error
indicator and raised as one of these, carrying the runtime's report.
"""

from os import PathLike


class BridgeError(Exception):
    """Base class for failures raised by scriptbridge."""


class AttributeLookupError(BridgeError, AttributeError):
    """An attribute was absent, or looking it up failed inside the runtime."""

    def __init__(self, name: str, report: str = "") -> None:
        message = f"attribute {name!r} could not be resolved"
        if report:
            message = f"{message}: {report}"
        super().__init__(message)
        self.name = name
        self.report = report


class InvocationError(BridgeError):
    """A callable failed inside the runtime."""

    def __init__(self, function_name: str, report: str = "") -> None:
        message = f"failed to call function {function_name!r}"
        if report:
            message = f"{message}: {report}"
        super().__init__(message)
        self.function_name = function_name
        self.report = report


class LoadError(BridgeError, ImportError):
    """A script could not be loaded."""

    def __init__(self, path: str | PathLike[str], report: str = "") -> None:
        message = f"failed to load script {str(path)!r}"
        if report:
            message = f"{message}: {report}"
        super().__init__(message, path=str(path))
        self.report = report


class RuntimeStateError(BridgeError):
    """The runtime was used outside its initialize/teardown bracket."""

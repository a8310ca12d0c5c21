from __future__ import annotations

from dataclasses import dataclass, field
from os import PathLike
from typing import TYPE_CHECKING, Any, Self, final, override

from scriptbridge.conversion import Out, decode, encode
from scriptbridge.errors import AttributeLookupError, InvocationError, LoadError
from scriptbridge.ownership import ExclusiveHandle, ForeignReference, SharedHandle
from scriptbridge.runtime import NULL_HANDLE, RawHandle, Runtime

if TYPE_CHECKING:
    from scriptbridge.session import Session


def _drain_error(runtime: Runtime) -> str:
    """Read and clear the runtime's pending error."""
    report = runtime.report_error()
    runtime.clear_error()
    return report


def _argument_reference(runtime: Runtime, argument: object) -> RawHandle:
    """
    A new reference for one call argument, to be stolen by the argument tuple.
    """
    match argument:
        case ExclusiveHandle():
            if argument.is_empty:
                raise ValueError("An empty ExclusiveHandle cannot be passed as an argument")
            return argument.detach()
        case SharedHandle() | ScriptObject():
            if argument.is_empty:
                raise ValueError(f"An empty {type(argument).__name__} cannot be passed as an argument")
            runtime.incref(argument.raw)
            return argument.raw
        case _:
            return encode(runtime, argument).detach()


@final
@dataclass(frozen=True, slots=True, weakref_slot=True)
class ScriptObject(ForeignReference):
    """
    One runtime object, with its attribute and call surface.

    ``ScriptObject()`` is empty. A bound object keeps its runtime reference
    alive through a :class:`SharedHandle`; equality and hashing follow that
    handle, so two objects are equal when they denote the same runtime object.

    Example::

        with Session.from_config() as session:
            module = ScriptObject.from_script(session, "tools/stats.py")
            result = module.call_function("summarize", [3, 1, 2], "median")
            out = Out(tuple[str, float])
            if result.convert(out):
                label, value = out.value
    """

    handle: SharedHandle = field(default_factory=SharedHandle)

    @classmethod
    def from_raw(cls, runtime: Runtime, raw: RawHandle) -> Self:
        """Bind a new reference. No increment is performed."""
        return cls(handle=SharedHandle.acquire(runtime, raw))

    @classmethod
    def from_script(cls, session: Session, script_path: str | PathLike[str]) -> Self:
        """
        Load a script and bind the resulting module.

        :raises LoadError: If the script cannot be loaded.
        """
        runtime = session.runtime
        resolved_path = session.resolve_script(script_path)
        raw = runtime.load_script(resolved_path)
        if raw == NULL_HANDLE:
            raise LoadError(resolved_path, _drain_error(runtime))
        return cls.from_raw(runtime, raw)

    @property
    @override
    def runtime(self) -> Runtime | None:
        return self.handle.runtime

    @property
    @override
    def raw(self) -> RawHandle:
        return self.handle.raw

    def get_attr(self, name: str) -> ScriptObject:
        """
        :raises AttributeLookupError: If the attribute is absent, its lookup
            fails inside the runtime, or this object is empty.
        """
        runtime = self.runtime
        if runtime is None or self.is_empty:
            raise AttributeLookupError(name, "object is empty")
        raw = runtime.get_attr(self.raw, name)
        if raw == NULL_HANDLE:
            raise AttributeLookupError(name, _drain_error(runtime))
        return ScriptObject.from_raw(runtime, raw)

    def has_attr(self, name: str) -> bool:
        runtime = self.runtime
        if runtime is None or self.is_empty:
            return False
        raw = runtime.get_attr(self.raw, name)
        if raw == NULL_HANDLE:
            runtime.clear_error()
            return False
        runtime.decref(raw)
        return True

    def call_function(self, name: str, *args: object) -> ScriptObject:
        """
        Call the attribute ``name`` with ``args`` as positional arguments.

        Each argument fills the tuple slot of its position. An
        :class:`ExclusiveHandle` argument moves its reference into the slot and
        is left empty; a :class:`SharedHandle` or :class:`ScriptObject`
        argument contributes a new reference; any other value is encoded.

        :raises AttributeLookupError: If ``name`` cannot be resolved.
        :raises InvocationError: If the call fails inside the runtime.
        :raises TypeError: If an argument has no conversion.
        """
        function = self.get_attr(name)
        runtime = function.runtime
        assert runtime is not None
        with ExclusiveHandle.acquire(runtime, runtime.tuple_new(len(args))) as arguments:
            for index, argument in enumerate(args):
                runtime.tuple_set_item(
                    arguments.raw, index, _argument_reference(runtime, argument)
                )
            result = runtime.call_object(function.raw, arguments.raw)
        if result == NULL_HANDLE:
            raise InvocationError(name, _drain_error(runtime))
        return ScriptObject.from_raw(runtime, result)

    def convert(self, out: Out[Any]) -> bool:
        """Decode this object into ``out``; see :func:`~scriptbridge.conversion.decode`."""
        return decode(self, out)

    def describe(self) -> str:
        """The runtime's own textual representation of this object."""
        runtime = self.runtime
        if runtime is None or self.is_empty:
            return "<empty>"
        return runtime.repr_of(self.raw)

    def __copy__(self) -> Self:
        return type(self)(handle=self.handle.copy())

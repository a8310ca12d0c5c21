"""
Native ownership of runtime references.

Two disciplines wrap a :data:`~scriptbridge.runtime.RawHandle`:

- :class:`ExclusiveHandle` owns one reference and releases it exactly once.
  It cannot be copied; :meth:`ExclusiveHandle.detach` moves the reference out.
- :class:`SharedHandle` is one holder of a counted group of native holders.
  The group owns one reference and releases it when its last holder goes away.

Neither performs an increment on acquisition: the caller must already own the
reference it hands over. Release happens on :meth:`release`, on leaving a
``with`` block, or when the handle is garbage collected, whichever comes first.

Example::

    >>> from scriptbridge.host import HostRuntime
    >>> runtime = HostRuntime()
    >>> runtime.initialize()
    >>> raw = runtime.list_new(0)
    >>> first = SharedHandle.acquire(runtime, raw)
    >>> second = first.copy()
    >>> first.release()
    >>> runtime.refcount(raw)
    1
    >>> second.release()
    >>> runtime.refcount(raw)
    0
"""

import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Never, Self, final, override

from scriptbridge.runtime import NULL_HANDLE, RawHandle, Runtime


class ForeignReference(ABC):
    """Anything that denotes one runtime object: ownership handles and façades."""

    __slots__ = ()

    @property
    @abstractmethod
    def runtime(self) -> Runtime | None:
        """The runtime the handle belongs to; ``None`` when empty."""

    @property
    @abstractmethod
    def raw(self) -> RawHandle: ...

    @property
    def is_empty(self) -> bool:
        return self.raw == NULL_HANDLE


def _release_reference(runtime: Runtime, raw: RawHandle) -> None:
    runtime.decref(raw)


@final
class ExclusiveHandle(ForeignReference):
    """The single releasing owner of one runtime reference."""

    __slots__ = ("_runtime", "_raw", "_finalizer", "__weakref__")

    _runtime: Runtime | None
    _raw: RawHandle
    _finalizer: weakref.finalize | None

    def __init__(self, runtime: Runtime | None = None, raw: RawHandle = NULL_HANDLE) -> None:
        self._runtime = runtime
        self._raw = raw
        self._finalizer = None
        if raw != NULL_HANDLE:
            assert runtime is not None
            finalizer = weakref.finalize(self, _release_reference, runtime, raw)
            finalizer.atexit = False
            self._finalizer = finalizer

    @classmethod
    def acquire(cls, runtime: Runtime, raw: RawHandle) -> Self:
        """
        Take ownership of ``raw`` without incrementing its reference count.

        ``NULL_HANDLE`` gives an empty handle.
        """
        return cls(runtime, raw)

    @property
    @override
    def runtime(self) -> Runtime | None:
        return self._runtime

    @property
    @override
    def raw(self) -> RawHandle:
        return self._raw

    def release(self) -> None:
        """Release the reference. A no-op when empty or already released."""
        if self._finalizer is not None:
            self._finalizer()
            self._finalizer = None
        self._raw = NULL_HANDLE

    def detach(self) -> RawHandle:
        """
        Move the reference out of this handle, leaving it empty.

        :return: The raw reference, now owned by the caller.
        """
        if self._finalizer is not None:
            self._finalizer.detach()
            self._finalizer = None
        raw = self._raw
        self._raw = NULL_HANDLE
        return raw

    def __copy__(self) -> Never:
        raise TypeError("ExclusiveHandle cannot be copied; use detach() to move it")

    def __deepcopy__(self, memo: object) -> Never:
        raise TypeError("ExclusiveHandle cannot be copied; use detach() to move it")

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"ExclusiveHandle(raw={self._raw})"


@final
@dataclass(kw_only=True, slots=True, eq=False)
class _SharedGroup:
    owner: ExclusiveHandle
    holders: int


def _leave_group(group: _SharedGroup) -> None:
    group.holders -= 1
    if group.holders == 0:
        group.owner.release()


@final
class SharedHandle(ForeignReference):
    """
    One native holder of a shared runtime reference.

    Equal handles denote the same runtime object of the same runtime.
    """

    __slots__ = ("_runtime", "_raw", "_group", "_finalizer", "__weakref__")

    _runtime: Runtime | None
    _raw: RawHandle
    _group: _SharedGroup | None
    _finalizer: weakref.finalize | None

    def __init__(self, group: _SharedGroup | None = None) -> None:
        self._group = group
        self._finalizer = None
        if group is None:
            self._runtime = None
            self._raw = NULL_HANDLE
            return
        self._runtime = group.owner.runtime
        self._raw = group.owner.raw
        group.holders += 1
        finalizer = weakref.finalize(self, _leave_group, group)
        finalizer.atexit = False
        self._finalizer = finalizer

    @classmethod
    def acquire(cls, runtime: Runtime, raw: RawHandle) -> Self:
        """
        Take ownership of ``raw`` without incrementing its reference count,
        starting a group with this handle as its only holder.
        """
        return cls.from_exclusive(ExclusiveHandle.acquire(runtime, raw))

    @classmethod
    def from_exclusive(cls, handle: ExclusiveHandle) -> Self:
        """Move the reference of ``handle`` into a new shared group."""
        runtime = handle.runtime
        raw = handle.detach()
        if raw == NULL_HANDLE:
            return cls()
        assert runtime is not None
        return cls(_SharedGroup(owner=ExclusiveHandle.acquire(runtime, raw), holders=0))

    @property
    @override
    def runtime(self) -> Runtime | None:
        return self._runtime

    @property
    @override
    def raw(self) -> RawHandle:
        return self._raw

    @property
    def use_count(self) -> int:
        """Number of live holders in this handle's group; 0 when empty."""
        return 0 if self._group is None else self._group.holders

    def copy(self) -> Self:
        """Enroll a new holder of the same reference."""
        return type(self)(self._group)

    def release(self) -> None:
        """
        Drop this holder. The reference itself is released with the last holder.
        A no-op when empty or already released.
        """
        if self._finalizer is not None:
            self._finalizer()
            self._finalizer = None
        self._group = None
        self._raw = NULL_HANDLE

    def __copy__(self) -> Self:
        return self.copy()

    def __deepcopy__(self, memo: object) -> Self:
        return self.copy()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SharedHandle):
            return NotImplemented
        return self._runtime is other._runtime and self._raw == other._raw

    def __hash__(self) -> int:
        return hash((id(self._runtime), self._raw))

    def __repr__(self) -> str:
        return f"SharedHandle(raw={self._raw}, use_count={self.use_count})"

"""
The runtime collaborator interface.

Everything the bridge knows about the embedded runtime goes through
:class:`Runtime`: opaque integer handles, type tags, reference counts,
container primitives, attribute lookup and invocation. Failing primitives
return :data:`NULL_HANDLE` and set the runtime's error indicator, which callers
inspect with :meth:`Runtime.report_error` and reset with
:meth:`Runtime.clear_error`.

Reference conventions:

- Every primitive that returns a handle returns a *new* reference owned by the
  caller, including the container accessors.
- ``tuple_set_item`` and ``list_set_item`` *steal* the item reference.
- ``dict_set_item`` does not steal; the caller keeps its key and value
  references.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from enum import Enum, auto
from os import PathLike
from typing import NewType

RawHandle = NewType("RawHandle", int)

NULL_HANDLE = RawHandle(0)
"""
The handle denoting no object. Never refers to a live runtime object.
"""


class TypeTag(Enum):
    """Runtime-reported type of a dynamic object."""

    NONE = auto()
    BOOL = auto()
    INT = auto()
    FLOAT = auto()
    STR = auto()
    BYTES = auto()
    TUPLE = auto()
    LIST = auto()
    DICT = auto()
    OBJECT = auto()
    """
    Anything else: modules, functions, class instances.
    """


class Runtime(ABC):
    """
    A dynamic, reference-counted runtime addressed through raw handles.

    Precondition of every primitive except ``initialize``, ``decref`` and
    ``is_initialized``: the runtime is initialized.
    """

    __slots__ = ()

    # Lifecycle

    @abstractmethod
    def initialize(self) -> None: ...

    @abstractmethod
    def teardown(self) -> None: ...

    @property
    @abstractmethod
    def is_initialized(self) -> bool: ...

    @abstractmethod
    def load_script(self, path: str | PathLike[str]) -> RawHandle:
        """
        Load the script at ``path`` as a module.

        :return: A new reference to the module, or ``NULL_HANDLE`` with the
                 error indicator set.
        """

    # Error indicator

    @abstractmethod
    def error_occurred(self) -> bool: ...

    @abstractmethod
    def report_error(self) -> str:
        """Describe the pending error, or return ``""`` when none is set."""

    @abstractmethod
    def clear_error(self) -> None: ...

    # Reference counting

    @abstractmethod
    def type_tag(self, raw: RawHandle) -> TypeTag: ...

    @abstractmethod
    def incref(self, raw: RawHandle) -> None: ...

    @abstractmethod
    def decref(self, raw: RawHandle) -> None: ...

    @abstractmethod
    def refcount(self, raw: RawHandle) -> int:
        """Number of references the host holds on ``raw``; 0 once released."""

    @abstractmethod
    def live_handles(self) -> int: ...

    # Scalars

    @abstractmethod
    def bool_from(self, value: bool) -> RawHandle: ...

    @abstractmethod
    def int_from(self, value: int) -> RawHandle: ...

    @abstractmethod
    def float_from(self, value: float) -> RawHandle: ...

    @abstractmethod
    def str_from(self, value: str) -> RawHandle: ...

    @abstractmethod
    def bytes_from(self, data: bytes) -> RawHandle: ...

    @abstractmethod
    def as_bool(self, raw: RawHandle) -> bool: ...

    @abstractmethod
    def as_int(self, raw: RawHandle) -> int: ...

    @abstractmethod
    def as_float(self, raw: RawHandle) -> float: ...

    @abstractmethod
    def as_str(self, raw: RawHandle) -> str: ...

    @abstractmethod
    def bytes_size(self, raw: RawHandle) -> int: ...

    @abstractmethod
    def bytes_data(self, raw: RawHandle) -> memoryview:
        """Read-only view of the object's backing storage."""

    # Containers

    @abstractmethod
    def tuple_new(self, size: int) -> RawHandle: ...

    @abstractmethod
    def tuple_size(self, raw: RawHandle) -> int: ...

    @abstractmethod
    def tuple_get_item(self, raw: RawHandle, index: int) -> RawHandle: ...

    @abstractmethod
    def tuple_set_item(self, raw: RawHandle, index: int, item: RawHandle) -> None: ...

    @abstractmethod
    def list_new(self, size: int) -> RawHandle: ...

    @abstractmethod
    def list_size(self, raw: RawHandle) -> int: ...

    @abstractmethod
    def list_get_item(self, raw: RawHandle, index: int) -> RawHandle: ...

    @abstractmethod
    def list_set_item(self, raw: RawHandle, index: int, item: RawHandle) -> None: ...

    @abstractmethod
    def dict_new(self) -> RawHandle: ...

    @abstractmethod
    def dict_set_item(self, raw: RawHandle, key: RawHandle, value: RawHandle) -> None: ...

    @abstractmethod
    def dict_items(self, raw: RawHandle) -> Iterator[tuple[RawHandle, RawHandle]]:
        """
        Iterate entries in the runtime's own order.

        Each yielded key and value is a new reference, created lazily as the
        iterator advances.
        """

    # Objects

    @abstractmethod
    def get_attr(self, raw: RawHandle, name: str) -> RawHandle: ...

    @abstractmethod
    def call_object(self, raw: RawHandle, args: RawHandle) -> RawHandle:
        """
        Call ``raw`` with the positional arguments in the tuple ``args``.

        :return: A new reference to the result, or ``NULL_HANDLE`` with the
                 error indicator set.
        """

    @abstractmethod
    def repr_of(self, raw: RawHandle) -> str: ...

"""
In-process runtime backend.

:class:`HostRuntime` hosts scripts as Python modules loaded from their file
paths and exposes their objects only through a handle table. Each entry counts
the references the host holds; objects stored inside runtime containers are
owned by those containers, not by the table. The same object always maps to the
same handle while it has one, so handle equality is object identity.
"""

import importlib.machinery
import importlib.util
import logging
import re
import sys
import traceback
from collections.abc import Iterator
from dataclasses import dataclass, field
from itertools import count
from os import PathLike
from pathlib import Path
from typing import final, override

from scriptbridge.config import LeakPolicy
from scriptbridge.errors import RuntimeStateError
from scriptbridge.runtime import NULL_HANDLE, RawHandle, Runtime, TypeTag

logger = logging.getLogger(__name__)

_script_numbers = count()
"""
Numbers loaded script modules across every runtime in the process, so that
no two runtimes share a name in ``sys.modules``.
"""


@final
@dataclass(kw_only=True, slots=True, eq=False)
class _Entry:
    value: object
    refcount: int


@final
@dataclass(kw_only=True, slots=True, weakref_slot=True, eq=False)
class HostRuntime(Runtime):
    module_prefix: str = "scriptbridge_script_"
    leak_policy: LeakPolicy = LeakPolicy.WARN

    _entries: dict[RawHandle, _Entry] = field(default_factory=dict, init=False, repr=False)
    _handles_by_identity: dict[int, RawHandle] = field(
        default_factory=dict, init=False, repr=False
    )
    _next_handle: int = field(default=1, init=False, repr=False)
    _first_live_handle: int = field(default=1, init=False, repr=False)
    """
    Handles below this were issued before the last teardown.
    """
    _error: Exception | None = field(default=None, init=False, repr=False)
    _loaded_modules: list[str] = field(default_factory=list, init=False, repr=False)
    _initialized: bool = field(default=False, init=False)

    # Lifecycle

    @override
    def initialize(self) -> None:
        if self._initialized:
            return
        self._initialized = True
        self._first_live_handle = self._next_handle
        logger.debug(f"Runtime initialized, first handle {self._first_live_handle}")

    @override
    def teardown(self) -> None:
        if not self._initialized:
            return
        leaked = len(self._entries)
        self._entries.clear()
        self._handles_by_identity.clear()
        self._error = None
        for module_name in self._loaded_modules:
            sys.modules.pop(module_name, None)
        self._loaded_modules.clear()
        self._initialized = False
        self._first_live_handle = self._next_handle
        logger.debug(f"Runtime torn down, {leaked} live handles dropped")

        if leaked:
            match self.leak_policy:
                case LeakPolicy.IGNORE:
                    pass
                case LeakPolicy.WARN:
                    logger.warning(f"Runtime torn down with {leaked} live handles")
                case LeakPolicy.RAISE:
                    raise RuntimeStateError(f"Runtime torn down with {leaked} live handles")

    @property
    @override
    def is_initialized(self) -> bool:
        return self._initialized

    @override
    def load_script(self, path: str | PathLike[str]) -> RawHandle:
        self._require_initialized()
        script_path = Path(path)
        module_name = (
            f"{self.module_prefix}{next(_script_numbers)}_"
            f"{re.sub(r'\W', '_', script_path.stem)}"
        )
        loader = importlib.machinery.SourceFileLoader(module_name, str(script_path))
        spec = importlib.util.spec_from_file_location(
            module_name, script_path, loader=loader
        )
        assert spec is not None
        module = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = module
        try:
            loader.exec_module(module)
        except Exception as e:
            sys.modules.pop(module_name, None)
            self._set_error(e)
            return NULL_HANDLE
        self._loaded_modules.append(module_name)
        logger.debug(f"Loaded script {script_path} as module {module_name}")
        return self._new_reference(module)

    # Error indicator

    def _set_error(self, error: Exception) -> None:
        logger.debug(f"Runtime error set: {error!r}")
        self._error = error

    @override
    def error_occurred(self) -> bool:
        return self._error is not None

    @override
    def report_error(self) -> str:
        if self._error is None:
            return ""
        return "".join(traceback.format_exception_only(self._error)).strip()

    @override
    def clear_error(self) -> None:
        self._error = None

    # Handle table

    def _require_initialized(self) -> None:
        if not self._initialized:
            raise RuntimeStateError("Runtime is not initialized")

    def _entry(self, raw: RawHandle) -> _Entry:
        self._require_initialized()
        try:
            return self._entries[raw]
        except KeyError as e:
            raise ValueError(f"Invalid or released handle: {raw}") from e

    def _object(self, raw: RawHandle) -> object:
        return self._entry(raw).value

    def _new_reference(self, value: object) -> RawHandle:
        existing = self._handles_by_identity.get(id(value))
        if existing is not None:
            self._entries[existing].refcount += 1
            return existing
        raw = RawHandle(self._next_handle)
        self._next_handle += 1
        self._entries[raw] = _Entry(value=value, refcount=1)
        self._handles_by_identity[id(value)] = raw
        return raw

    def _replace_object(self, raw: RawHandle, value: object) -> None:
        entry = self._entries[raw]
        del self._handles_by_identity[id(entry.value)]
        entry.value = value
        self._handles_by_identity[id(value)] = raw

    @override
    def type_tag(self, raw: RawHandle) -> TypeTag:
        match self._object(raw):
            case None:
                return TypeTag.NONE
            case bool():
                return TypeTag.BOOL
            case int():
                return TypeTag.INT
            case float():
                return TypeTag.FLOAT
            case str():
                return TypeTag.STR
            case bytes() | bytearray():
                return TypeTag.BYTES
            case tuple():
                return TypeTag.TUPLE
            case list():
                return TypeTag.LIST
            case dict():
                return TypeTag.DICT
            case _:
                return TypeTag.OBJECT

    @override
    def incref(self, raw: RawHandle) -> None:
        self._entry(raw).refcount += 1

    @override
    def decref(self, raw: RawHandle) -> None:
        if not self._initialized or raw < self._first_live_handle:
            # Dropped wholesale by teardown.
            return
        entry = self._entry(raw)
        entry.refcount -= 1
        if entry.refcount == 0:
            del self._entries[raw]
            del self._handles_by_identity[id(entry.value)]

    @override
    def refcount(self, raw: RawHandle) -> int:
        entry = self._entries.get(raw)
        return 0 if entry is None else entry.refcount

    @override
    def live_handles(self) -> int:
        return len(self._entries)

    # Scalars

    @override
    def bool_from(self, value: bool) -> RawHandle:
        self._require_initialized()
        return self._new_reference(bool(value))

    @override
    def int_from(self, value: int) -> RawHandle:
        self._require_initialized()
        return self._new_reference(int(value))

    @override
    def float_from(self, value: float) -> RawHandle:
        self._require_initialized()
        return self._new_reference(float(value))

    @override
    def str_from(self, value: str) -> RawHandle:
        self._require_initialized()
        return self._new_reference(str(value))

    @override
    def bytes_from(self, data: bytes) -> RawHandle:
        self._require_initialized()
        return self._new_reference(bytes(data))

    @override
    def as_bool(self, raw: RawHandle) -> bool:
        return bool(self._object(raw))

    @override
    def as_int(self, raw: RawHandle) -> int:
        value = self._object(raw)
        assert isinstance(value, int)
        return int(value)

    @override
    def as_float(self, raw: RawHandle) -> float:
        value = self._object(raw)
        assert isinstance(value, float)
        return float(value)

    @override
    def as_str(self, raw: RawHandle) -> str:
        value = self._object(raw)
        assert isinstance(value, str)
        return str(value)

    @override
    def bytes_size(self, raw: RawHandle) -> int:
        value = self._object(raw)
        assert isinstance(value, bytes | bytearray)
        return len(value)

    @override
    def bytes_data(self, raw: RawHandle) -> memoryview:
        value = self._object(raw)
        assert isinstance(value, bytes | bytearray)
        return memoryview(value).toreadonly()

    # Containers

    @override
    def tuple_new(self, size: int) -> RawHandle:
        self._require_initialized()
        return self._new_reference(tuple(None for _ in range(size)))

    @override
    def tuple_size(self, raw: RawHandle) -> int:
        value = self._object(raw)
        assert isinstance(value, tuple)
        return len(value)

    @override
    def tuple_get_item(self, raw: RawHandle, index: int) -> RawHandle:
        value = self._object(raw)
        assert isinstance(value, tuple)
        return self._new_reference(value[index])

    @override
    def tuple_set_item(self, raw: RawHandle, index: int, item: RawHandle) -> None:
        entry = self._entry(raw)
        assert isinstance(entry.value, tuple)
        if entry.refcount != 1:
            raise ValueError(f"Cannot modify tuple {raw}: it has other references")
        element = self._object(item)
        contents = list(entry.value)
        contents[index] = element
        self._replace_object(raw, tuple(contents))
        self.decref(item)

    @override
    def list_new(self, size: int) -> RawHandle:
        self._require_initialized()
        return self._new_reference([None] * size)

    @override
    def list_size(self, raw: RawHandle) -> int:
        value = self._object(raw)
        assert isinstance(value, list)
        return len(value)

    @override
    def list_get_item(self, raw: RawHandle, index: int) -> RawHandle:
        value = self._object(raw)
        assert isinstance(value, list)
        return self._new_reference(value[index])

    @override
    def list_set_item(self, raw: RawHandle, index: int, item: RawHandle) -> None:
        value = self._object(raw)
        assert isinstance(value, list)
        value[index] = self._object(item)
        self.decref(item)

    @override
    def dict_new(self) -> RawHandle:
        self._require_initialized()
        return self._new_reference({})

    @override
    def dict_set_item(self, raw: RawHandle, key: RawHandle, value: RawHandle) -> None:
        mapping = self._object(raw)
        assert isinstance(mapping, dict)
        mapping[self._object(key)] = self._object(value)

    @override
    def dict_items(self, raw: RawHandle) -> Iterator[tuple[RawHandle, RawHandle]]:
        mapping = self._object(raw)
        assert isinstance(mapping, dict)
        for key, value in list(mapping.items()):
            yield self._new_reference(key), self._new_reference(value)

    # Objects

    @override
    def get_attr(self, raw: RawHandle, name: str) -> RawHandle:
        target = self._object(raw)
        try:
            value = getattr(target, name)
        except Exception as e:
            self._set_error(e)
            return NULL_HANDLE
        return self._new_reference(value)

    @override
    def call_object(self, raw: RawHandle, args: RawHandle) -> RawHandle:
        function = self._object(raw)
        arguments = self._object(args)
        assert isinstance(arguments, tuple)
        if not callable(function):
            self._set_error(TypeError(f"{type(function).__name__!r} object is not callable"))
            return NULL_HANDLE
        try:
            result = function(*arguments)
        except Exception as e:
            self._set_error(e)
            return NULL_HANDLE
        return self._new_reference(result)

    @override
    def repr_of(self, raw: RawHandle) -> str:
        return repr(self._object(raw))

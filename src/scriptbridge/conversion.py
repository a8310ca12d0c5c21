"""
Value marshalling between native Python values and runtime objects.

``decode`` is driven by a native type descriptor and fills an :class:`Out`
cell; ``encode`` is driven by the native value and produces a new runtime
reference. Supported descriptors::

    bool  int  float  str  bytes  bytearray
    tuple[T0, T1, ...]              fixed arity, heterogeneous
    list[T]  collections.deque[T]   homogeneous, ordered
    dict[K, V]                      key-unique

Container descriptors nest arbitrarily, e.g. ``list[tuple[str, dict[str, int]]]``.

Decoding is not transactional. When a container element fails to decode,
``decode`` returns ``False`` and whatever was already stored in the cell stays
there::

    >>> with encode(runtime, [1, 2, "three", 4]) as handle:
    ...     out = Out(list[int])
    ...     decode(handle, out)
    False
    >>> out.value
    [1, 2]
"""

from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from functools import cache
from types import GenericAlias
from typing import Any, Generic, TypeAlias, TypeVar, get_args, get_origin

from scriptbridge.ownership import ExclusiveHandle, ForeignReference
from scriptbridge.runtime import NULL_HANDLE, RawHandle, Runtime, TypeTag

T = TypeVar("T")

NativeType: TypeAlias = type | GenericAlias
"""
A type descriptor naming the native side of a conversion.
"""

Decoder: TypeAlias = Callable[[Runtime, RawHandle, "Out[Any]"], bool]


class _Unset:
    pass


_UNSET: Any = _Unset()


@dataclass(slots=True, eq=False)
class Out(Generic[T]):
    """
    A native output cell for :func:`decode`.

    :param native_type: The native type descriptor to decode into.
    :param value: Initial content. Defaults to ``default_value(native_type)``.
    :raises TypeError: If ``native_type`` is not a supported descriptor.
    """

    native_type: NativeType
    value: T = field(default=_UNSET)

    def __post_init__(self) -> None:
        _decoder_for(self.native_type)
        if self.value is _UNSET:
            self.value = default_value(self.native_type)


def _unsupported(native_type: object) -> TypeError:
    return TypeError(f"No conversion is defined for native type {native_type!r}")


def _tuple_element_types(native_type: object) -> tuple[NativeType, ...]:
    element_types = get_args(native_type)
    if Ellipsis in element_types:
        raise TypeError(f"Only fixed-arity tuples can be converted, got {native_type!r}")
    return element_types


def default_value(native_type: NativeType) -> Any:
    """The value a fresh :class:`Out` cell of ``native_type`` starts with."""
    origin = get_origin(native_type)
    if origin is None:
        if native_type in _SCALAR_DECODERS:
            return native_type()
    elif origin is tuple:
        return tuple(
            default_value(element_type)
            for element_type in _tuple_element_types(native_type)
        )
    elif origin is list:
        return []
    elif origin is deque:
        return deque()
    elif origin is dict:
        return {}
    raise _unsupported(native_type)


# Decoders


def _scalar_decoder(
    tag: TypeTag, extract: Callable[[Runtime, RawHandle], Any]
) -> Decoder:
    def decode_scalar(runtime: Runtime, raw: RawHandle, out: Out[Any]) -> bool:
        if runtime.type_tag(raw) is not tag:
            return False
        out.value = extract(runtime, raw)
        return True

    return decode_scalar


def _copy_bytes(runtime: Runtime, raw: RawHandle) -> bytes:
    return bytes(runtime.bytes_data(raw)[: runtime.bytes_size(raw)])


def _copy_bytearray(runtime: Runtime, raw: RawHandle) -> bytearray:
    return bytearray(runtime.bytes_data(raw)[: runtime.bytes_size(raw)])


_SCALAR_DECODERS: Mapping[type, Decoder] = {
    bool: _scalar_decoder(TypeTag.BOOL, lambda runtime, raw: runtime.as_bool(raw)),
    int: _scalar_decoder(TypeTag.INT, lambda runtime, raw: runtime.as_int(raw)),
    float: _scalar_decoder(TypeTag.FLOAT, lambda runtime, raw: runtime.as_float(raw)),
    str: _scalar_decoder(TypeTag.STR, lambda runtime, raw: runtime.as_str(raw)),
    bytes: _scalar_decoder(TypeTag.BYTES, _copy_bytes),
    bytearray: _scalar_decoder(TypeTag.BYTES, _copy_bytearray),
}


def _tuple_decoder(element_types: tuple[NativeType, ...]) -> Decoder:
    element_decoders = tuple(_decoder_for(element_type) for element_type in element_types)

    def decode_tuple(runtime: Runtime, raw: RawHandle, out: Out[Any]) -> bool:
        if (
            runtime.type_tag(raw) is not TypeTag.TUPLE
            or runtime.tuple_size(raw) != len(element_types)
        ):
            return False
        current = list(out.value)
        for index, (element_type, decode_element) in enumerate(
            zip(element_types, element_decoders)
        ):
            element = Out(element_type, current[index])
            item_raw = runtime.tuple_get_item(raw, index)
            with ExclusiveHandle.acquire(runtime, item_raw) as item:
                decoded = decode_element(runtime, item.raw, element)
            # A nested tuple that failed partway still carries its decoded prefix.
            current[index] = element.value
            out.value = tuple(current)
            if not decoded:
                return False
        return True

    return decode_tuple


def _sequence_decoder(element_type: NativeType) -> Decoder:
    decode_element = _decoder_for(element_type)

    def decode_sequence(runtime: Runtime, raw: RawHandle, out: Out[Any]) -> bool:
        if runtime.type_tag(raw) is not TypeTag.LIST:
            return False
        for index in range(runtime.list_size(raw)):
            element = Out(element_type)
            item_raw = runtime.list_get_item(raw, index)
            with ExclusiveHandle.acquire(runtime, item_raw) as item:
                if not decode_element(runtime, item.raw, element):
                    return False
            out.value.append(element.value)
        return True

    return decode_sequence


def _mapping_decoder(key_type: NativeType, value_type: NativeType) -> Decoder:
    decode_key = _decoder_for(key_type)
    decode_value = _decoder_for(value_type)

    def decode_mapping(runtime: Runtime, raw: RawHandle, out: Out[Any]) -> bool:
        if runtime.type_tag(raw) is not TypeTag.DICT:
            return False
        for raw_key, raw_value in runtime.dict_items(raw):
            with (
                ExclusiveHandle.acquire(runtime, raw_key) as key_handle,
                ExclusiveHandle.acquire(runtime, raw_value) as value_handle,
            ):
                key = Out(key_type)
                if not decode_key(runtime, key_handle.raw, key):
                    return False
                value = Out(value_type)
                if not decode_value(runtime, value_handle.raw, value):
                    return False
            # Existing keys are kept, like an insert into a key-unique map.
            out.value.setdefault(key.value, value.value)
        return True

    return decode_mapping


def _is_hashable(native_type: NativeType) -> bool:
    """Whether every value decoded as ``native_type`` can be a dict key."""
    origin = get_origin(native_type)
    if origin is None:
        return native_type is not bytearray
    if origin is tuple:
        return all(_is_hashable(element_type) for element_type in get_args(native_type))
    return False


@cache
def _decoder_for(native_type: NativeType) -> Decoder:
    origin = get_origin(native_type)
    arguments = get_args(native_type)
    if origin is None:
        decoder = _SCALAR_DECODERS.get(native_type)  # type: ignore[call-overload]
        if decoder is None:
            raise _unsupported(native_type)
        return decoder
    elif origin is tuple:
        return _tuple_decoder(_tuple_element_types(native_type))
    elif origin in (list, deque) and len(arguments) == 1:
        return _sequence_decoder(arguments[0])
    elif origin is dict and len(arguments) == 2:
        if not _is_hashable(arguments[0]):
            raise _unsupported(native_type)
        return _mapping_decoder(arguments[0], arguments[1])
    raise _unsupported(native_type)


def decode(handle: ForeignReference, out: Out[Any]) -> bool:
    """
    Convert the runtime object denoted by ``handle`` into ``out.value``.

    :return: ``False`` if the object's runtime type or shape does not match
             ``out.native_type``, or if ``handle`` is empty. ``out`` then holds
             whatever was stored before the mismatch was found.
    """
    runtime = handle.runtime
    if runtime is None or handle.raw == NULL_HANDLE:
        return False
    return _decoder_for(out.native_type)(runtime, handle.raw, out)


# Encoders


def _encode_raw(runtime: Runtime, value: object) -> RawHandle:
    match value:
        case bool():
            return runtime.bool_from(value)
        case int():
            return runtime.int_from(value)
        case float():
            return runtime.float_from(value)
        case str():
            return runtime.str_from(value)
        case bytes() | bytearray() | memoryview():
            return runtime.bytes_from(bytes(value))
        case tuple():
            with ExclusiveHandle.acquire(runtime, runtime.tuple_new(len(value))) as container:
                for index, element in enumerate(value):
                    runtime.tuple_set_item(
                        container.raw, index, _encode_raw(runtime, element)
                    )
                return container.detach()
        case list() | deque():
            with ExclusiveHandle.acquire(runtime, runtime.list_new(len(value))) as container:
                for index, element in enumerate(value):
                    runtime.list_set_item(
                        container.raw, index, _encode_raw(runtime, element)
                    )
                return container.detach()
        case Mapping():
            with ExclusiveHandle.acquire(runtime, runtime.dict_new()) as container:
                for key, element in value.items():
                    with (
                        encode(runtime, key) as key_handle,
                        encode(runtime, element) as value_handle,
                    ):
                        runtime.dict_set_item(
                            container.raw, key_handle.raw, value_handle.raw
                        )
                return container.detach()
        case _:
            raise TypeError(
                f"No conversion is defined for native type {type(value).__name__!r}"
            )


def encode(runtime: Runtime, value: object) -> ExclusiveHandle:
    """
    Convert a native value into a new runtime object.

    :return: An exclusive handle owning the new reference.
    :raises TypeError: If ``value`` (or any element of it) has no conversion.
    """
    return ExclusiveHandle.acquire(runtime, _encode_raw(runtime, value))


def encode_bytes(
    runtime: Runtime,
    data: bytes | bytearray | memoryview,
    length: int | None = None,
) -> ExclusiveHandle:
    """
    Copy a byte buffer into a new runtime bytes object.

    :param length: Copy only the first ``length`` bytes; the whole buffer when ``None``.
    :raises ValueError: If ``length`` is negative or past the end of ``data``.
    """
    buffer = memoryview(data).cast("B")
    if length is None:
        length = len(buffer)
    elif not 0 <= length <= len(buffer):
        raise ValueError(f"Length {length} is outside a buffer of {len(buffer)} bytes")
    return ExclusiveHandle.acquire(runtime, runtime.bytes_from(bytes(buffer[:length])))

"""Tests for ScriptObject attribute lookup, calls and script loading."""

import copy
import gc
from pathlib import Path

import pytest

from scriptbridge import (
    AttributeLookupError,
    InvocationError,
    LoadError,
    Out,
    Runtime,
    ScriptObject,
    Session,
    encode,
    encode_bytes,
)

SCRIPTS_DIR = Path(__file__).parent / "fixtures" / "scripts"


class TestAttributes:
    """Test attribute lookup on a loaded script."""

    def test_get_attr(self, calculator: ScriptObject) -> None:
        """A module-level constant should convert to its value."""
        out = Out(int)
        assert calculator.get_attr("constant").convert(out)
        assert out.value == 42

    def test_missing_attribute_raises(
        self, calculator: ScriptObject, runtime: Runtime
    ) -> None:
        """A missing attribute should raise AttributeLookupError and clear the error."""
        with pytest.raises(AttributeLookupError) as exc_info:
            calculator.get_attr("does_not_exist")
        assert exc_info.value.name == "does_not_exist"
        assert "does_not_exist" in exc_info.value.report
        assert isinstance(exc_info.value, AttributeError)
        assert not runtime.error_occurred()

    def test_has_attr(self, calculator: ScriptObject, runtime: Runtime) -> None:
        """has_attr should report presence without keeping any reference."""
        live_handles = runtime.live_handles()
        assert calculator.has_attr("add")
        assert not calculator.has_attr("does_not_exist")
        assert not runtime.error_occurred()
        assert runtime.live_handles() == live_handles

    def test_lookup_failing_inside_runtime(
        self, calculator: ScriptObject, runtime: Runtime
    ) -> None:
        """An attribute whose lookup raises a non-AttributeError should fail the same way."""
        accumulator = calculator.call_function("Accumulator")
        assert not accumulator.has_attr("unstable")
        assert not runtime.error_occurred()
        with pytest.raises(AttributeLookupError) as exc_info:
            accumulator.get_attr("unstable")
        assert exc_info.value.name == "unstable"
        assert "RuntimeError: unstable attribute" in exc_info.value.report
        assert not runtime.error_occurred()

    def test_same_object_gives_equal_facades(self, calculator: ScriptObject) -> None:
        """Two lookups of the same attribute should be equal and hash alike."""
        first = calculator.get_attr("add")
        second = calculator.get_attr("add")
        assert first == second
        assert hash(first) == hash(second)
        assert first != calculator.get_attr("echo")


class TestCallFunction:
    """Test positional calls into the runtime."""

    def test_arguments_keep_positional_order(self, calculator: ScriptObject) -> None:
        """Arguments should reach the callable in the order given."""
        out = Out(tuple[int, str, float])
        assert calculator.call_function("echo", 1, "two", 3.0).convert(out)
        assert out.value == (1, "two", 3.0)

    def test_argument_types_reach_runtime(self, calculator: ScriptObject) -> None:
        """Each native argument should arrive as the matching runtime type."""
        out = Out(list[str])
        result = calculator.call_function(
            "type_names", True, 1, 1.5, "s", b"b", (1,), [1], {"k": 1}
        )
        assert result.convert(out)
        assert out.value == [
            "bool", "int", "float", "str", "bytes", "tuple", "list", "dict"
        ]

    def test_zero_arguments(self, calculator: ScriptObject) -> None:
        """A call without arguments should pass an empty tuple."""
        out = Out(str)
        assert calculator.call_function("greeting").convert(out)
        assert out.value == "hello"

    def test_nested_result(self, calculator: ScriptObject) -> None:
        """A nested container result should decode in full."""
        out = Out(dict[str, list[tuple[str, int]]])
        assert calculator.call_function("inventory").convert(out)
        assert out.value == {"apples": [("red", 3), ("green", 5)], "pears": []}

    def test_invocation_failure(self, calculator: ScriptObject, runtime: Runtime) -> None:
        """An exception inside the callable should raise InvocationError."""
        with pytest.raises(InvocationError) as exc_info:
            calculator.call_function("fail")
        assert exc_info.value.function_name == "fail"
        assert "ValueError: boom" in exc_info.value.report
        assert not runtime.error_occurred()

    def test_no_stale_error_after_failure(
        self, calculator: ScriptObject, runtime: Runtime
    ) -> None:
        """A failed call should not affect the next call."""
        with pytest.raises(InvocationError):
            calculator.call_function("fail")
        out = Out(int)
        assert calculator.call_function("add", 2, 3).convert(out)
        assert out.value == 5
        assert runtime.report_error() == ""

    def test_calling_non_callable(self, calculator: ScriptObject) -> None:
        """Calling a constant should raise InvocationError."""
        with pytest.raises(InvocationError, match="not callable"):
            calculator.call_function("constant")

    def test_calling_missing_function(self, calculator: ScriptObject) -> None:
        """Calling a missing name should raise AttributeLookupError."""
        with pytest.raises(AttributeLookupError):
            calculator.call_function("does_not_exist", 1)

    def test_unsupported_argument(self, calculator: ScriptObject, runtime: Runtime) -> None:
        """An unconvertible argument should raise TypeError without leaking."""
        live_handles = runtime.live_handles()
        with pytest.raises(TypeError):
            calculator.call_function("echo", 1, object())
        gc.collect()
        assert runtime.live_handles() == live_handles

    def test_exclusive_handle_argument_is_moved(
        self, calculator: ScriptObject, runtime: Runtime
    ) -> None:
        """An ExclusiveHandle argument should be moved into the call and left empty."""
        handle = encode(runtime, [1, 2])
        result = calculator.call_function("identity", handle)
        assert handle.is_empty
        out = Out(list[int])
        assert result.convert(out)
        assert out.value == [1, 2]

    def test_prefix_bytes_argument(self, calculator: ScriptObject, runtime: Runtime) -> None:
        """A byte-buffer prefix should be passed as bytes."""
        out = Out(bytes)
        result = calculator.call_function(
            "reverse_bytes", encode_bytes(runtime, b"abcdef", 3)
        )
        assert result.convert(out)
        assert out.value == b"cba"

    def test_script_object_argument_keeps_its_reference(
        self, calculator: ScriptObject, runtime: Runtime
    ) -> None:
        """A ScriptObject argument should keep the caller's reference count."""
        accumulator = calculator.call_function("Accumulator")
        accumulator.call_function("add", 3)
        accumulator.call_function("add", 4)
        refcount = runtime.refcount(accumulator.raw)

        out = Out(int)
        assert calculator.call_function("total_of", accumulator).convert(out)
        assert out.value == 7
        assert runtime.refcount(accumulator.raw) == refcount

        out = Out(int)
        assert accumulator.call_function("total").convert(out)
        assert out.value == 7

    def test_results_are_released_with_their_facade(
        self, calculator: ScriptObject, runtime: Runtime
    ) -> None:
        """Dropping a result should release its runtime reference."""
        live_handles = runtime.live_handles()
        result = calculator.call_function("make_list")
        assert runtime.live_handles() == live_handles + 1
        del result
        gc.collect()
        assert runtime.live_handles() == live_handles

    def test_describe(self, calculator: ScriptObject) -> None:
        """describe should return the runtime's representation."""
        assert calculator.call_function("echo", 1, "a").describe() == "(1, 'a')"


class TestFacadeValue:
    """Test the value semantics of ScriptObject."""

    def test_empty(self) -> None:
        """An empty ScriptObject should refuse lookups and conversions."""
        empty = ScriptObject()
        assert empty.is_empty
        assert empty.runtime is None
        assert not empty.has_attr("anything")
        assert not empty.convert(Out(int))
        assert empty.describe() == "<empty>"
        with pytest.raises(AttributeLookupError):
            empty.get_attr("anything")

    def test_empty_objects_are_equal(self) -> None:
        """Empty ScriptObjects should compare equal."""
        assert ScriptObject() == ScriptObject()

    def test_copy_enrolls_holder(self, calculator: ScriptObject) -> None:
        """copy.copy should add a holder of the same reference."""
        duplicate = copy.copy(calculator)
        assert duplicate == calculator
        assert calculator.handle.use_count == 2

    def test_facade_argument_must_not_be_empty(self, calculator: ScriptObject) -> None:
        """An empty ScriptObject argument should raise ValueError."""
        with pytest.raises(ValueError, match="empty ScriptObject"):
            calculator.call_function("identity", ScriptObject())


class TestFromScript:
    """Test loading scripts."""

    def test_search_path(self, session: Session) -> None:
        """A relative name should be found on the search paths."""
        module = ScriptObject.from_script(session, "calculator.py")
        assert module.has_attr("add")

    def test_absolute_path(self, session: Session) -> None:
        """An absolute path should load directly."""
        module = ScriptObject.from_script(session, SCRIPTS_DIR / "calculator.py")
        assert module.has_attr("add")

    def test_each_load_is_a_new_module(self, session: Session) -> None:
        """Loading the same script twice should give two modules."""
        assert session.load("calculator.py") != session.load("calculator.py")

    def test_missing_script(self, session: Session) -> None:
        """A missing script should raise LoadError, which is an ImportError."""
        with pytest.raises(LoadError) as exc_info:
            session.load("does_not_exist.py")
        assert exc_info.value.path == "does_not_exist.py"
        assert isinstance(exc_info.value, ImportError)
        assert not session.runtime.error_occurred()

    def test_syntax_error(self, session: Session) -> None:
        """A script with a syntax error should report it."""
        with pytest.raises(LoadError) as exc_info:
            session.load("broken_syntax.py")
        assert "SyntaxError" in exc_info.value.report
        assert exc_info.value.path == str(SCRIPTS_DIR / "broken_syntax.py")

    def test_error_while_loading(self, session: Session) -> None:
        """A script raising at import time should raise LoadError."""
        with pytest.raises(LoadError, match="refusing to load"):
            session.load("raises_on_load.py")
        assert not session.runtime.error_occurred()

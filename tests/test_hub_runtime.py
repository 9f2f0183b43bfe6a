import abc
import threading
import time
from collections.abc import Iterable, Sequence
from decimal import Decimal
from typing import Optional, Union

import numpy as np
import pytest

from methodhub import (
    MethodHub, HubConfig, RegisteringBehavior, InvalidArgument, DuplicateRegistration,
    MethodNotFound, derive_name, describe, default_oracle,
)


class IObject(abc.ABC):
    pass


class Device(IObject):
    pass


class Serial(Device):
    pass


class Calculator:
    def add(self, a: int, b: int) -> int:
        return a + b

    @staticmethod
    def square(x: int) -> int:
        return x * x


class Counter:
    def __init__(self):
        self.value = 0
        self.closed = False

    def bump(self, by: int) -> int:
        self.value += by
        return self.value

    def reset(self) -> None:
        self.value = 0

    def close(self):
        self.closed = True


def add_ints(a: int, b: int) -> int:
    return a + b


def add_floats(a: float, b: float) -> float:
    return a + b


def two_int() -> int:
    return 2


def two_float() -> float:
    return 2.0


def two_str() -> str:
    return "2"


@pytest.fixture
def hub():
    h = MethodHub(HubConfig(behavior=RegisteringBehavior.METHOD_NAME))
    yield h
    h.dispose()


@pytest.fixture
def adders(hub):
    hub.register(add_ints, "Add")
    hub.register(add_floats, "Add")
    return hub

# --- Registration ---

def test_register_and_query(hub):
    assert hub.register(add_ints) == "add_ints"
    assert hub.is_registered(add_ints)
    assert hub.is_registered("add_ints")
    assert not hub.is_registered(add_floats)
    assert len(hub) == 1
    assert add_ints in hub


def test_register_rejects_bad_input(hub):
    with pytest.raises(InvalidArgument):
        hub.register(None)
    with pytest.raises(InvalidArgument):
        hub.register(42)
    with pytest.raises(InvalidArgument):
        hub.register(add_ints, "")
    with pytest.raises(InvalidArgument):
        hub.is_registered(None)


def test_register_rejects_duplicates(hub):
    hub.register(add_ints, "Add")
    with pytest.raises(DuplicateRegistration) as exc:
        hub.register(add_ints, "Other")
    assert exc.value.name == "Add"
    assert isinstance(exc.value, ValueError)
    assert len(hub) == 1


def test_unregister_by_callable_and_name(hub):
    hub.register(add_ints, "Add")
    hub.register(add_floats, "AddF")
    hub.unregister(add_ints)
    hub.unregister("AddF")
    assert len(hub) == 0
    with pytest.raises(MethodNotFound):
        hub.unregister("AddF")
    with pytest.raises(MethodNotFound):
        hub.unregister(add_ints)
    with pytest.raises(InvalidArgument):
        hub.unregister(None)


@pytest.mark.parametrize("fn", [
    lambda *args: 0,
    lambda a, **kw: 0,
    lambda a, *, b: 0,
])
def test_unsupported_parameters_are_rejected(hub, fn):
    with pytest.raises(InvalidArgument):
        hub.register(fn, "f")


def test_general_unions_are_rejected(hub):
    def either(a: Union[int, str]) -> int:
        return 0
    with pytest.raises(InvalidArgument):
        hub.register(either)


def test_explicit_types_override_annotations(hub):
    hub.register(lambda a, b: a * b, "Mul", params=[int, int], returns=int)
    assert hub.execute("Mul", 3, 4, returns=int) == 12


def test_register_all(hub):
    names = hub.register_all([(add_ints, "Add"), two_int])
    assert names == ["Add", "two_int"]
    assert hub.names() == ["Add", "two_int"]


def test_register_with_behavior(hub):
    calc = Calculator()
    assert hub.register_with_behavior(calc.add, "class-and-method-name") == "Calculator.add"
    with pytest.raises(InvalidArgument):
        hub.register_with_behavior(add_ints, None)

# --- Naming ---

def test_class_and_method_names():
    behavior = RegisteringBehavior.CLASS_AND_METHOD_NAME
    assert derive_name(Calculator().add, behavior) == "Calculator.add"
    assert derive_name(Calculator.square, behavior) == "Calculator.square"
    assert derive_name(add_ints, behavior) == f"{add_ints.__module__.rsplit('.', 1)[-1]}.add_ints"


def test_nested_function_uses_enclosing_name():
    def inner() -> int:
        return 1
    name = derive_name(inner, RegisteringBehavior.CLASS_AND_METHOD_NAME)
    assert name == "test_nested_function_uses_enclosing_name.inner"


def test_method_name_behavior():
    assert derive_name(Calculator().add, RegisteringBehavior.METHOD_NAME) == "add"


def test_hub_default_behavior_is_class_and_method():
    with MethodHub(HubConfig()) as h:
        assert h.register(Calculator().add) == "Calculator.add"

# --- Execution ---

def test_exact_overload_wins(adders):
    result = adders.execute("Add", 3, 5, returns=int)
    assert result == 8 and type(result) is int
    assert adders.execute("Add", 2.5, 0.25, returns=float) == 2.75


def test_result_is_converted_to_requested_type(adders):
    result = adders.dispatch("Add", 3, 5, returns=float)
    assert result.entry.key is add_ints
    assert result.status == "converted"
    assert result.value == 8.0 and type(result.value) is float


def test_float_arguments_pick_float_overload(adders):
    assert adders.resolve("Add", 3.0, 5.0, returns=int).key is add_floats
    assert adders.execute("Add", 3.0, 5.0, returns=int) == 8


def test_return_type_selects_overload(hub):
    for fn in (two_int, two_float, two_str):
        hub.register(fn, "GetTwo")
    assert type(hub.execute("GetTwo", returns=int)) is int
    assert hub.execute("GetTwo", returns=float) == 2.0
    assert hub.execute("GetTwo", returns=str) == "2"
    assert hub.resolve("GetTwo", returns=Decimal).key is two_float
    assert hub.execute("GetTwo", returns=Decimal) == Decimal(2)


def test_no_value_form_only_runs_void_callables(hub):
    calls = []

    def record(msg: str) -> None:
        calls.append(msg)

    def record_len(msg: str) -> int:
        return len(msg)

    hub.register(record, "record")
    hub.register(record_len, "record")
    assert hub.execute("record", "hi") is None
    assert calls == ["hi"]
    assert hub.execute("record", "hello", returns=int) == 5
    assert hub.dispatch("record", "x").status == "void"


def test_no_value_request_without_void_candidate(adders):
    with pytest.raises(MethodNotFound):
        adders.execute("Add", 1, 2)


def test_hierarchy_picks_closest_parameter(hub):
    def describe_device(d: Device) -> str:
        return "device"

    def describe_object(o: IObject) -> str:
        return "object"

    hub.register(describe_object, "Describe")
    hub.register(describe_device, "Describe")
    assert hub.execute("Describe", Serial(), returns=str) == "device"


def test_abstract_collection_overloads_prefer_specific(hub):
    def over_iterable(x: Iterable) -> str:
        return "iterable"

    def over_sequence(x: Sequence) -> str:
        return "sequence"

    hub.register(over_iterable, "f")
    hub.register(over_sequence, "f")
    assert hub.execute("f", [1, 2], returns=str) == "sequence"
    assert hub.execute("f", {1, 2}, returns=str) == "iterable"


def test_overloads_by_arity(hub):
    def get_two() -> int:
        return 2

    def get_two_of(i: int) -> int:
        return i

    hub.register(get_two, "GetTwo")
    assert hub.execute("GetTwo", returns=int) == 2
    hub.register(get_two_of, "GetTwo")
    assert hub.execute("GetTwo", returns=int) == 2
    assert hub.resolve("GetTwo", 2, returns=int).key is get_two_of
    assert hub.execute("GetTwo", 2, returns=int) == 2
    result = hub.execute("GetTwo", 2, returns=float)
    assert result == 2.0 and type(result) is float


def test_return_hierarchy_prefers_least_derived(hub):
    def make_serial() -> Serial:
        return Serial()

    def make_device() -> Device:
        return Device()

    hub.register(make_serial, "Make")
    hub.register(make_device, "Make")
    assert type(hub.execute("Make", returns=Device)) is Device
    assert type(hub.execute("Make", returns=IObject)) is Device
    assert type(hub.execute("Make", returns=Serial)) is Serial


def test_optional_parameters_accept_none(hub):
    def greet(name: Optional[str]) -> str:
        return f"hello {name}"

    def strict(name: str) -> str:
        return name

    hub.register(greet)
    hub.register(strict)
    assert hub.execute("greet", None, returns=str) == "hello None"
    with pytest.raises(MethodNotFound):
        hub.execute("strict", None, returns=str)


def test_generic_annotations_use_their_origin(hub):
    def total(values: list[int]) -> int:
        return sum(values)
    hub.register(total)
    assert describe(total).params == (list,)
    assert hub.execute("total", [1, 2, 3], returns=int) == 6


def test_degraded_coercion_is_reported(hub):
    def big() -> int:
        return 300
    hub.register(big)
    result = hub.dispatch("big", returns=np.uint8)
    assert result.status == "degraded"
    assert result.degraded
    assert result.raw == 300
    assert result.value == 0 and type(result.value) is np.uint8


def test_missing_method_reports_context(adders):
    with pytest.raises(MethodNotFound) as exc:
        adders.execute("Add", "x", returns=int)
    assert isinstance(exc.value, LookupError)
    assert "Arguments: (str) -> int" in exc.value.detail
    assert "Add(int, int) -> int" in exc.value.detail


def test_errors_from_callables_propagate(hub):
    def boom() -> int:
        raise RuntimeError("boom")
    hub.register(boom)
    with pytest.raises(RuntimeError):
        hub.execute("boom", returns=int)


def test_simple_execute_searches_all_names(hub):
    def concat(a: str, b: str) -> str:
        return a + b
    hub.register(add_ints, "Add")
    hub.register(concat, "Concat")
    assert hub.simple_execute("a", "b", returns=str) == "ab"
    assert hub.simple_execute(1, 2, returns=int) == 3

# --- try_execute ---

def test_try_execute_reports_failures(adders):
    assert adders.try_execute("Add", 1, 2, returns=int) == (True, 3)
    assert adders.try_execute("Missing", 1, returns=int) == (False, 0)
    assert adders.try_execute("Missing") is False


def test_try_execute_treats_zero_as_failure(hub):
    hub.register(lambda: 0, "zero", returns=int)
    hub.register(lambda: None, "noop", params=[], returns=None)
    assert hub.try_execute("zero", returns=int) == (False, 0)
    assert hub.try_execute("noop") is True


def test_try_execute_swallows_callable_errors(hub):
    def boom() -> int:
        raise RuntimeError("boom")
    hub.register(boom)
    assert hub.try_execute("boom", returns=int) == (False, 0)

# --- Instances and disposal ---

def test_register_instance_and_dispose_owned():
    hub = MethodHub(HubConfig(behavior="class-and-method-name"))
    counter = Counter()
    names = hub.register_instance(counter, ["bump", ("reset", "Counter.clear")], owned=True)
    assert names == ["Counter.bump", "Counter.clear"]
    assert hub.execute("Counter.bump", 2, returns=int) == 2
    hub.execute("Counter.clear")
    assert counter.value == 0
    hub.dispose()
    assert counter.closed
    assert len(hub) == 0


def test_register_instance_rolls_back_on_failure(hub):
    counter = Counter()
    with pytest.raises(InvalidArgument):
        hub.register_instance(counter, ["bump", "missing"])
    assert not hub.is_registered("bump")
    assert len(hub) == 0


def test_unowned_instances_are_not_closed():
    counter = Counter()
    with MethodHub(HubConfig(behavior="method-name")) as hub:
        hub.register_instance(counter, ["bump"])
    assert not counter.closed


def test_context_manager_disposes():
    counter = Counter()
    with MethodHub(HubConfig(behavior="method-name")) as hub:
        hub.register_instance(counter, ["bump"], owned=True)
        hub.register(add_ints)
    assert counter.closed
    assert len(hub) == 0
    assert not hub.is_registered(add_ints)
    assert not hub.is_registered("add_ints")
    assert not hub.is_registered("bump")

# --- Concurrency ---

def test_distinct_callables_run_in_parallel(hub):
    barrier = threading.Barrier(2, timeout=5)

    def left() -> int:
        barrier.wait()
        return 1

    def right() -> int:
        barrier.wait()
        return 2

    hub.register(left)
    hub.register(right)
    results = {}

    def run(name):
        results[name] = hub.execute(name, returns=int)

    threads = [threading.Thread(target=run, args=(n,)) for n in ("left", "right")]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert results == {"left": 1, "right": 2}


def test_same_callable_is_serialized(hub):
    state = {"active": 0, "peak": 0}
    guard = threading.Lock()

    def slow(x: int) -> int:
        with guard:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.02)
        with guard:
            state["active"] -= 1
        return x

    hub.register(slow)
    threads = [threading.Thread(target=hub.execute, args=("slow", i), kwargs={"returns": int})
               for i in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert state["peak"] == 1


def test_callable_may_dispatch_to_itself(hub):
    def fact(n: int) -> int:
        return 1 if n <= 1 else n * hub.execute("fact", n - 1, returns=int)
    hub.register(fact)
    assert hub.execute("fact", 5, returns=int) == 120

# --- Configuration ---

def test_hub_honours_configured_cache_size():
    assert MethodHub(HubConfig(type_cache_size=2)).oracle.cache.maxsize == 2
    assert MethodHub(HubConfig(type_cache_size=None)).oracle.cache.maxsize is None
    shared = default_oracle()
    assert MethodHub(HubConfig(type_cache_size=shared.cache.maxsize)).oracle is shared


def test_hub_debug_setting_traces(monkeypatch, capsys):
    monkeypatch.delenv("METHODHUB_DEBUG", raising=False)
    quiet = MethodHub(HubConfig(behavior="method-name"))
    quiet.register(add_ints)
    assert "[DBG]" not in capsys.readouterr().err
    loud = MethodHub(HubConfig(behavior="method-name", debug=True))
    loud.register(add_ints)
    assert "[DBG] register add_ints(int, int) -> int" in capsys.readouterr().err

"""
The registry and dispatch orchestrator.

A MethodHub owns the registrations, runs the candidate pipeline for each call,
invokes the chosen callable under its entry lock and coerces the result to the
requested type.
"""
import inspect
import sys
import threading
import types
import typing
from typing import Any, Callable, Iterable, List, Optional, Sequence, Tuple

from methodhub.hub_datatypes import (
    NoneType, HubError, InvalidArgument, MethodNotFound, DuplicateRegistration,
    RegisteringBehavior, Invokable, CallableEntry, DispatchResult,
)
from methodhub.hub_config import HubConfig, debug_enabled, _dbg
from methodhub.hub_natives import convert, zero_value
from methodhub.hub_oracle import TypeOracle, default_oracle
from methodhub.hub_pipeline import CandidatePipeline, argument_types
from methodhub.hub_printer import Printer
from methodhub.hub_store import ThreadingDict

_UnionType = getattr(types, "UnionType", None)


# ===================================================================
# 1. Describing callables
# ===================================================================

def normalize_annotation(ann: Any, where: str = "annotation") -> Tuple[type, bool]:
    """Reduces an annotation to (class, accepts_none)."""
    if ann is inspect.Parameter.empty or ann is typing.Any or ann is object:
        return object, True
    if ann is None or ann is NoneType:
        return NoneType, True
    origin = typing.get_origin(ann)
    if origin is typing.Union or (_UnionType is not None and origin is _UnionType):
        members = typing.get_args(ann)
        rest = [m for m in members if m is not NoneType]
        if len(rest) == 1 and len(members) == 2:
            t, _ = normalize_annotation(rest[0], where)
            return t, True
        raise InvalidArgument(f"Unsupported union {ann!r} for {where}; register with explicit types instead")
    if origin is not None and isinstance(origin, type):
        return origin, False
    if isinstance(ann, type):
        return ann, False
    raise InvalidArgument(f"Unsupported annotation {ann!r} for {where}")


def _type_hints(fn) -> dict:
    if inspect.isclass(fn):
        target = fn.__init__
    elif inspect.isroutine(fn):
        target = fn
    else:
        target = fn.__call__
    try:
        return typing.get_type_hints(target)
    except Exception:
        return {}


def describe(fn: Callable, params: Optional[Sequence[Any]] = None, returns: Any = inspect.Parameter.empty) -> Invokable:
    """Builds the Invokable for `fn` from its signature or explicit types."""
    if params is not None and returns is not inspect.Parameter.empty:
        sig = None
    else:
        try:
            sig = inspect.signature(fn)
        except (TypeError, ValueError) as e:
            raise InvalidArgument(f"Cannot read the signature of {fn!r}; pass params= and returns=") from e

    hints = _type_hints(fn) if sig is not None else {}

    if params is None:
        declared = []
        for p in sig.parameters.values():
            if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
                ann = hints.get(p.name, p.annotation)
                if isinstance(ann, str):
                    raise InvalidArgument(f"Unresolved annotation {ann!r} for parameter '{p.name}' of {fn!r}")
                declared.append(normalize_annotation(ann, f"parameter '{p.name}'"))
            elif p.kind == p.KEYWORD_ONLY and p.default is not p.empty:
                continue
            else:
                raise InvalidArgument(f"Parameter '{p.name}' of {fn!r} is {p.kind.description}; only positional parameters can be dispatched")
    else:
        if isinstance(params, (str, bytes)) or not isinstance(params, Iterable):
            raise InvalidArgument("params must be a sequence of types")
        declared = [normalize_annotation(t, f"parameter {i}") for i, t in enumerate(params)]

    if returns is inspect.Parameter.empty:
        if inspect.isclass(fn):
            # Constructors produce instances of the class.
            ann = fn
        else:
            ann = hints.get("return", sig.return_annotation)
        if isinstance(ann, str):
            raise InvalidArgument(f"Unresolved return annotation {ann!r} of {fn!r}")
        ret, _ = normalize_annotation(ann, "return")
    else:
        ret, _ = normalize_annotation(returns, "return")

    return Invokable(fn, [t for t, _ in declared], ret, [n for _, n in declared])


def _owner_name(fn) -> Optional[str]:
    bound = getattr(fn, "__self__", None)
    if bound is not None and not isinstance(bound, types.ModuleType):
        return bound.__name__ if isinstance(bound, type) else type(bound).__name__
    qual = getattr(fn, "__qualname__", None) or ""
    parts = [p for p in qual.split(".")[:-1] if p != "<locals>"]
    if parts:
        return parts[-1]
    module = getattr(fn, "__module__", None)
    if isinstance(module, str) and module:
        return module.rsplit(".", 1)[-1]
    return None


def derive_name(fn: Callable, behavior: RegisteringBehavior) -> str:
    method = getattr(fn, "__name__", None) or type(fn).__name__
    if behavior is RegisteringBehavior.METHOD_NAME:
        return method
    owner = _owner_name(fn)
    return f"{owner}.{method}" if owner else method


def coerce(value: Any, target: type) -> Tuple[Any, str]:
    """Casts, converts, or falls back to the zero value of `target`."""
    if isinstance(value, target):
        return value, 'exact'
    try:
        return convert(value, target), 'converted'
    except (TypeError, ValueError, ArithmeticError):
        pass
    return zero_value(target), 'degraded'


def _release(instance):
    close = getattr(instance, "close", None)
    if callable(close):
        close()
        return
    exit_ = getattr(instance, "__exit__", None)
    if callable(exit_):
        exit_(None, None, None)


# ===================================================================
# 2. The hub
# ===================================================================

class MethodHub:
    """Registers callables and executes the best match for a call."""

    def __init__(self, config: Optional[HubConfig] = None, behavior: Any = None,
                 oracle: Optional[TypeOracle] = None):
        config = config if config is not None else HubConfig.from_env()
        if behavior is not None:
            config = config.with_overrides(behavior=RegisteringBehavior.parse(behavior))
        self.config = config
        if oracle is None:
            oracle = default_oracle()
            if oracle.cache.maxsize != config.type_cache_size:
                oracle = TypeOracle(config.type_cache_size)
        self.oracle = oracle
        self.pipeline = CandidatePipeline(self.oracle)
        self._methods = ThreadingDict(config.store_retries, config.store_retry_wait)
        # Instances created for (and owned by) bulk registrations; released on dispose.
        self._owned: List[Any] = []
        self._owned_lock = threading.Lock()
        self._printer = Printer()

    def _dbg(self, *parts):
        if self.config.debug and not debug_enabled():
            print("[DBG]", *parts, file=sys.stderr)
        else:
            _dbg(*parts)

    @property
    def behavior(self) -> RegisteringBehavior:
        return self.config.behavior

    # --- registration -------------------------------------------------

    @staticmethod
    def _key(target: Any) -> Any:
        try:
            hash(target)
        except TypeError:
            raise InvalidArgument(f"{target!r} is not hashable and cannot be registered") from None
        return target

    def _register(self, fn, name, behavior, params, returns) -> str:
        if fn is None:
            raise InvalidArgument("fn must not be None")
        if not callable(fn):
            raise InvalidArgument(f"{fn!r} is not callable")
        if name is not None and (not isinstance(name, str) or not name):
            raise InvalidArgument(f"name must be a non-empty string, not {name!r}")
        key = self._key(fn)
        if self._methods.contains(key):
            existing = self._methods.get(key)
            raise DuplicateRegistration(key, getattr(existing, "name", None))
        if name is None:
            behavior = RegisteringBehavior.parse(behavior) if behavior is not None else self.config.behavior
            name = derive_name(fn, behavior)
        invokable = describe(fn, params, returns)
        entry = CallableEntry(key, name, invokable)
        self._methods.add(key, entry)
        self._dbg("register", self._printer.pformat(entry))
        return name

    def register(self, fn: Callable, name: Optional[str] = None, behavior: Any = None, *,
                 params: Optional[Sequence[Any]] = None, returns: Any = inspect.Parameter.empty) -> str:
        """Registers `fn` and returns the name it was registered under.

        `params` and `returns` override the types read from annotations; pass
        `returns=None` for a callable that produces no value.
        """
        return self._register(fn, name, behavior, params, returns)

    def register_with_behavior(self, fn: Callable, behavior: Any, name: Optional[str] = None) -> str:
        if behavior is None:
            raise InvalidArgument("behavior must not be None")
        return self._register(fn, name, RegisteringBehavior.parse(behavior), None, inspect.Parameter.empty)

    def register_instance(self, instance: Any, methods: Iterable[Any], behavior: Any = None,
                          owned: bool = False) -> List[str]:
        """Registers the listed bound methods of `instance`.

        Each item of `methods` is a method name or a `(method_name, name)` pair.
        With `owned=True` the hub releases the instance on dispose().
        Nothing stays registered if any method fails to register.
        """
        if instance is None:
            raise InvalidArgument("instance must not be None")
        if methods is None or isinstance(methods, (str, bytes)):
            raise InvalidArgument("methods must be a list of method names")
        names: List[str] = []
        done: List[Any] = []
        try:
            for item in methods:
                alias = None
                if isinstance(item, tuple) and len(item) == 2:
                    item, alias = item
                if not isinstance(item, str):
                    raise InvalidArgument(f"Method names must be strings, not {item!r}")
                bound = getattr(instance, item, None)
                if bound is None or not callable(bound):
                    raise InvalidArgument(f"{type(instance).__name__} has no callable '{item}'")
                names.append(self._register(bound, alias, behavior, None, inspect.Parameter.empty))
                done.append(bound)
        except HubError:
            for bound in done:
                self._methods.remove(bound)
            raise
        if owned:
            with self._owned_lock:
                if not any(o is instance for o in self._owned):
                    self._owned.append(instance)
        return names

    def register_all(self, items: Iterable[Any]) -> List[str]:
        """Registers a declared list of callables or `(callable, name)` pairs."""
        if items is None:
            raise InvalidArgument("items must not be None")
        names = []
        for item in items:
            if isinstance(item, tuple):
                names.append(self.register(*item))
            else:
                names.append(self.register(item))
        return names

    def unregister(self, target: Any):
        """Removes a registration by callable or by name."""
        if target is None:
            raise InvalidArgument("target must not be None")
        if isinstance(target, str):
            found = self._methods.first(lambda _k, e: e.name == target)
            if found is None:
                raise MethodNotFound(target)
            target = found[0]
        key = self._key(target)
        try:
            entry = self._methods.remove(key)
        except KeyError:
            raise MethodNotFound(target) from None
        self._dbg("unregister", entry.name)

    def is_registered(self, target: Any) -> bool:
        if target is None:
            raise InvalidArgument("target must not be None")
        if isinstance(target, str):
            return self._methods.first(lambda _k, e: e.name == target) is not None
        return self._methods.contains(self._key(target))

    # --- resolution and execution ---------------------------------------

    def _desired(self, returns: Any) -> type:
        if returns is None or returns is NoneType:
            return NoneType
        t, _ = normalize_annotation(returns, "requested return type")
        return t

    def _candidates(self, name: Optional[str]) -> List[CallableEntry]:
        if name is not None and not isinstance(name, str):
            raise InvalidArgument(f"name must be a string or None, not {name!r}")
        entries = self._methods.values()
        if name is None:
            return entries
        return [e for e in entries if e.name == name]

    def resolve(self, name: Optional[str], *args: Any, returns: Any = None) -> Optional[CallableEntry]:
        """The entry a call would invoke, or None. `name=None` matches every entry."""
        desired = self._desired(returns)
        return self.pipeline.resolve(self._candidates(name), desired, args)

    def _no_match_detail(self, name, desired, args) -> str:
        pf = self._printer.pformat
        lines = [f"Arguments: {pf(argument_types(args))} -> {pf(desired)}"]
        considered = self._candidates(name)
        if considered:
            lines.append("Candidates:")
            lines.extend(f"  {pf(e)}" for e in considered)
        return "\n".join(lines)

    def dispatch(self, name: Optional[str], *args: Any, returns: Any = None) -> DispatchResult:
        """Resolves, invokes and coerces, reporting how the result was coerced."""
        desired = self._desired(returns)
        entry = self.pipeline.resolve(self._candidates(name), desired, args)
        if entry is None:
            raise MethodNotFound(name if name is not None else "*", self._no_match_detail(name, desired, args))
        with entry.lock:
            raw = entry.invokable.invoke(args)
        if desired is NoneType:
            return DispatchResult(entry, raw, None, 'void')
        value, status = coerce(raw, desired)
        if status == 'degraded':
            self._dbg("coercion degraded", entry.name, type(raw).__name__, "->", desired.__name__)
        return DispatchResult(entry, raw, value, status)

    def execute(self, name: Optional[str], *args: Any, returns: Any = None) -> Any:
        """Executes the best match for `name`.

        With `returns=T` the result is coerced to T (cast, conversion, or T's
        zero value). With `returns=None` only no-value callables are considered
        and None is returned.
        """
        return self.dispatch(name, *args, returns=returns).value

    def simple_execute(self, *args: Any, returns: Any = None) -> Any:
        """Executes the best match among all registered callables, whatever their name."""
        return self.execute(None, *args, returns=returns)

    def try_execute(self, name: Optional[str], *args: Any, returns: Any = None):
        """Like execute, but failures become False.

        Returns `ok` for the no-value form and `(ok, value)` for the typed form.
        A typed result equal to T's zero value also reports False.
        """
        if returns is None:
            try:
                self.execute(name, *args)
            except Exception as e:
                self._dbg("try_execute failed", name, type(e).__name__, e)
                return False
            return True
        try:
            value = self.execute(name, *args, returns=returns)
        except Exception as e:
            self._dbg("try_execute failed", name, type(e).__name__, e)
            return False, zero_value(returns)
        zero = zero_value(returns)
        if value is None or (zero is not None and value == zero):
            return False, value
        return True, value

    # --- lifecycle ------------------------------------------------------

    def dispose(self):
        """Removes every registration and releases owned instances."""
        entries = self._methods.clear()
        with self._owned_lock:
            owned, self._owned = self._owned, []
        errors = []
        for instance in owned:
            try:
                _release(instance)
            except Exception as e:
                errors.append(e)
        self._dbg("dispose", len(entries), "entries", len(owned), "owned")
        if errors:
            raise errors[0]

    def __enter__(self) -> 'MethodHub':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.dispose()

    # --- introspection --------------------------------------------------

    def entries(self) -> List[CallableEntry]:
        return self._methods.values()

    def names(self) -> List[str]:
        seen = []
        for e in self._methods.values():
            if e.name not in seen:
                seen.append(e.name)
        return seen

    def __len__(self) -> int:
        return len(self._methods)

    def __contains__(self, target: Any) -> bool:
        return target is not None and self.is_registered(target)

    def __repr__(self) -> str:
        return f"<MethodHub entries={len(self)} behavior={self.config.behavior.value}>"

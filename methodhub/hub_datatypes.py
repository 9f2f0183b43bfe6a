"""
Defines the core data types for the methodhub dispatch runtime.

This module provides the error hierarchy, the registration records owned by the
hub, and the hierarchy-tree node used by the type oracle.
"""

import enum
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple, Literal

NoneType = type(None)


# =================================================================
# Errors
# =================================================================

class HubError(Exception):
    """Base class for every error raised by methodhub."""
    pass


class InvalidArgument(HubError, ValueError):
    """A required input to a public operation was missing or unusable."""
    pass


class DuplicateRegistration(HubError, ValueError):
    def __init__(self, key: Any, name: Optional[str] = None):
        super().__init__(f"Callable {key!r} is already registered" + (f" as '{name}'" if name else ""))
        self.key = key
        self.name = name


class MethodNotFound(HubError, LookupError):
    """No registered callable survives resolution, or no entry matches a name."""
    def __init__(self, key: Any, detail: Optional[str] = None):
        msg = f"No method found for {key!r}"
        if detail:
            msg = f"{msg}\n{detail}"
        super().__init__(msg)
        self.key = key
        self.detail = detail


class InternalConsistencyError(HubError, RuntimeError):
    """The registration store could not be accessed within its retry budget."""
    pass


class UnreachableTypeError(HubError, TypeError):
    """None of the candidate types is reachable from the runtime type."""
    def __init__(self, root: type, candidates):
        names = ", ".join(getattr(c, "__name__", repr(c)) for c in candidates)
        super().__init__(f"Could not find a type for {root.__name__} among [{names}]")
        self.root = root
        self.candidates = list(candidates)


class ManifestError(InvalidArgument):
    """A registration manifest is malformed or names something unimportable."""
    pass


# =================================================================
# Native helper types
# =================================================================

class Char(str):
    """A single character. The hub treats it as a native type distinct from str."""
    def __new__(cls, value: Any = "\x00"):
        if isinstance(value, int) and not isinstance(value, bool):
            value = chr(value)
        value = str(value)
        if len(value) != 1:
            raise ValueError(f"Char requires exactly one character, got {len(value)}")
        return super().__new__(cls, value)

    def __repr__(self) -> str:
        return f"Char({str.__repr__(self)})"


class RegisteringBehavior(enum.Enum):
    """Controls how a name is derived when none is given at registration."""
    METHOD_NAME = "method-name"
    CLASS_AND_METHOD_NAME = "class-and-method-name"

    @classmethod
    def parse(cls, value: Any) -> 'RegisteringBehavior':
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("_", "-")
            for member in cls:
                if member.value == key:
                    return member
        raise InvalidArgument(f"Unknown registering behavior: {value!r}")


# =================================================================
# Registration records
# =================================================================

class Invokable:
    """Type-erased description of a registered callable.

    Built once at registration time: the ordered parameter types, whether each
    parameter accepts None, the declared return type and the stored callable.
    Nothing about the callable is inspected again after this point.
    """
    __slots__ = ("func", "params", "nullable", "returns")

    def __init__(self, func: Callable, params: Tuple[type, ...], returns: type,
                 nullable: Optional[Tuple[bool, ...]] = None):
        self.func = func
        self.params = tuple(params)
        self.nullable = tuple(nullable) if nullable is not None else tuple(p is object for p in self.params)
        self.returns = returns

    @property
    def arity(self) -> int:
        return len(self.params)

    @property
    def is_void(self) -> bool:
        return self.returns is NoneType

    def invoke(self, args) -> Any:
        return self.func(*args)

    def __repr__(self) -> str:
        from methodhub.hub_printer import Printer
        return f"<Invokable {Printer().pformat(self)}>"

    def __eq__(self, other):
        if not isinstance(other, Invokable):
            return NotImplemented
        return (self.func == other.func and self.params == other.params
                and self.nullable == other.nullable and self.returns == other.returns)

    def __hash__(self):
        return hash((self.params, self.returns))


class CallableEntry:
    """A registration owned by the hub: name, signature, and a private lock."""
    def __init__(self, key: Any, name: str, invokable: Invokable):
        self.key = key
        self.name = name
        self.invokable = invokable
        # Re-entrant so a callable may dispatch to itself on the same thread.
        self.lock = threading.RLock()

    @property
    def params(self) -> Tuple[type, ...]:
        return self.invokable.params

    @property
    def returns(self) -> type:
        return self.invokable.returns

    def __repr__(self) -> str:
        from methodhub.hub_printer import Printer
        return f"<CallableEntry {self.name!r} {Printer().pformat(self.invokable)}>"


# =================================================================
# Hierarchy tree
# =================================================================

class TypeNode:
    """A node of a hierarchy tree rooted at one concrete runtime type.

    `level` is the distance from the root, `order` the 1-based position among
    siblings (0 for the root). The parent link is weak; children own the tree.
    """
    __slots__ = ("type", "level", "order", "children", "_parent", "__weakref__")

    def __init__(self, type_: type, level: int = 0, parent: Optional['TypeNode'] = None):
        self.type = type_
        self.level = level
        self.children: List['TypeNode'] = []
        self._parent = weakref.ref(parent) if parent is not None else None
        self.order = 0
        if parent is not None:
            parent.children.append(self)
            self.order = len(parent.children)

    @property
    def parent(self) -> Optional['TypeNode']:
        return self._parent() if self._parent is not None else None

    def walk(self):
        """Yields every node of the subtree, breadth first."""
        queue = [self]
        while queue:
            node = queue.pop(0)
            yield node
            queue.extend(node.children)

    def find(self, target: type) -> Optional['TypeNode']:
        """Returns the node with the smallest level capturing `target`."""
        for node in self.walk():
            if node.type is target:
                return node
        return None

    @property
    def depth(self) -> int:
        return max(node.level for node in self.walk())

    def __repr__(self) -> str:
        return f"<TypeNode {self.type.__name__} level={self.level} order={self.order} children={len(self.children)}>"


# =================================================================
# Dispatch outcome
# =================================================================

CoercionStatus = Literal['exact', 'converted', 'degraded', 'void']


@dataclass
class DispatchResult:
    """The structured result of one dispatch."""
    entry: CallableEntry
    raw: Any = None
    value: Any = None
    status: CoercionStatus = 'void'

    @property
    def degraded(self) -> bool:
        return self.status == 'degraded'

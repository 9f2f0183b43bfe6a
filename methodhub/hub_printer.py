"""
A formatter for methodhub signatures, used in reprs and error messages.
"""
from methodhub.hub_datatypes import Invokable, CallableEntry, TypeNode, NoneType


class Printer:
    """Formats signatures, entries and hierarchy trees as readable text."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, type):
            return self._pformat_type
        if isinstance(obj, (list, tuple)):
            return self._pformat_type_list
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            Invokable: self._pformat_invokable,
            CallableEntry: self._pformat_entry,
            TypeNode: self._pformat_tree,
        }

    def type_name(self, t) -> str:
        if t is None or t is NoneType:
            return "None"
        name = getattr(t, "__qualname__", None) or getattr(t, "__name__", None)
        if not name:
            return repr(t)
        module = getattr(t, "__module__", "builtins")
        if module in ("builtins", "numpy"):
            return name if module == "builtins" else f"numpy.{name}"
        return name

    def _pformat_type(self, obj, level):
        return self.type_name(obj)

    def _pformat_type_list(self, obj, level):
        return "(" + ", ".join(self.type_name(t) for t in obj) + ")"

    def _pformat_invokable(self, obj, level):
        params = []
        for t, nullable in zip(obj.params, obj.nullable):
            name = self.type_name(t)
            if nullable and t is not object:
                name = f"Optional[{name}]"
            params.append(name)
        return f"({', '.join(params)}) -> {self.type_name(obj.returns)}"

    def _pformat_entry(self, obj, level):
        return f"{obj.name}{self._pformat_invokable(obj.invokable, level)}"

    def _pformat_tree(self, obj, level):
        lines = []
        stack = [(obj, level)]
        while stack:
            node, depth = stack.pop()
            lines.append(f"{self._indent_char * depth}{self.type_name(node.type)} [level={node.level} order={node.order}]")
            for child in reversed(node.children):
                stack.append((child, depth + 1))
        return "\n".join(lines)

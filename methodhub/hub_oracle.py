"""
The type compatibility oracle.

Native types are ranked with the scoring ladder in hub_natives. Every other type
is ranked by its distance in a hierarchy tree rooted at the runtime type: level
1 holds the most specific non-redundant ancestors, level 2 theirs, and so on.
"""
import enum
import math
import threading
from collections import OrderedDict
from typing import Iterable, List, Optional, Sequence, Tuple

from methodhub.hub_datatypes import TypeNode, UnreachableTypeError
from methodhub.hub_natives import (
    is_native, best_native_match, is_assignable_or_convertible, is_convertible, score,
)
from methodhub.hub_config import _dbg

__all__ = [
    "Direction", "TypeOracle", "build_type_tree", "default_oracle",
    "is_native", "is_assignable_or_convertible", "is_convertible", "score",
]


class Direction(enum.Enum):
    # Parameters: prefer the most specific declared type.
    FORWARD = "forward"
    # Return types: prefer the least derived acceptable type.
    INVERTED = "inverted"


def _current_level_types(t: type) -> List[type]:
    """The ancestors of `t` not reachable from another ancestor, in MRO order."""
    ancestors = list(t.__mro__[1:])
    level = []
    for a in ancestors:
        implied = False
        for b in ancestors:
            if b is not a and a in b.__mro__:
                implied = True
                break
        if not implied:
            level.append(a)
    return level


def _grow(node: TypeNode):
    for t in _current_level_types(node.type):
        child = TypeNode(t, node.level + 1, parent=node)
        _grow(child)


def build_type_tree(t: type) -> TypeNode:
    if not isinstance(t, type):
        raise TypeError(f"A hierarchy tree needs a class, not {t!r}")
    root = TypeNode(t, 0)
    _grow(root)
    return root


class _TreeCache:
    """Thread-safe LRU of hierarchy trees keyed by root type."""

    def __init__(self, maxsize: Optional[int] = None):
        self.maxsize = maxsize
        self._trees: 'OrderedDict[type, TypeNode]' = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, t: type) -> TypeNode:
        with self._lock:
            tree = self._trees.get(t)
            if tree is not None:
                self._trees.move_to_end(t)
                self.hits += 1
                return tree
            self.misses += 1
        # Build outside the lock; racing builders produce equivalent trees.
        built = build_type_tree(t)
        with self._lock:
            tree = self._trees.get(t)
            if tree is not None:
                return tree
            self._trees[t] = built
            if self.maxsize is not None:
                while len(self._trees) > self.maxsize:
                    evicted, _ = self._trees.popitem(last=False)
                    _dbg("type cache evict", evicted.__name__)
            return built

    def __contains__(self, t) -> bool:
        with self._lock:
            return t in self._trees

    def __len__(self) -> int:
        with self._lock:
            return len(self._trees)

    def clear(self):
        with self._lock:
            self._trees.clear()


def _virtual_rank(target: type, peers: Sequence[type]) -> int:
    """Number of other peers that are subclasses of `target`; 0 is the most specific."""
    rank = 0
    for p in set(peers):
        if p is target or not isinstance(p, type):
            continue
        try:
            if issubclass(p, target):
                rank += 1
        except TypeError:
            pass
    return rank


class TypeOracle:
    """Scores and ranks candidate types against a desired type."""

    def __init__(self, cache_size: Optional[int] = 4096):
        self._cache = _TreeCache(cache_size)

    @property
    def cache(self) -> _TreeCache:
        return self._cache

    def tree(self, t: type) -> TypeNode:
        return self._cache.get(t)

    def is_assignable_or_convertible(self, from_type: type, to_type: type) -> bool:
        return is_assignable_or_convertible(from_type, to_type)

    def best_native_match(self, input_type: type, candidates: Iterable[type]) -> Optional[type]:
        return best_native_match(input_type, candidates)

    def _locate(self, tree: TypeNode, target: type,
                peers: Sequence[type] = ()) -> Optional[Tuple[float, int]]:
        """(level, order) of `target` in `tree`.

        Interfaces satisfied only virtually (ABC registration, subclass hooks)
        do not appear in the nominal tree; they rank after its deepest level,
        and among themselves by how many of `peers` are more specific.
        """
        node = tree.find(target)
        if node is not None:
            return node.level, node.order
        try:
            if not issubclass(tree.type, target):
                return None
        except TypeError:
            return None
        return tree.depth + 1, _virtual_rank(target, peers)

    def best_inherited_match(self, root: type, candidates: Sequence[type],
                             direction: Direction = Direction.FORWARD) -> Optional[type]:
        """Picks one candidate by hierarchy distance.

        FORWARD: `root` is the runtime type and the candidates are declared
        supertypes; the smallest (level, order) in root's tree wins. Raises
        UnreachableTypeError if no candidate is found at all.

        INVERTED: `root` is the desired type and the candidates are declared
        subtypes; each candidate is ranked by where `root` sits in the
        candidate's own tree, so the least derived acceptable type wins.
        Candidates accepted only by conversion rank last. Never raises.
        """
        candidates = [c for c in candidates if c is not None]
        if not candidates:
            return None
        ranked = []
        if direction is Direction.FORWARD:
            tree = self.tree(root)
            for idx, cand in enumerate(candidates):
                loc = self._locate(tree, cand, candidates)
                if loc is not None:
                    ranked.append((loc[0], loc[1], idx, cand))
            if not ranked:
                raise UnreachableTypeError(root, candidates)
        else:
            for idx, cand in enumerate(candidates):
                loc = None
                if isinstance(cand, type):
                    loc = self._locate(self.tree(cand), root)
                if loc is None:
                    loc = (math.inf, 0)
                ranked.append((loc[0], loc[1], idx, cand))
        ranked.sort(key=lambda r: (r[0], r[1], r[2]))
        _dbg("best_inherited_match", direction.value, getattr(root, "__name__", root),
             [(getattr(c, "__name__", c), lvl) for lvl, _o, _i, c in ranked])
        return ranked[0][3]

    def best_match(self, runtime_type: type, candidates: Sequence[type],
                   direction: Direction = Direction.FORWARD) -> Optional[type]:
        """Native scoring for native types, hierarchy distance otherwise."""
        if is_native(runtime_type):
            return self.best_native_match(runtime_type, candidates)
        return self.best_inherited_match(runtime_type, candidates, direction)


_default_lock = threading.Lock()
_default_oracle: Optional[TypeOracle] = None


def default_oracle() -> TypeOracle:
    """The process-wide oracle shared by hubs that are not given their own."""
    global _default_oracle
    with _default_lock:
        if _default_oracle is None:
            from methodhub.hub_config import HubConfig
            _default_oracle = TypeOracle(HubConfig.from_env().type_cache_size)
        return _default_oracle

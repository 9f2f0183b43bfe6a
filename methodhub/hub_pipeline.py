"""
Candidate filtering: narrows the entries sharing a name down to one.

Stage 1 keeps entries of the right arity (and only no-value entries for a
no-value request), stage 2 keeps entries whose parameter and return types are
compatible with the call, stage 3 narrows position by position to the closest
declared type and finally picks by return type.
"""
from typing import Any, List, Optional, Sequence

from methodhub.hub_datatypes import CallableEntry, NoneType
from methodhub.hub_oracle import TypeOracle, Direction, is_native
from methodhub.hub_config import _dbg


def argument_types(args: Sequence[Any]) -> List[Optional[type]]:
    """Runtime types of the arguments; None arguments have no type."""
    return [None if a is None else type(a) for a in args]


class CandidatePipeline:
    def __init__(self, oracle: TypeOracle):
        self.oracle = oracle

    def filter_arity(self, entries: Sequence[CallableEntry], returns: type,
                     arg_types: Sequence[Optional[type]]) -> List[CallableEntry]:
        n = len(arg_types)
        if returns is NoneType:
            return [e for e in entries if e.invokable.arity == n and e.invokable.is_void]
        return [e for e in entries if e.invokable.arity == n]

    def _return_ok(self, declared: type, returns: type) -> bool:
        if declared is NoneType or returns is NoneType:
            return declared is returns
        return self.oracle.is_assignable_or_convertible(declared, returns)

    def _params_ok(self, entry: CallableEntry, arg_types: Sequence[Optional[type]]) -> bool:
        inv = entry.invokable
        for declared, nullable, actual in zip(inv.params, inv.nullable, arg_types):
            if actual is None:
                if not (nullable or declared is object):
                    return False
                continue
            if not self.oracle.is_assignable_or_convertible(actual, declared):
                return False
        return True

    def filter_assignable(self, entries: Sequence[CallableEntry], returns: type,
                          arg_types: Sequence[Optional[type]]) -> List[CallableEntry]:
        return [e for e in entries
                if self._return_ok(e.returns, returns) and self._params_ok(e, arg_types)]

    def select_best(self, entries: Sequence[CallableEntry], returns: type,
                    arg_types: Sequence[Optional[type]]) -> Optional[CallableEntry]:
        survivors = list(entries)
        for i, actual in enumerate(arg_types):
            if not survivors:
                return None
            if actual is None:
                continue
            declared = [e.params[i] for e in survivors]
            winner = self.oracle.best_match(actual, declared, Direction.FORWARD)
            if winner is None:
                continue
            survivors = [e for e in survivors if e.params[i] is winner]

        if not survivors:
            return None
        declared_returns = [e.returns for e in survivors]
        if is_native(returns):
            winner = self.oracle.best_native_match(returns, declared_returns)
        else:
            winner = self.oracle.best_inherited_match(returns, declared_returns, Direction.INVERTED)
        if winner is None:
            return None
        for e in survivors:
            if e.returns is winner:
                return e
        return None

    def resolve(self, entries: Sequence[CallableEntry], returns: type,
                args: Sequence[Any]) -> Optional[CallableEntry]:
        arg_types = argument_types(args)
        stage1 = self.filter_arity(entries, returns, arg_types)
        stage2 = self.filter_assignable(stage1, returns, arg_types)
        chosen = self.select_best(stage2, returns, arg_types)
        _dbg("resolve", "candidates", len(entries), "arity", len(stage1),
             "assignable", len(stage2), "chosen", getattr(chosen, "name", None))
        return chosen

from .base import Storage
from .filters import OPERATOR_REGISTRY, compile_where
from .query import match_constraint, matches
from .sql import SQLStorage

__all__ = ['Storage', 'SQLStorage', 'OPERATOR_REGISTRY', 'compile_where', 'matches', 'match_constraint']

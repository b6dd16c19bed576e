"""Database layer for factory_optimizer

This module provides the SQLite schema and access layer for the cross-run
evaluation memory used by Bayesian warm starts.
"""

from factory_optimizer.db.schema import (
    MEMORY_SCHEMA_SQL,
    CREATE_MEMORY_EVALUATIONS_TABLE,
)
from factory_optimizer.db.memory_store import (
    EvaluationMemory,
    MemoryEvaluation,
    MemoryContextStats,
    MemoryStats,
)

__all__ = [
    "MEMORY_SCHEMA_SQL",
    "CREATE_MEMORY_EVALUATIONS_TABLE",
    "EvaluationMemory",
    "MemoryEvaluation",
    "MemoryContextStats",
    "MemoryStats",
]

"""
app/services package marker.
"""

from app.services.calculation_engine import CalculationEngine, DependencyCache
from app.services.calculation_orchestrator import (
    BatchRunResult,
    CalculationOrchestrator,
    ExecutionPlan,
)
from app.services.table_executor import TableComponentExecutor

__all__ = [
    "CalculationEngine",
    "DependencyCache",
    "BatchRunResult",
    "CalculationOrchestrator",
    "ExecutionPlan",
    "TableComponentExecutor",
]

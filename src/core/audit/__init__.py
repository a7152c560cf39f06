from src.core.audit.models import ExecutionLog
from src.core.audit.service import (
    ExecutionEvent,
    ExecutionLevel,
    clean_old_execution_logs,
    list_execution_logs,
    log_execution,
    new_trace_id,
)

__all__ = [
    "ExecutionLog",
    "ExecutionEvent",
    "ExecutionLevel",
    "clean_old_execution_logs",
    "list_execution_logs",
    "log_execution",
    "new_trace_id",
]

__all__ = ["ExecutorConfig", "FuturesOrderExecutor", "WorkflowReport", "WorkflowState"]

from bot_talker.engine.executor import (
    ExecutorConfig,
    FuturesOrderExecutor,
    WorkflowReport,
    WorkflowState,
)

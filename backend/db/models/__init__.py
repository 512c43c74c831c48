"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.workflow_step import WorkflowStep
from db.models.execution import WorkflowExecution
from db.models.execution_log import WorkflowExecutionLog
from db.models.job import JobQueueEntry

__all__ = [
    "Workflow",
    "WorkflowStep",
    "WorkflowExecution",
    "WorkflowExecutionLog",
    "JobQueueEntry",
]

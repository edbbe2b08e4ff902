"""
Momentum — task and habit tracking service.

Core: the task completion state machine, the completion-history ledger and
the daily archive / delete-and-preserve / prune pipeline.
"""

__version__ = "1.0.0"
__all__ = ["engine", "db", "records", "teams", "history", "tasks", "integrations", "process", "api"]

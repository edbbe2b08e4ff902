"""Task lifecycle: completion state machine, permissions and the task service."""

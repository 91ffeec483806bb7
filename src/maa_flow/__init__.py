"""maa-flow: task-flow orchestration and recovery for the maa automation engine."""

__version__ = "0.1.0"

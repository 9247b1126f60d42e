"""Process execution, scheduling and logging helpers."""

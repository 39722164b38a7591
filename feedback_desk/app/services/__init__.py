"""Background services for the application."""

__all__ = [
    "scheduler",
    "suggestion_queue",
]

"""Event-to-notification reconciliation: keeps event reminders in step with a calendar."""

__version__ = "0.1.0"

"""Herd error hierarchy.

All herd-specific errors inherit from HerdError for easy catching.
"""


class HerdError(Exception):
    """Base error for all herd operations."""


class ConfigError(HerdError):
    """Invalid or missing configuration."""


class ValidationError(HerdError):
    """A mutation was rejected before persistence.

    Attributes:
        errors: Human-readable messages, one per failed field.

    """

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))


class NotFoundError(HerdError):
    """A mutation targeted an item id that does not exist."""

    def __init__(self, item_id: int) -> None:
        self.item_id = item_id
        super().__init__(f"Todo {item_id} not found")


class BroadcastError(HerdError):
    """A broadcast task failed; the task is discarded, never retried."""


class ChannelError(HerdError):
    """The upstream channel was disconnected."""

"""Exceptions that abort a whole scheduler or dispatcher invocation.

Per-reminder problems (gateway rejections, missing phone numbers) are never
raised; they are written to the reminder's ``notes`` instead.
"""


class ReminderEngineError(Exception):
    """Base class for invocation-level failures."""


class GatewayConfigError(ReminderEngineError):
    """Messaging gateway credentials or the operator number are unusable."""


class AnchorError(ReminderEngineError, ValueError):
    """An anchor value or zone name could not be interpreted."""


class StageTableError(ReminderEngineError, ValueError):
    """The stage table configuration is malformed."""

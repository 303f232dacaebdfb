"""Exception types raised by the event core."""


class PulseError(Exception):
    """Base class for Agent Pulse errors."""


class ValidationError(PulseError, ValueError):
    """Input rejected synchronously (missing event type, missing webhook URL)."""


class DeliveryStateError(PulseError, RuntimeError):
    """Illegal transition of a DeliveryRecord (e.g. mutating a terminal record)."""

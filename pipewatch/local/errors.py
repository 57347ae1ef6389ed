"""
Exception hierarchy for the supervisor.

Every error below is absorbed and logged by the component that catches it;
none of them is allowed to terminate the reconciliation loop.
"""


class PipewatchError(Exception):
    """Base class for all supervisor errors."""


class ConfigError(PipewatchError):
    """The resolved configuration is out of range."""


class StatusParseError(PipewatchError):
    """The status record exists but is not a well-formed JSON object."""


class ProcessSpawnError(PipewatchError):
    """The pipeline executable could not be launched."""


class AlreadyRunning(PipewatchError):
    """A pipeline child is already tracked and alive."""


class SignalError(PipewatchError):
    """A termination signal could not be delivered to a process."""


class NotificationError(PipewatchError):
    """A notification could not be delivered."""

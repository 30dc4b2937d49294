"""Error kinds raised by the fleet core.

Connect and command failures are retried by the command executor before
they surface; everything else is a caller or precondition error and is
raised immediately.
"""

from __future__ import annotations


class FleetError(Exception):
    """Base error for fleet operations."""

    def __init__(self, message: str, device_id: str | None = None) -> None:
        super().__init__(message)
        self.device_id = device_id


class UnknownDevice(FleetError):
    """Raised when a device id is not in the board list."""


class ConnectFailure(FleetError):
    """Raised when the SSH handshake fails or times out."""


class CommandFailure(FleetError):
    """Raised when a remote command exits non-zero or the transport drops."""

    def __init__(
        self,
        message: str,
        device_id: str | None = None,
        command: str = "",
        exit_code: int | None = None,
        output: str = "",
    ) -> None:
        super().__init__(message, device_id)
        self.command = command
        self.exit_code = exit_code
        self.output = output


class NotInitialized(FleetError):
    """Raised when a write is attempted before baseline init completed."""


class InvalidValue(FleetError):
    """Raised for a non-numeric or otherwise unusable parameter value."""


class InvalidMode(InvalidValue):
    """Raised for an unrecognised generation mode."""


class PowerCycleFailure(FleetError):
    """Raised when a power-port command itself fails."""

"""Error taxonomy for per-host failures and run-level faults."""

from enum import Enum
from typing import Optional


class Stage(Enum):
    """Lifecycle stage at which a host failed."""

    CONNECT = "connect"
    AUTH = "auth"
    PROTOCOL = "protocol"
    LOCAL_IO = "local_io"


class HostError(Exception):
    """Failure confined to a single host.

    Instances are never raised past the executor boundary; they travel as
    data inside a CompletionEvent.
    """

    stage: Stage

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HostError):
            return NotImplemented
        return type(self) is type(other) and self.message == other.message

    def __hash__(self) -> int:
        return hash((type(self), self.message))


class ConnectError(HostError):
    """TCP connect, DNS or SSH handshake failed or timed out."""

    stage = Stage.CONNECT


class AuthError(HostError):
    """The remote rejected the credentials."""

    stage = Stage.AUTH


class ProtocolError(HostError):
    """Channel open, exec or transfer failed after authentication."""

    stage = Stage.PROTOCOL


class LocalIOError(HostError):
    """The local source file could not be stat'ed, opened or read."""

    stage = Stage.LOCAL_IO


class SchedulerError(RuntimeError):
    """A completion event could not be delivered to the sequencer."""


class SequencerError(RuntimeError):
    """The one-event-per-host guarantee was broken."""


class ConfigError(ValueError):
    """Invalid host inventory or command-line host options."""

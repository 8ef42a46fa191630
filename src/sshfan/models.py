"""sshfan data models."""

from dataclasses import dataclass
from typing import Any, Union

from sshfan.errors import HostError, Stage

DEFAULT_PORT = 22
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class HostSpec:
    """A resolved connection target and its position in the input list."""

    host: str
    index: int
    port: int = DEFAULT_PORT
    username: str = "root"
    password: str = ""
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        """Validate host configuration."""
        if not self.host:
            raise ValueError("Host address is required")
        if self.index < 0:
            raise ValueError("Host index must be non-negative")
        if not 0 <= self.port <= 65535:
            raise ValueError(f"Port must be in the range [0, 65535], got {self.port}")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive, got {self.timeout}")

    @property
    def address(self) -> str:
        """Return the ``host:port`` form used in output."""
        return f"{self.host}:{self.port}"

    def to_dict(self) -> dict[str, Any]:
        """Convert host to dictionary, leaving out the password."""
        return {
            "index": self.index,
            "host": self.host,
            "port": self.port,
            "username": self.username,
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class RunCommand:
    """Run a shell command on every host."""

    command: str

    def __post_init__(self) -> None:
        if not self.command:
            raise ValueError("Command is required")


@dataclass(frozen=True)
class SendFile:
    """Upload one local file to the same path on every host."""

    local_path: str
    remote_path: str

    def __post_init__(self) -> None:
        if not self.local_path:
            raise ValueError("Local path is required")
        if not self.remote_path:
            raise ValueError("Remote path is required")


Operation = Union[RunCommand, SendFile]


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of a remote command."""

    exit_status: int
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok" if self.ok else "error",
            "exit_status": self.exit_status,
            "stdout": self.stdout.decode("utf-8", errors="replace"),
            "stderr": self.stderr.decode("utf-8", errors="replace"),
        }


@dataclass(frozen=True)
class TransferComplete:
    """A file upload that finished all shutdown phases."""

    remote_path: str
    size: int

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "remote_path": self.remote_path,
            "size": self.size,
        }


@dataclass(frozen=True)
class Failure:
    """A host that did not get through its operation."""

    stage: Stage
    message: str

    @property
    def ok(self) -> bool:
        return False

    @classmethod
    def from_error(cls, error: HostError) -> "Failure":
        return cls(stage=error.stage, message=error.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "error",
            "stage": self.stage.value,
            "message": self.message,
        }


Outcome = Union[CommandResult, TransferComplete, Failure]


@dataclass(frozen=True)
class CompletionEvent:
    """Result of one host's run, tagged with its input index."""

    index: int
    host: HostSpec
    result: Union[CommandResult, TransferComplete, HostError]

    @property
    def outcome(self) -> Outcome:
        """Return the result as an Outcome, turning errors into a Failure."""
        if isinstance(self.result, HostError):
            return Failure.from_error(self.result)
        return self.result

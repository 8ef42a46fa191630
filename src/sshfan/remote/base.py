"""Base remote session interface."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sshfan.models import HostSpec


class Session(ABC):
    """An open, possibly authenticated, transport to one host."""

    @abstractmethod
    def lift_timeout(self) -> None:
        """Remove the connect deadline for everything that follows."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Tear down the transport."""
        pass


class CommandChannel(ABC):
    """A channel that runs one remote command."""

    @abstractmethod
    def set_env(self, name: str, value: str) -> None:
        """Request an environment variable for the command.

        Must be called before ``exec``. Servers are free to refuse.
        """
        pass

    @abstractmethod
    def exec(self, command: str) -> None:
        """Start the command."""
        pass

    @abstractmethod
    def read_stdout(self, size: int) -> bytes:
        """Read up to ``size`` bytes of standard output, ``b""`` at EOF."""
        pass

    @abstractmethod
    def read_stderr(self, size: int) -> bytes:
        """Read up to ``size`` bytes of standard error, ``b""`` at EOF."""
        pass

    @abstractmethod
    def wait_close(self) -> None:
        """Block until the remote side has closed the channel."""
        pass

    @abstractmethod
    def exit_status(self) -> int:
        """Return the exit status reported by the remote command."""
        pass

    @abstractmethod
    def close(self) -> None:
        pass


class UploadStream(ABC):
    """A write stream for one file whose size and mode were declared up front.

    After the data is written the stream is shut down in four phases:
    ``send_eof``, ``wait_eof``, ``close``, ``wait_close``.
    """

    @abstractmethod
    def write(self, data: bytes) -> None:
        pass

    @abstractmethod
    def send_eof(self) -> None:
        """Signal that all file data has been written."""
        pass

    @abstractmethod
    def wait_eof(self) -> None:
        """Wait for the remote side to acknowledge end of data."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Request channel close."""
        pass

    @abstractmethod
    def wait_close(self) -> None:
        """Confirm the remote side finished cleanly once the channel is closed."""
        pass


class RemoteSessionProvider(ABC):
    """Opens sessions and channels on remote hosts.

    Implementations raise the ``sshfan.errors.HostError`` subclass matching
    the failing stage: ``ConnectError`` from ``connect``, ``AuthError`` from
    ``authenticate`` and ``ProtocolError`` from channel operations.
    """

    @abstractmethod
    def connect(self, host: "HostSpec") -> Session:
        """Open a transport and complete the protocol handshake.

        Args:
            host: Target host. Its timeout bounds connect and handshake.

        Returns:
            An unauthenticated session.
        """
        pass

    @abstractmethod
    def authenticate(self, session: Session, username: str, password: str) -> None:
        """Authenticate the session with a username and password.

        Args:
            session: Session returned by ``connect``.
            username: Login name.
            password: Password for the login name.
        """
        pass

    @abstractmethod
    def open_command(self, session: Session) -> CommandChannel:
        """Open a channel for running a command."""
        pass

    @abstractmethod
    def open_upload(
        self, session: Session, path: str, mode: int, size: int
    ) -> UploadStream:
        """Open an upload stream for a single file.

        Args:
            session: Authenticated session.
            path: Remote destination path.
            mode: Permission bits for the remote file.
            size: Exact number of bytes that will be written.

        Returns:
            An UploadStream ready for ``write``.
        """
        pass

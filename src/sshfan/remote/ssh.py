"""SSH session provider built on paramiko.

Commands run on a session channel. Uploads speak the sink side of the SCP
protocol (``scp -t``) on a second session channel, so the remote host only
needs an ``scp`` binary, not an SFTP subsystem.
"""

import logging
import posixpath
import shlex
import socket
import time
from contextlib import contextmanager
from typing import Iterator, Optional

import paramiko

from sshfan.errors import AuthError, ConnectError, ProtocolError
from sshfan.models import HostSpec
from sshfan.remote.base import (
    CommandChannel,
    RemoteSessionProvider,
    Session,
    UploadStream,
)

logger = logging.getLogger(__name__)

# Shortest budget handed to paramiko once the deadline has nearly passed.
MIN_PHASE_TIMEOUT = 0.1

SCP_OK = b"\x00"


@contextmanager
def _protocol_errors(action: str) -> Iterator[None]:
    """Re-raise transport-level failures as ProtocolError."""
    try:
        yield
    except (paramiko.SSHException, OSError, EOFError) as e:
        raise ProtocolError(f"{action} failed: {e}", e) from e


class SSHSession(Session):
    """A paramiko transport plus the deadline for its connect phase."""

    def __init__(self, host: HostSpec, sock: socket.socket, transport: paramiko.Transport):
        self.host = host
        self.sock = sock
        self.transport = transport
        self.deadline: Optional[float] = time.monotonic() + host.timeout

    def remaining(self) -> float:
        """Seconds left before the connect deadline."""
        if self.deadline is None:
            raise RuntimeError("timeout already lifted")
        return max(self.deadline - time.monotonic(), MIN_PHASE_TIMEOUT)

    def lift_timeout(self) -> None:
        self.deadline = None

    def close(self) -> None:
        self.transport.close()
        self.sock.close()


class SSHCommandChannel(CommandChannel):
    """A paramiko session channel running one command."""

    def __init__(self, channel: paramiko.Channel):
        self._channel = channel
        self._exit_status: Optional[int] = None

    def set_env(self, name: str, value: str) -> None:
        with _protocol_errors(f"setting {name}"):
            self._channel.set_environment_variable(name, value)

    def exec(self, command: str) -> None:
        with _protocol_errors("exec"):
            self._channel.exec_command(command)

    def read_stdout(self, size: int) -> bytes:
        with _protocol_errors("reading stdout"):
            return self._channel.recv(size)

    def read_stderr(self, size: int) -> bytes:
        with _protocol_errors("reading stderr"):
            return self._channel.recv_stderr(size)

    def wait_close(self) -> None:
        # Returns once the server sent exit-status or closed the channel.
        with _protocol_errors("waiting for channel close"):
            self._exit_status = self._channel.recv_exit_status()

    def exit_status(self) -> int:
        if self._exit_status is None:
            raise ProtocolError("exit status requested before channel closed")
        return self._exit_status

    def close(self) -> None:
        self._channel.close()


class SCPUploadStream(UploadStream):
    """Writes one file into a remote ``scp -t`` sink."""

    def __init__(self, channel: paramiko.Channel, path: str):
        self._channel = channel
        self.path = path
        self._exit_status: Optional[int] = None

    def _read_ack(self, action: str) -> None:
        reply = self._channel.recv(1)
        if reply == SCP_OK:
            return
        if not reply:
            raise ProtocolError(f"{action}: scp closed the channel")

        # 0x01 is a warning and 0x02 a fatal error, both followed by a message line
        message = b""
        while not message.endswith(b"\n"):
            chunk = self._channel.recv(1)
            if not chunk:
                break
            message += chunk
        text = message.decode("utf-8", errors="replace").strip()
        raise ProtocolError(f"{action}: scp error: {text or repr(reply)}")

    def start(self, mode: int, size: int) -> None:
        """Send the file header and wait for the sink to accept it."""
        with _protocol_errors("starting scp"):
            self._read_ack("starting scp")
            name = posixpath.basename(self.path) or "upload"
            header = f"C{mode & 0o7777:04o} {size} {name}\n"
            self._channel.sendall(header.encode("utf-8"))
            self._read_ack("sending scp header")

    def write(self, data: bytes) -> None:
        with _protocol_errors("writing file data"):
            self._channel.sendall(data)

    def send_eof(self) -> None:
        with _protocol_errors("sending end of data"):
            self._channel.sendall(SCP_OK)
            self._read_ack("finishing file")
            self._channel.shutdown_write()

    def wait_eof(self) -> None:
        with _protocol_errors("waiting for end of data"):
            while self._channel.recv(1024):
                pass
            # Read before close(): a locally closed channel reports -1.
            self._exit_status = self._channel.recv_exit_status()

    def close(self) -> None:
        with _protocol_errors("closing upload channel"):
            self._channel.close()

    def wait_close(self) -> None:
        status = self._exit_status
        if status is None:
            raise ProtocolError("upload channel closed before scp reported its exit status")
        if status > 0:
            raise ProtocolError(f"scp exited with {status}")


class SSHSessionProvider(RemoteSessionProvider):
    """Opens sessions over SSH with password authentication.

    Host keys are not verified.
    """

    def connect(self, host: HostSpec) -> SSHSession:
        """Open a TCP connection and complete the SSH handshake."""
        try:
            sock = socket.create_connection((host.host, host.port), timeout=host.timeout)
        except OSError as e:
            raise ConnectError(f"connect to {host.address} failed: {e}", e) from e

        logger.debug("Connected to %s, starting handshake", host.address)
        try:
            transport = paramiko.Transport(sock)
        except (paramiko.SSHException, OSError) as e:
            sock.close()
            raise ConnectError(f"handshake with {host.address} failed: {e}", e) from e

        session = SSHSession(host, sock, transport)
        try:
            transport.banner_timeout = session.remaining()
            transport.handshake_timeout = session.remaining()
            transport.start_client(timeout=session.remaining())
        except (paramiko.SSHException, OSError, EOFError) as e:
            session.close()
            raise ConnectError(f"handshake with {host.address} failed: {e}", e) from e

        return session

    def authenticate(self, session: Session, username: str, password: str) -> None:
        """Authenticate with a password inside the remaining connect budget."""
        ssh = _ssh_session(session)
        ssh.transport.auth_timeout = ssh.remaining()
        try:
            ssh.transport.auth_password(username, password)
        except paramiko.AuthenticationException as e:
            raise AuthError(f"authentication as {username} failed: {e}", e) from e
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise ConnectError(
                f"connection to {ssh.host.address} lost during authentication: {e}", e
            ) from e

        logger.debug("Authenticated to %s as %s", ssh.host.address, username)

    def open_command(self, session: Session) -> SSHCommandChannel:
        ssh = _ssh_session(session)
        with _protocol_errors("opening command channel"):
            channel = ssh.transport.open_session()
            channel.settimeout(None)
        return SSHCommandChannel(channel)

    def open_upload(
        self, session: Session, path: str, mode: int, size: int
    ) -> SCPUploadStream:
        ssh = _ssh_session(session)
        with _protocol_errors("opening upload channel"):
            channel = ssh.transport.open_session()
            channel.settimeout(None)
            channel.exec_command(f"scp -t {shlex.quote(path)}")

        stream = SCPUploadStream(channel, path)
        try:
            stream.start(mode, size)
        except ProtocolError:
            channel.close()
            raise
        return stream


def _ssh_session(session: Session) -> SSHSession:
    if not isinstance(session, SSHSession):
        raise TypeError(f"expected SSHSession, got {type(session).__name__}")
    return session

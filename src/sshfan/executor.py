"""Per-host operation execution."""

import logging
import os
import stat
from concurrent.futures import ThreadPoolExecutor
from typing import BinaryIO, Callable, Union

from sshfan.errors import HostError, LocalIOError, ProtocolError
from sshfan.models import (
    CommandResult,
    HostSpec,
    Operation,
    RunCommand,
    SendFile,
    TransferComplete,
)
from sshfan.remote.base import (
    CommandChannel,
    RemoteSessionProvider,
    Session,
    UploadStream,
)

logger = logging.getLogger(__name__)

# Bytes kept per output stream; anything beyond is read and dropped.
OUTPUT_LIMIT = 1024 * 1024
CHUNK_SIZE = 32 * 1024

HOST_ENV = "SSHFAN_HOST"
PORT_ENV = "SSHFAN_PORT"

HostResult = Union[CommandResult, TransferComplete, HostError]


def drain(read: Callable[[int], bytes], limit: int, chunk_size: int = CHUNK_SIZE) -> bytes:
    """Read a stream to EOF, keeping at most ``limit`` bytes.

    Args:
        read: Function returning up to n bytes, or ``b""`` at EOF.
        limit: Maximum number of bytes to keep.
        chunk_size: Bytes requested per read.

    Returns:
        The first ``limit`` bytes of the stream.
    """
    kept = bytearray()
    while True:
        data = read(chunk_size)
        if not data:
            break
        room = limit - len(kept)
        if room > 0:
            kept += data[:room]
    return bytes(kept)


class HostExecutor:
    """Runs one operation against one host and never raises host failures.

    Every run goes connect, authenticate, operate, close. A failure at any
    step is returned as the matching ``HostError`` instead of being raised.
    """

    def __init__(
        self,
        provider: RemoteSessionProvider,
        output_limit: int = OUTPUT_LIMIT,
        chunk_size: int = CHUNK_SIZE,
    ):
        """Initialize the executor.

        Args:
            provider: Source of sessions and channels.
            output_limit: Bytes kept per output stream.
            chunk_size: Read and write chunk size.
        """
        if output_limit < 0:
            raise ValueError(f"output_limit must be >= 0, got {output_limit}")
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be > 0, got {chunk_size}")
        self.provider = provider
        self.output_limit = output_limit
        self.chunk_size = chunk_size

    def run(self, host: HostSpec, operation: Operation) -> HostResult:
        """Execute the operation on a host.

        Args:
            host: The target host.
            operation: RunCommand or SendFile.

        Returns:
            CommandResult, TransferComplete, or the HostError that stopped it.
        """
        logger.debug("Starting %s on %s", type(operation).__name__, host.address)
        try:
            result = self._run(host, operation)
        except HostError as e:
            logger.info("%s failed at %s: %s", host.address, e.stage.value, e.message)
            return e
        except Exception as e:
            logger.warning("Unexpected error on %s", host.address, exc_info=True)
            return ProtocolError(f"unexpected error: {e}", e)

        logger.debug("Finished %s", host.address)
        return result

    def _run(
        self, host: HostSpec, operation: Operation
    ) -> Union[CommandResult, TransferComplete]:
        session = self.provider.connect(host)
        try:
            self.provider.authenticate(session, host.username, host.password)
            # Only connect and authenticate are bounded; the operation may run as long as it needs.
            session.lift_timeout()

            if isinstance(operation, RunCommand):
                return self._run_command(session, host, operation)
            if isinstance(operation, SendFile):
                return self._send_file(session, operation)
            raise TypeError(f"Unsupported operation: {operation!r}")
        finally:
            self._close_session(session, host)

    def _close_session(self, session: Session, host: HostSpec) -> None:
        try:
            session.close()
        except Exception as e:
            logger.debug("Error closing session to %s: %s", host.address, e)

    def _run_command(
        self, session: Session, host: HostSpec, operation: RunCommand
    ) -> CommandResult:
        channel = self.provider.open_command(session)
        try:
            for name, value in ((HOST_ENV, host.host), (PORT_ENV, str(host.port))):
                try:
                    channel.set_env(name, value)
                except HostError as e:
                    logger.debug("%s refused %s: %s", host.address, name, e.message)

            channel.exec(operation.command)
            stdout, stderr = self._capture(channel)
            channel.wait_close()
            return CommandResult(
                exit_status=channel.exit_status(),
                stdout=stdout,
                stderr=stderr,
            )
        finally:
            channel.close()

    def _capture(self, channel: CommandChannel) -> tuple[bytes, bytes]:
        """Drain stdout and stderr concurrently.

        A remote process blocked writing one stream must not stall reading
        of the other, so each stream gets its own thread.
        """
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="sshfan-capture") as pool:
            stdout = pool.submit(drain, channel.read_stdout, self.output_limit, self.chunk_size)
            stderr = pool.submit(drain, channel.read_stderr, self.output_limit, self.chunk_size)
            return stdout.result(), stderr.result()

    def _send_file(self, session: Session, operation: SendFile) -> TransferComplete:
        local_path = operation.local_path
        try:
            st = os.stat(local_path)
            source = open(local_path, "rb")
        except OSError as e:
            raise LocalIOError(f"cannot open {local_path}: {e}", e) from e

        size = st.st_size
        mode = stat.S_IMODE(st.st_mode)

        with source:
            stream = self.provider.open_upload(session, operation.remote_path, mode, size)
            try:
                self._copy(source, stream, local_path, size)
                stream.send_eof()
                stream.wait_eof()
            except Exception:
                self._abort_upload(stream, local_path)
                raise
            stream.close()
            stream.wait_close()

        return TransferComplete(remote_path=operation.remote_path, size=size)

    def _copy(self, source: BinaryIO, stream: UploadStream, local_path: str, size: int) -> None:
        sent = 0
        while True:
            try:
                chunk = source.read(self.chunk_size)
            except OSError as e:
                raise LocalIOError(f"cannot read {local_path}: {e}", e) from e
            if not chunk:
                break
            if sent + len(chunk) > size:
                raise LocalIOError(f"{local_path} grew during upload")
            stream.write(chunk)
            sent += len(chunk)

        if sent != size:
            raise LocalIOError(
                f"{local_path} shrank during upload ({sent} of {size} bytes)"
            )

    def _abort_upload(self, stream: UploadStream, local_path: str) -> None:
        try:
            stream.close()
        except Exception as e:
            logger.debug("Error closing upload of %s: %s", local_path, e)

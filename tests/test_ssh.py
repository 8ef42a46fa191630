"""Tests for the paramiko session provider."""

import socket
import threading
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from sshfan.errors import AuthError, ConnectError, ProtocolError
from sshfan.models import HostSpec
from sshfan.remote.ssh import (
    SCPUploadStream,
    SSHCommandChannel,
    SSHSession,
    SSHSessionProvider,
)


@pytest.fixture
def host():
    return HostSpec(host="db01", index=0, port=2222, username="admin", password="pw", timeout=5.0)


@pytest.fixture
def session(host):
    return SSHSession(host, MagicMock(spec=socket.socket), MagicMock(spec=paramiko.Transport))


def _byte_stream(data):
    """recv side effect that returns ``data`` one byte at a time."""
    return [data[i:i + 1] for i in range(len(data))]


class TestConnect:
    """Tests for opening sessions."""

    @pytest.mark.parametrize(
        "error", [ConnectionRefusedError("refused"), socket.timeout("timed out"), socket.gaierror("dns")]
    )
    def test_socket_failures_are_connect_errors(self, host, error):
        with patch("sshfan.remote.ssh.socket.create_connection", side_effect=error) as create:
            with pytest.raises(ConnectError):
                SSHSessionProvider().connect(host)
        create.assert_called_once_with(("db01", 2222), timeout=5.0)

    def test_handshake_failure_closes_transport(self, host):
        """Test that a failed handshake is a ConnectError and tears down the transport."""
        sock = MagicMock()
        transport = MagicMock()
        transport.start_client.side_effect = paramiko.SSHException("Negotiation timed out.")

        with patch("sshfan.remote.ssh.socket.create_connection", return_value=sock), \
                patch("sshfan.remote.ssh.paramiko.Transport", return_value=transport):
            with pytest.raises(ConnectError, match="handshake"):
                SSHSessionProvider().connect(host)

        transport.close.assert_called_once()
        sock.close.assert_called_once()

    def test_handshake_bounded_by_host_timeout(self, host):
        sock = MagicMock()
        transport = MagicMock()

        with patch("sshfan.remote.ssh.socket.create_connection", return_value=sock), \
                patch("sshfan.remote.ssh.paramiko.Transport", return_value=transport):
            session = SSHSessionProvider().connect(host)

        timeout = transport.start_client.call_args.kwargs["timeout"]
        assert 0 < timeout <= 5.0
        assert session.transport is transport


class TestAuthenticate:
    """Tests for password authentication."""

    def test_success_uses_remaining_budget(self, session):
        SSHSessionProvider().authenticate(session, "admin", "pw")

        session.transport.auth_password.assert_called_once_with("admin", "pw")
        assert 0 < session.transport.auth_timeout <= 5.0

    def test_rejected_credentials(self, session):
        session.transport.auth_password.side_effect = paramiko.AuthenticationException("denied")
        with pytest.raises(AuthError, match="admin"):
            SSHSessionProvider().authenticate(session, "admin", "bad")

    def test_bad_auth_type_is_auth_error(self, session):
        session.transport.auth_password.side_effect = paramiko.BadAuthenticationType(
            "Bad authentication type", ["publickey"]
        )
        with pytest.raises(AuthError):
            SSHSessionProvider().authenticate(session, "admin", "pw")

    def test_lost_connection_is_connect_error(self, session):
        session.transport.auth_password.side_effect = EOFError()
        with pytest.raises(ConnectError):
            SSHSessionProvider().authenticate(session, "admin", "pw")

    def test_lift_timeout(self, session):
        session.lift_timeout()
        assert session.deadline is None

    def test_close_tears_down_transport_and_socket(self, session):
        session.close()
        session.transport.close.assert_called_once()
        session.sock.close.assert_called_once()


class TestCommandChannel:
    """Tests for SSHCommandChannel."""

    def test_open_command_has_no_timeout(self, session):
        channel = MagicMock()
        session.transport.open_session.return_value = channel

        SSHSessionProvider().open_command(session)

        channel.settimeout.assert_called_once_with(None)

    def test_open_command_failure(self, session):
        session.transport.open_session.side_effect = paramiko.ChannelException(2, "no")
        with pytest.raises(ProtocolError):
            SSHSessionProvider().open_command(session)

    def test_reads_and_exit_status(self):
        channel = MagicMock()
        channel.recv.return_value = b"out"
        channel.recv_stderr.return_value = b"err"
        channel.recv_exit_status.return_value = 7
        command = SSHCommandChannel(channel)

        command.set_env("SSHFAN_HOST", "db01")
        command.exec("uptime")
        assert command.read_stdout(10) == b"out"
        assert command.read_stderr(10) == b"err"
        command.wait_close()

        channel.set_environment_variable.assert_called_once_with("SSHFAN_HOST", "db01")
        channel.exec_command.assert_called_once_with("uptime")
        assert command.exit_status() == 7

    def test_exit_status_before_close(self):
        with pytest.raises(ProtocolError):
            SSHCommandChannel(MagicMock()).exit_status()

    def test_exec_failure(self):
        channel = MagicMock()
        channel.exec_command.side_effect = paramiko.SSHException("Channel closed.")
        with pytest.raises(ProtocolError, match="exec"):
            SSHCommandChannel(channel).exec("true")


class TestSCPUpload:
    """Tests for the SCP upload stream."""

    def test_open_upload_sends_header(self, session):
        """Test that the sink is started with the declared mode and size."""
        channel = MagicMock()
        channel.recv.side_effect = [b"\x00", b"\x00"]
        session.transport.open_session.return_value = channel

        stream = SSHSessionProvider().open_upload(session, "/etc/app conf", 0o640, 12)

        channel.exec_command.assert_called_once_with("scp -t '/etc/app conf'")
        channel.sendall.assert_called_once_with(b"C0640 12 app conf\n")
        assert stream.path == "/etc/app conf"

    def test_open_upload_rejected(self, session):
        """Test that a sink error closes the channel and reports the message."""
        channel = MagicMock()
        channel.recv.side_effect = [b"\x00"] + _byte_stream(b"\x02scp: /etc: Permission denied\n")
        session.transport.open_session.return_value = channel

        with pytest.raises(ProtocolError, match="Permission denied"):
            SSHSessionProvider().open_upload(session, "/etc/app.conf", 0o644, 12)
        channel.close.assert_called_once()

    def test_sink_closed_before_ack(self, session):
        channel = MagicMock()
        channel.recv.side_effect = [b""]
        session.transport.open_session.return_value = channel

        with pytest.raises(ProtocolError, match="closed"):
            SSHSessionProvider().open_upload(session, "/tmp/x", 0o644, 1)

    def test_shutdown_phases(self):
        channel = MagicMock()
        channel.recv.side_effect = [b"\x00", b""]
        channel.recv_exit_status.return_value = 0
        stream = SCPUploadStream(channel, "/tmp/x")

        stream.write(b"data")
        stream.send_eof()
        stream.wait_eof()
        stream.close()
        stream.wait_close()

        assert channel.sendall.call_args_list[0].args == (b"data",)
        assert channel.sendall.call_args_list[1].args == (b"\x00",)
        channel.shutdown_write.assert_called_once()
        channel.close.assert_called_once()

    def test_write_failure(self):
        channel = MagicMock()
        channel.sendall.side_effect = OSError("Socket is closed")
        with pytest.raises(ProtocolError, match="writing"):
            SCPUploadStream(channel, "/tmp/x").write(b"data")

    def test_final_ack_failure(self):
        channel = MagicMock()
        channel.recv.side_effect = _byte_stream(b"\x01scp: disk full\n")
        with pytest.raises(ProtocolError, match="disk full"):
            SCPUploadStream(channel, "/tmp/x").send_eof()
        channel.shutdown_write.assert_not_called()

    def test_nonzero_scp_exit(self):
        channel = MagicMock()
        channel.recv.return_value = b""
        channel.recv_exit_status.return_value = 1
        stream = SCPUploadStream(channel, "/tmp/x")
        stream.wait_eof()
        stream.close()
        with pytest.raises(ProtocolError, match="exited with 1"):
            stream.wait_close()

    def test_wait_close_without_exit_status(self):
        with pytest.raises(ProtocolError, match="exit status"):
            SCPUploadStream(MagicMock(), "/tmp/x").wait_close()


def _open_channel():
    """A real paramiko channel that is open and has seen the remote EOF."""
    channel = paramiko.Channel(0)
    channel.transport = MagicMock()
    channel.active = True
    channel._handle_eof(None)
    return channel


def _deliver_exit_status(channel, status):
    message = paramiko.Message()
    message.add_string("exit-status")
    message.add_boolean(False)
    message.add_int(status)
    message.rewind()
    channel._handle_request(message)


class TestSCPExitStatus:
    """Tests for reading the scp exit status on a real paramiko channel."""

    @pytest.mark.parametrize("status", [0, 1])
    def test_status_arriving_after_eof_is_seen(self, status):
        """Test that a status sent after the remote EOF still decides the upload."""
        channel = _open_channel()
        stream = SCPUploadStream(channel, "/tmp/x")
        timer = threading.Timer(0.2, _deliver_exit_status, (channel, status))
        timer.start()
        try:
            stream.wait_eof()
            stream.close()
        finally:
            timer.join()

        assert channel.closed
        if status:
            with pytest.raises(ProtocolError, match="exited with 1"):
                stream.wait_close()
        else:
            stream.wait_close()

    def test_local_close_reports_no_status(self):
        """Test the paramiko behaviour the upload relies on: close() ends the wait."""
        channel = _open_channel()
        channel.close()
        assert channel.recv_exit_status() == -1

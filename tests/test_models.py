"""Tests for data models."""

import dataclasses

import pytest

from sshfan.errors import AuthError, ConnectError, LocalIOError, ProtocolError, Stage
from sshfan.models import (
    CommandResult,
    CompletionEvent,
    Failure,
    HostSpec,
    RunCommand,
    SendFile,
    TransferComplete,
)


class TestHostSpec:
    """Tests for the HostSpec model."""

    def test_defaults(self):
        """Test creating a host with defaults."""
        host = HostSpec(host="db01", index=0)
        assert host.port == 22
        assert host.username == "root"
        assert host.password == ""
        assert host.timeout == 30.0
        assert host.address == "db01:22"

    def test_is_immutable(self):
        host = HostSpec(host="db01", index=0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            host.index = 3

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"host": "", "index": 0},
            {"host": "a", "index": -1},
            {"host": "a", "index": 0, "port": 70000},
            {"host": "a", "index": 0, "timeout": 0},
        ],
    )
    def test_invalid_hosts(self, kwargs):
        with pytest.raises(ValueError):
            HostSpec(**kwargs)

    def test_to_dict_omits_password(self):
        """Test that serialized hosts never carry the password."""
        data = HostSpec(host="db01", index=2, password="secret").to_dict()
        assert "password" not in data
        assert data["index"] == 2


class TestOperations:
    """Tests for operation models."""

    def test_run_command_requires_command(self):
        with pytest.raises(ValueError):
            RunCommand("")

    def test_send_file_requires_paths(self):
        with pytest.raises(ValueError):
            SendFile("", "/tmp/x")
        with pytest.raises(ValueError):
            SendFile("a.txt", "")


class TestOutcomes:
    """Tests for outcome models."""

    def test_command_result_ok(self):
        assert CommandResult(exit_status=0).ok
        assert not CommandResult(exit_status=1).ok

    def test_command_result_to_dict_decodes_output(self):
        data = CommandResult(exit_status=2, stdout=b"out", stderr=b"\xff").to_dict()
        assert data["status"] == "error"
        assert data["exit_status"] == 2
        assert data["stdout"] == "out"
        assert data["stderr"] == "�"

    def test_transfer_complete(self):
        outcome = TransferComplete(remote_path="/tmp/a", size=10)
        assert outcome.ok
        assert outcome.to_dict() == {"status": "ok", "remote_path": "/tmp/a", "size": 10}

    @pytest.mark.parametrize(
        "error, stage",
        [
            (ConnectError("x"), Stage.CONNECT),
            (AuthError("x"), Stage.AUTH),
            (ProtocolError("x"), Stage.PROTOCOL),
            (LocalIOError("x"), Stage.LOCAL_IO),
        ],
    )
    def test_failure_from_error(self, error, stage):
        """Test that each error kind maps to its stage."""
        failure = Failure.from_error(error)
        assert failure.stage == stage
        assert failure.message == "x"
        assert not failure.ok
        assert failure.to_dict()["stage"] == stage.value


class TestCompletionEvent:
    """Tests for CompletionEvent."""

    def test_outcome_passes_success_through(self):
        result = CommandResult(exit_status=0)
        event = CompletionEvent(index=0, host=HostSpec(host="a", index=0), result=result)
        assert event.outcome is result

    def test_outcome_converts_error(self):
        event = CompletionEvent(
            index=0, host=HostSpec(host="a", index=0), result=AuthError("denied")
        )
        assert event.outcome == Failure(stage=Stage.AUTH, message="denied")

"""Remote session backends."""

from sshfan.remote.base import (
    CommandChannel,
    RemoteSessionProvider,
    Session,
    UploadStream,
)
from sshfan.remote.ssh import SSHSessionProvider

__all__ = [
    "CommandChannel",
    "RemoteSessionProvider",
    "Session",
    "UploadStream",
    "SSHSessionProvider",
]

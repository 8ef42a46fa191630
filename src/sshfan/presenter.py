"""Rendering of per-host outcomes."""

import json
from typing import Optional

from rich.console import Console
from rich.text import Text

from sshfan.models import CommandResult, Failure, HostSpec, Outcome, TransferComplete


class OutcomePresenter:
    """Prints one block per host and keeps a success/failure tally.

    Called by the sequencer as ``presenter(host, outcome)``.
    """

    def __init__(self, console: Optional[Console] = None, json_output: bool = False):
        self.console = console or Console()
        self.json_output = json_output
        self.succeeded = 0
        self.failed = 0

    @property
    def all_ok(self) -> bool:
        return self.failed == 0

    def __call__(self, host: HostSpec, outcome: Outcome) -> None:
        if outcome.ok:
            self.succeeded += 1
        else:
            self.failed += 1

        if self.json_output:
            data = {"index": host.index, "host": host.host, "port": host.port}
            data.update(outcome.to_dict())
            self.console.print_json(json.dumps(data), indent=None)
            return

        self.console.print(self._header(host, outcome), soft_wrap=True)
        if isinstance(outcome, CommandResult):
            self._print_output(outcome.stdout)
            self._print_output(outcome.stderr)

    def _header(self, host: HostSpec, outcome: Outcome) -> Text:
        if isinstance(outcome, CommandResult):
            if outcome.ok:
                return Text(f"[{host.address} OK]", style="green")
            return Text(f"[{host.address} ERROR: exit with {outcome.exit_status}]", style="red")
        if isinstance(outcome, TransferComplete):
            return Text(
                f"[{host.address} OK] sent {outcome.size} bytes to {outcome.remote_path}",
                style="green",
            )
        if isinstance(outcome, Failure):
            return Text(
                f"[{host.address} ERROR: {outcome.stage.value}: {outcome.message}]",
                style="red",
            )
        raise TypeError(f"Unknown outcome: {outcome!r}")

    def _print_output(self, data: bytes) -> None:
        if not data:
            return
        text = data.decode("utf-8", errors="replace")
        if not text.endswith("\n"):
            text += "\n"
        self.console.print(Text(text), end="", soft_wrap=True)

    def print_summary(self) -> None:
        if self.json_output:
            return
        style = "green" if self.all_ok else "red"
        self.console.print(
            Text(f"{self.succeeded} succeeded, {self.failed} failed", style=style),
            soft_wrap=True,
        )

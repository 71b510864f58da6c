"""TUI Dashboard for zipcast."""

from dataclasses import dataclass

from textual.app import App, ComposeResult
from textual.message import Message
from textual.reactive import reactive
from textual.widgets import Footer, Header, Label, RichLog, Static
from textual.worker import Worker

from .config import DeploymentRequest
from .errors import ExtractionError
from .executor import Executor
from .pipeline import HostOutcome, PipelineState, SessionOpener
from .session import RemoteSession

STATUS_ICONS = {
    PipelineState.INIT: ("○", "dim"),
    PipelineState.CONNECTED: ("◐", "yellow"),
    PipelineState.MIRRORED: ("◑", "yellow"),
    PipelineState.CONFIG_SENT: ("◒", "yellow"),
    PipelineState.INSTALLED: ("◕", "yellow"),
    PipelineState.DONE: ("●", "green"),
    PipelineState.FAILED: ("✗", "red"),
}


def panel_id(host: str) -> str:
    """Widget ids can't contain ':' or '.'."""
    return "".join(c if c.isalnum() else "-" for c in host)


class HostPanel(Static):
    """A panel displaying output for a single host."""

    status: reactive[PipelineState] = reactive(PipelineState.INIT)

    def __init__(self, host: str, user: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.host = host
        self.user = user
        self.key = panel_id(host)

    def compose(self) -> ComposeResult:
        yield Label(self._get_header(), id=f"header-{self.key}")
        yield RichLog(
            id=f"log-{self.key}",
            highlight=True,
            markup=True,
            wrap=True,
            auto_scroll=True,
        )

    def _get_header(self) -> str:
        icon, color = STATUS_ICONS.get(self.status, ("?", "white"))
        return (
            f"[{color}]{icon}[/] [{color}][bold]{self.host}[/bold][/] "
            f"[{color}]{self.user} · {self.status.value}[/]"
        )

    def watch_status(self, status: PipelineState) -> None:
        """Update header when status changes."""
        if not self.is_mounted:
            return
        header = self.query_one(f"#header-{self.key}", Label)
        header.update(self._get_header())

    def append_output(self, line: str) -> None:
        """Append a line of output to this panel."""
        log = self.query_one(f"#log-{self.key}", RichLog)
        if line.startswith("$ "):
            log.write(f"[bold cyan]{line}[/bold cyan]")
        elif line.startswith("ERROR:"):
            log.write(f"[bold red]{line}[/bold red]")
        elif line.startswith("Mirrored ") or line.startswith("Connected "):
            log.write(f"[green]{line}[/green]")
        else:
            log.write(line)


class StatusBar(Static):
    """Bottom status bar showing overall progress."""

    completed: reactive[int] = reactive(0)
    failed: reactive[int] = reactive(0)
    total: reactive[int] = reactive(0)
    running: reactive[bool] = reactive(True)

    def render(self) -> str:
        status = "Running..." if self.running else "Complete"
        return (
            f"Progress: {self.completed}/{self.total} hosts finished "
            f"({self.failed} failed) | {status} | Press 'q' to quit"
        )


@dataclass
class HostOutput(Message):
    """Message for host output."""
    host: str
    line: str


@dataclass
class HostStatusChange(Message):
    """Message for host status change."""
    host: str
    status: PipelineState


class Dashboard(App):
    """Main TUI Dashboard application."""

    CSS = """
    Screen {
        layout: grid;
        grid-size: 2;
        grid-gutter: 1;
    }

    HostPanel {
        border: solid $primary;
        height: 100%;
        min-height: 10;
    }

    HostPanel Label {
        dock: top;
        padding: 0 1;
        background: $surface;
    }

    HostPanel RichLog {
        height: 1fr;
        padding: 0 1;
    }

    StatusBar {
        dock: bottom;
        height: 1;
        background: $surface;
        padding: 0 1;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("escape", "quit", "Quit"),
    ]

    def __init__(
        self,
        request: DeploymentRequest,
        enable_logging: bool = True,
        open_session: SessionOpener = RemoteSession.open,
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.request = request
        self.enable_logging = enable_logging
        self.open_session = open_session
        self.panels: dict[str, HostPanel] = {}
        self.executor: Executor | None = None
        self.outcomes: list[HostOutcome] = []
        self.extraction_error: ExtractionError | None = None
        self._worker: Worker | None = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)

        # Create panels for each host
        for address in self.request.hosts:
            host = str(address)
            panel = HostPanel(
                host,
                self.request.username,
                id=f"panel-{panel_id(host)}",
            )
            self.panels[host] = panel
            yield panel

        yield StatusBar(id="status-bar")
        yield Footer()

    def on_mount(self) -> None:
        """Start execution when the app mounts."""
        status_bar = self.query_one("#status-bar", StatusBar)
        status_bar.total = len(self.request.hosts)

        # Create executor with callbacks
        self.executor = Executor(
            self.request,
            on_output=self._on_output,
            on_status=self._on_status,
            on_outcome=self.outcomes.append,
            enable_logging=self.enable_logging,
            open_session=self.open_session,
        )

        # Start execution using Textual's worker system
        self._worker = self.run_worker(self._run_execution(), exclusive=True, thread=True)

    async def _run_execution(self) -> None:
        """Run the executor; outcomes are collected as each host finishes."""
        if not self.executor:
            return
        try:
            await self.executor.run_all()
        except ExtractionError as e:
            # No host was contacted; show the error on every panel
            self.extraction_error = e
            for host in self.panels:
                self._on_output(host, f"ERROR: {e}")
                self._on_status(host, PipelineState.FAILED)

    def on_worker_state_changed(self, event: Worker.StateChanged) -> None:
        """Handle worker completion."""
        if event.worker == self._worker and event.state == event.worker.state.SUCCESS:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.running = False

    def _on_output(self, host: str, line: str) -> None:
        """Handle output from a host - posts message to main thread."""
        self.post_message(HostOutput(host, line))

    def _on_status(self, host: str, status: PipelineState) -> None:
        """Handle status change for a host - posts message to main thread."""
        self.post_message(HostStatusChange(host, status))

    def on_host_output(self, message: HostOutput) -> None:
        """Handle HostOutput message in main thread."""
        if message.host in self.panels:
            self.panels[message.host].append_output(message.line)

    def on_host_status_change(self, message: HostStatusChange) -> None:
        """Handle HostStatusChange message in main thread."""
        if message.host in self.panels:
            self.panels[message.host].status = message.status

        # Update completed count
        if message.status.terminal:
            status_bar = self.query_one("#status-bar", StatusBar)
            status_bar.completed += 1
            if message.status == PipelineState.FAILED:
                status_bar.failed += 1

    async def action_quit(self) -> None:
        """Quit the application."""
        if self._worker and self._worker.is_running:
            self._worker.cancel()
        self.exit()

    @property
    def unfinished_hosts(self) -> list[str]:
        """Hosts that never reported an outcome, e.g. after an early quit."""
        finished = {str(outcome.host) for outcome in self.outcomes}
        return [str(a) for a in self.request.hosts if str(a) not in finished]

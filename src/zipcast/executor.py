"""Fan-out deployment engine for zipcast."""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from contextlib import ExitStack
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable

from .config import DeploymentRequest, HostAddress
from .extractor import StagingTree, extract_archive
from .pipeline import (
    HostOutcome,
    HostPipeline,
    OutputCallback,
    PipelineState,
    SessionOpener,
    StatusCallback,
)
from .session import RemoteSession


@dataclass
class HostState:
    """Runtime state for a host."""

    address: HostAddress
    status: PipelineState = PipelineState.INIT
    output_lines: list[str] = field(default_factory=list)
    outcome: HostOutcome | None = None
    log_file: Path | None = None


# (outcome) -> None, called as each host finishes
OutcomeCallback = Callable[[HostOutcome], None]


class Executor:
    """Extracts the archive once, then deploys it to every host in parallel."""

    def __init__(
        self,
        request: DeploymentRequest,
        on_output: OutputCallback | None = None,
        on_status: StatusCallback | None = None,
        on_outcome: OutcomeCallback | None = None,
        enable_logging: bool = True,
        open_session: SessionOpener = RemoteSession.open,
    ):
        self.request = request
        self.on_output = on_output
        self.on_status = on_status
        self.on_outcome = on_outcome
        self.enable_logging = enable_logging
        self.open_session = open_session
        self.states: dict[str, HostState] = {}
        self.staging: StagingTree | None = None
        self._log_dir: Path | None = None

    @property
    def log_dir(self) -> Path | None:
        return self._log_dir

    def _setup_logging(self) -> None:
        """Set up log directory with timestamp."""
        if not self.enable_logging:
            return
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._log_dir = self.request.log_dir / timestamp
        self._log_dir.mkdir(parents=True, exist_ok=True)

        # Copy the source config file to the log directory
        source = self.request.source_path
        if source and source.exists():
            shutil.copy(source, self._log_dir / f"config{source.suffix}")

    def _emit_output(self, host: str, line: str) -> None:
        """Emit output line for a host."""
        if host in self.states:
            state = self.states[host]
            state.output_lines.append(line)

            # Write to log file
            if state.log_file:
                with open(state.log_file, "a") as f:
                    f.write(line + "\n")

        if self.on_output:
            self.on_output(host, line)

    def _emit_status(self, host: str, status: PipelineState) -> None:
        """Emit status change for a host."""
        if host in self.states:
            self.states[host].status = status
        if self.on_status:
            self.on_status(host, status)

    async def run_all(self) -> list[HostOutcome]:
        """Deploy to all hosts in parallel and wait for every outcome.

        Raises ExtractionError before any host is contacted if the archive
        can't be extracted.
        """
        self._setup_logging()

        # Initialize states
        for address in self.request.hosts:
            log_file = None
            if self._log_dir:
                log_file = self._log_dir / f"{address.slug}.log"
            self.states[str(address)] = HostState(address=address, log_file=log_file)

        with ExitStack() as stack:
            if self.request.staging_dir:
                staging_root = self.request.staging_dir
            else:
                staging_root = Path(
                    stack.enter_context(tempfile.TemporaryDirectory(prefix="zipcast-"))
                )

            # Decoding is blocking local I/O; every pipeline reads the result
            staging = await asyncio.to_thread(
                extract_archive, self.request.archive_path, staging_root
            )
            self.staging = staging

            # Run all hosts in parallel
            tasks = [self._run_host(address, staging) for address in self.request.hosts]
            results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = []
        for address, result in zip(self.request.hosts, results):
            if isinstance(result, BaseException):
                # Only reached for errors the pipeline doesn't translate
                result = self._finish(
                    HostOutcome(
                        host=address,
                        succeeded=False,
                        state=self.states[str(address)].status,
                        error=f"Unexpected error: {result!r}",
                    )
                )
            outcomes.append(result)
        return outcomes

    async def _run_host(self, address: HostAddress, staging: StagingTree) -> HostOutcome:
        """Run the pipeline for a single host."""
        pipeline = HostPipeline(
            self.request,
            address,
            staging,
            open_session=self.open_session,
            on_output=self._emit_output,
            on_status=self._emit_status,
        )
        return self._finish(await pipeline.run())

    def _finish(self, outcome: HostOutcome) -> HostOutcome:
        """Record a host's outcome and report it."""
        state = self.states[str(outcome.host)]
        state.outcome = outcome
        if not outcome.succeeded and not state.status.terminal:
            self._emit_status(str(outcome.host), PipelineState.FAILED)
        if self.on_outcome:
            self.on_outcome(outcome)
        return outcome

"""Agent CLI invocation: one process per attempt, bounded by a timeout.

    invoke_with_retry() → invoke() → _collect()   ← launch, then wait under a deadline
                                   → extract()

The agent is treated strictly as ``(workspace, instructions) -> text``. The
instruction payload is written into the workspace and the process is pointed
at it with a short prompt, which keeps the command line short.
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import threading
import time
from pathlib import Path

from revloop_core.agent.retry import backoff_seconds, is_retryable_error
from revloop_core.exceptions import ReviewCancelled
from revloop_core.extract import ExtractionFailure, coerce_unparsed, extract
from revloop_core.models import ReviewOutcome
from revloop_core.utils.text import excerpt

logger = logging.getLogger(__name__)

INSTRUCTIONS_FILENAME = ".revloop-instructions.md"
SHORT_PROMPT = (
    f"Read {INSTRUCTIONS_FILENAME} for detailed instructions, then review all code files "
    "in this workspace and respond according to those instructions."
)

_POLL_INTERVAL = 0.2
_OUTPUT_EXCERPT = 2000
_READER_JOIN_TIMEOUT = 5
_REAP_TIMEOUT = 5


def resolve_agent_command(configured: str) -> str:
    """Resolve the agent executable to a full path where possible.

    Order: an existing absolute path as configured, then PATH, then the
    usual install locations of the Cursor agent CLI. Falls back to the
    configured value, which may still fail at launch.
    """
    if os.path.isabs(configured) and os.path.isfile(configured):
        return configured

    on_path = shutil.which(configured)
    if on_path:
        logger.debug("Found agent CLI via PATH: %s", on_path)
        return on_path

    home = Path.home()
    candidates = [
        home / ".local" / "bin" / configured,
        home / ".cursor" / "bin" / configured,
    ]
    local_app_data = os.environ.get("LOCALAPPDATA")
    if local_app_data:
        candidates += [
            Path(local_app_data) / "cursor-agent" / f"{configured}.cmd",
            Path(local_app_data) / "cursor-agent" / f"{configured}.exe",
        ]
    app_data = os.environ.get("APPDATA")
    if app_data:
        candidates += [Path(app_data) / "npm" / f"{configured}.cmd", Path(app_data) / "npm" / configured]

    for candidate in candidates:
        if candidate.is_file():
            logger.debug("Found agent CLI at: %s", candidate)
            return str(candidate)

    logger.warning(
        "Could not resolve full path to agent CLI, using configured command: %s. "
        "If this fails, set agent_command to the full path in .revloop.yml",
        configured,
    )
    return configured


class AgentInvoker:
    """Runs the external agent CLI against a workspace.

    ``stop_event`` is the shared shutdown signal. It abandons waits (process
    exit, retry backoff) but never kills an already running agent; only the
    timeout does that.
    """

    def __init__(
        self,
        command: str = "agent",
        timeout_seconds: float = 300,
        max_retries: int = 3,
        model: str | None = None,
        stop_event: threading.Event | None = None,
        backoff_unit: float = 1.0,
    ):
        self.command = command
        self.timeout_seconds = timeout_seconds
        self.max_retries = max(1, int(max_retries))
        self.model = model
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.backoff_unit = backoff_unit

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def invoke_with_retry(self, workspace: str | Path, instructions: str) -> ReviewOutcome:
        """Invoke the agent up to ``max_retries`` times with exponential backoff.

        Success and non-retryable failures return immediately. When attempts
        run out, the last failure is returned; if the last attempt raised,
        its message becomes the outcome's error.
        """
        last_outcome: ReviewOutcome | None = None
        last_error: str | None = None

        for attempt in range(1, self.max_retries + 1):
            if self.stop_event.is_set():
                raise ReviewCancelled("Shutdown requested before agent attempt")
            try:
                outcome = self.invoke(workspace, instructions)
            except ReviewCancelled:
                raise
            except Exception as e:
                last_outcome, last_error = None, str(e) or type(e).__name__
                logger.warning(
                    "Agent attempt %d/%d raised %s: %s", attempt, self.max_retries, type(e).__name__, e
                )
            else:
                if outcome.success:
                    return outcome
                if not is_retryable_error(outcome.error):
                    logger.warning(
                        "Agent attempt %d/%d failed with a non-retryable error: %s",
                        attempt,
                        self.max_retries,
                        outcome.error,
                    )
                    return outcome
                last_outcome, last_error = outcome, None
                logger.warning("Agent attempt %d/%d failed: %s", attempt, self.max_retries, outcome.error)

            if attempt < self.max_retries:
                delay = backoff_seconds(attempt, self.backoff_unit)
                logger.info("Waiting %ss before retry...", delay)
                self._wait(delay)

        if last_outcome is not None:
            return last_outcome
        return ReviewOutcome.failure(last_error or "All retry attempts failed")

    def invoke(self, workspace: str | Path, instructions: str) -> ReviewOutcome:
        """Run one agent attempt and extract its review."""
        root = Path(workspace)
        (root / INSTRUCTIONS_FILENAME).write_text(instructions, encoding="utf-8")

        cmd = self.build_command(root)
        logger.debug("Executing: %s", " ".join(cmd))

        try:
            proc = subprocess.Popen(
                cmd,
                cwd=str(root),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                **_new_process_group_kwargs(),
            )
        except OSError as e:
            logger.error("Failed to invoke agent CLI %r: %s", self.command, e)
            return ReviewOutcome.failure(f"Failed to invoke agent CLI: {e}")

        return self._collect(proc)

    def build_command(self, workspace: Path) -> list[str]:
        cmd = [self.command, "-p", SHORT_PROMPT, "--output-format", "json", "--workspace", str(workspace)]
        if self.model:
            cmd += ["--model", self.model]
        return cmd

    # ------------------------------------------------------------------ #
    # Internals                                                            #
    # ------------------------------------------------------------------ #

    def _wait(self, seconds: float) -> None:
        if self.stop_event.wait(seconds):
            raise ReviewCancelled("Shutdown requested during retry backoff")

    def _collect(self, proc: subprocess.Popen) -> ReviewOutcome:
        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        readers = [
            _start_reader(proc.stdout, stdout_lines),
            _start_reader(proc.stderr, stderr_lines),
        ]

        deadline = time.monotonic() + self.timeout_seconds
        while True:
            try:
                returncode = proc.wait(timeout=_POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass
            if self.stop_event.is_set():
                logger.info("Shutdown requested; abandoning wait on agent process %d", proc.pid)
                raise ReviewCancelled("Shutdown requested while the agent was running")
            if time.monotonic() >= deadline:
                logger.warning(
                    "Agent CLI timed out after %s seconds, killing process tree", self.timeout_seconds
                )
                _kill_process_tree(proc)
                _release_pipes(proc, readers)
                return ReviewOutcome.failure(f"Agent CLI timed out after {self.timeout_seconds} seconds")

        for reader in readers:
            reader.join(timeout=_READER_JOIN_TIMEOUT)

        stdout = "".join(stdout_lines)
        stderr = "".join(stderr_lines)
        logger.debug(
            "Agent exit code: %d, stdout length: %d, stderr length: %d", returncode, len(stdout), len(stderr)
        )

        if returncode != 0:
            logger.warning("Agent CLI exited with code %d. Stderr: %s", returncode, excerpt(stderr, _OUTPUT_EXCERPT))
            # Soft failures may still print a complete review.
            if stdout.strip():
                parsed = extract(stdout)
                if isinstance(parsed, ReviewOutcome) and parsed.files:
                    parsed.success = True
                    return parsed
            return ReviewOutcome.failure(
                f"Agent CLI exited with code {returncode}: {excerpt(stderr.strip(), _OUTPUT_EXCERPT)}"
            )

        result = extract(stdout)
        if isinstance(result, ExtractionFailure):
            logger.warning("Failed to parse agent response. Raw output: %s", excerpt(stdout, _OUTPUT_EXCERPT))
        outcome = coerce_unparsed(result)

        summaries = sum(1 for f in outcome.files if f.in_summary_mode)
        logger.info(
            "Agent review complete: %d file(s) with issues, %d comment(s), %d summary(ies). Overall: %s",
            len(outcome.files),
            outcome.total_comments,
            summaries,
            outcome.overall_summary or "none",
        )
        return outcome


def _start_reader(stream, sink: list[str]) -> threading.Thread:
    def pump():
        for line in iter(stream.readline, ""):
            sink.append(line)

    thread = threading.Thread(target=pump, daemon=True)
    thread.start()
    return thread


def _release_pipes(proc: subprocess.Popen, readers: list[threading.Thread]) -> None:
    """Reap a killed agent, then join its reader threads and close both pipes."""
    try:
        proc.wait(timeout=_REAP_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("Agent process %d did not exit after being killed", proc.pid)
    for reader, stream in zip(readers, (proc.stdout, proc.stderr)):
        reader.join(timeout=_READER_JOIN_TIMEOUT)
        # A reader still blocked in readline holds the stream's buffer lock.
        if reader.is_alive():
            logger.warning("Output pipe of agent process %d is still held open", proc.pid)
            continue
        stream.close()


def _new_process_group_kwargs() -> dict:
    if os.name == "nt":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _kill_process_tree(proc: subprocess.Popen) -> None:
    try:
        if os.name == "nt":
            subprocess.run(
                ["taskkill", "/PID", str(proc.pid), "/T", "/F"],
                capture_output=True,
                timeout=_REAP_TIMEOUT,
                check=False,
            )
        else:
            os.killpg(proc.pid, signal.SIGKILL)
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning("Failed to kill timed out agent process %d: %s", proc.pid, e)

    try:
        proc.wait(timeout=_REAP_TIMEOUT)
    except subprocess.TimeoutExpired:
        logger.warning("Agent process %d did not exit after being killed", proc.pid)

"""Runs ``cdk synth`` / ``cdk deploy`` and exposes the output as a deployment event stream."""

import codecs
import json
import logging
import os
import signal
import subprocess
import threading
from collections.abc import Iterator, Sequence
from pathlib import Path

from storageroom.diagnose import analyze
from storageroom.errors import DeploymentError
from storageroom.models import (
    DeployAction,
    DeploymentEvent,
    DeploymentResult,
    DeployRequest,
    EventLevel,
    EventType,
    ResultStatus,
)
from storageroom.protocol import EventStream, encode_event
from storageroom.session import TerminalSession

logger = logging.getLogger(__name__)

CHUNK_SIZE = 4096
OUTPUTS_FILE = "cdk-outputs.json"
DEFAULT_REGION = "us-east-1"

SOURCES = {
    DeployAction.SYNTH: "CDK Synth",
    DeployAction.DEPLOY: "CDK Deploy",
}


def _line(message: str, level: EventLevel = EventLevel.INFO, **fields) -> str:
    return encode_event(DeploymentEvent(message=message, level=level, **fields))


class DeploymentRun:
    """A single synth/deploy invocation.

    Iterate ``events()`` to drive the subprocess; events arrive in the order
    the output was written. ``cancel()`` may be called from another thread.
    ``result`` is set once ``events()`` is exhausted.
    """

    def __init__(self, deployer: "Deployer", request: DeployRequest):
        self._deployer = deployer
        self.request = request
        self._stream = EventStream()
        self._proc: subprocess.Popen | None = None
        self._cancelled = threading.Event()
        self._timed_out = False
        self._exit_code: int | None = None
        self._outputs: dict[str, str] = {}
        self.result: DeploymentResult | None = None

    @property
    def events_so_far(self) -> list[DeploymentEvent]:
        return list(self._stream.events)

    def cancel(self) -> None:
        """Terminate the subprocess and stop delivering events."""
        logger.info("Cancelling %s", self.request.action)
        self._cancelled.set()
        self._kill()

    def events(self) -> Iterator[DeploymentEvent]:
        chunks = self._chunks()
        try:
            for chunk in chunks:
                yield from self._stream.feed(chunk)
                if self._cancelled.is_set():
                    break
        except DeploymentError as e:
            self._stream.close()
            e.events = self.events_so_far
            self.result = self._stream.result(None)
            raise
        finally:
            # Reaps the subprocess when iteration stops early.
            chunks.close()

        if self._cancelled.is_set():
            yield from self._stream.cancel()
        else:
            yield from self._stream.close()
        self.result = self._stream.result(self._exit_code, self._outputs)

    def _kill(self) -> None:
        proc = self._proc
        if proc is None or proc.poll() is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(proc.pid, signal.SIGTERM)
            else:
                proc.terminate()
        except ProcessLookupError:
            pass

    def _on_timeout(self) -> None:
        logger.warning("%s exceeded %ss, killing it", self.request.action, self._deployer.timeout)
        self._timed_out = True
        self._kill()

    def _chunks(self) -> Iterator[str]:
        action = self.request.action.value

        if not (yield from self._pre_checks()):
            yield _line(
                "Pre-deployment checks failed",
                EventLevel.ERROR,
                type=EventType.RESULT,
                status=ResultStatus.ERROR,
            )
            return

        args = self._deployer.build_command(self.request)
        yield _line(f"Running: {' '.join(args)}", EventLevel.COMMAND)

        try:
            self._proc = subprocess.Popen(
                args,
                cwd=self._deployer.cdk_dir,
                env=self._deployer.build_env(self.request),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            raise DeploymentError(f"Could not start {args[0]}: {e}") from e

        timer = threading.Timer(self._deployer.timeout, self._on_timeout)
        timer.daemon = True
        timer.start()

        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        captured: list[str] = []
        finished = False
        try:
            while True:
                try:
                    data = self._proc.stdout.read1(CHUNK_SIZE)
                except (OSError, ValueError) as e:
                    raise DeploymentError(f"{action} output stream broke: {e}") from e
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    captured.append(text)
                    yield text
                if self._cancelled.is_set():
                    return
            tail = decoder.decode(b"", final=True)
            if tail:
                captured.append(tail)
                yield tail
            finished = True
        finally:
            timer.cancel()
            if not finished:
                self._kill()
            self._exit_code = self._proc.wait()
            self._proc.stdout.close()

        output = "".join(captured)
        if output and not output.endswith("\n"):
            yield "\n"

        if self._exit_code == 0 and not self._stream.failed:
            if self.request.action == DeployAction.DEPLOY:
                self._outputs = self._deployer.read_outputs(self.request.s3_bucket_name)
                if self._outputs:
                    yield _line("Stack outputs captured", EventLevel.SUCCESS)
            yield _line(
                f"{action} completed successfully",
                EventLevel.SUCCESS,
                type=EventType.RESULT,
                status=ResultStatus.OK,
            )
            return

        if self._timed_out:
            message = f"{action} timed out after {self._deployer.timeout:g}s"
        elif self._exit_code != 0:
            message = f"{action} failed with exit code {self._exit_code}"
        else:
            # The tool already reported its own failing result line.
            message = None
        if message:
            yield _line(
                message, EventLevel.ERROR, type=EventType.RESULT, status=ResultStatus.ERROR
            )

        diagnosis = analyze(output, " ".join(args))
        if diagnosis.rule is not None:
            yield _line(
                diagnosis.title,
                EventLevel.WARN,
                type=EventType.ERROR_INTELLIGENCE,
                title=diagnosis.title,
                suggestion=diagnosis.suggestion,
                command=diagnosis.command,
            )

    def _pre_checks(self):
        cdk_dir = Path(self._deployer.cdk_dir)
        yield _line("Checking CDK directory...")
        if not cdk_dir.is_dir():
            yield _line(
                f"CDK directory not found at {cdk_dir}",
                EventLevel.ERROR,
                suggestion="Create the CDK project with: npx cdk init app --language typescript",
            )
            return False

        if (cdk_dir / "node_modules").is_dir():
            yield _line("CDK dependencies found", EventLevel.SUCCESS)
        else:
            yield _line(
                "CDK dependencies not installed",
                EventLevel.WARN,
                suggestion=f"Run: cd {cdk_dir}; npm install",
            )

        yield _line("Pre-checks complete", EventLevel.SUCCESS)
        return True


class Deployer:
    """Builds and starts CDK invocations for bucket stacks."""

    def __init__(
        self,
        cdk_dir: str | Path,
        cdk_command: Sequence[str] = ("npx", "cdk"),
        timeout: float = 300.0,
    ):
        self.cdk_dir = Path(cdk_dir)
        self._cdk_command = list(cdk_command)
        self.timeout = timeout

    def build_command(self, request: DeployRequest) -> list[str]:
        if request.action == DeployAction.SYNTH:
            return [*self._cdk_command, "synth"]
        return [
            *self._cdk_command,
            "deploy",
            "--require-approval",
            "never",
            "--outputs-file",
            OUTPUTS_FILE,
        ]

    def build_env(self, request: DeployRequest) -> dict[str, str]:
        env = dict(os.environ)
        env["SCR_BUCKET_NAME"] = request.s3_bucket_name or ""
        env["SCR_REGION"] = request.region or DEFAULT_REGION
        return env

    def read_outputs(self, s3_bucket_name: str | None) -> dict[str, str]:
        """Stack outputs written by ``cdk deploy --outputs-file``."""
        path = self.cdk_dir / OUTPUTS_FILE
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning("Could not read CDK outputs from %s: %s", path, e)
            return {}
        if not isinstance(data, dict) or not data:
            return {}

        stack_key = next((k for k in data if s3_bucket_name and s3_bucket_name in k), None)
        outputs = data[stack_key] if stack_key else next(iter(data.values()))
        if not isinstance(outputs, dict):
            return {}
        return {str(k): str(v) for k, v in outputs.items()}

    def start(self, request: DeployRequest) -> DeploymentRun:
        request.validate()
        return DeploymentRun(self, request)

    def run(
        self,
        request: DeployRequest,
        session: TerminalSession | None = None,
    ) -> DeploymentResult:
        """Run to completion, logging every event into ``session``."""
        source = SOURCES[request.action]
        run = self.start(request)
        if session is not None:
            session.open()
            session.log(f"Starting {request.action.value}...", EventLevel.COMMAND, source)

        try:
            for event in run.events():
                if session is not None:
                    session.log_event(event, source)
        except DeploymentError as e:
            if session is not None:
                session.log(str(e), EventLevel.ERROR, source)
            raise

        return run.result

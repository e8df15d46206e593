"""Test operations that run in a separate OS process and can be hard-killed."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path

from ciengine.test_engine.cancellation import CancellationToken
from ciengine.test_engine.models.test_result import CaseOutcome

logger = logging.getLogger(__name__)


class CommandFailedError(RuntimeError):
    """A test command exited with a non-zero code."""

    def __init__(self, command: Sequence[str], returncode: int, output: str) -> None:
        """Keep the tail of the output for diagnostics."""
        self.command = list(command)
        self.returncode = returncode
        self.output = output
        tail = output.strip().splitlines()[-5:]
        detail = "\n".join(tail)
        super().__init__(
            f"Command {' '.join(command)} exited with code {returncode}"
            + (f":\n{detail}" if detail else "")
        )


async def run_command(
    command: Sequence[str],
    token: CancellationToken,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[int, str]:
    """Run a command, killing it when the token or the awaiting task is cancelled.

    Args:
        command: Program and arguments
        token: Cancellation token observed while the process runs
        cwd: Working directory
        env: Environment for the process, inherited when None

    Returns:
        Tuple of (return code, combined stdout and stderr)

    """
    process = await asyncio.create_subprocess_exec(
        *command,
        cwd=cwd,
        env=dict(env) if env is not None else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
    )

    communicate = asyncio.ensure_future(process.communicate())
    cancelled = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {communicate, cancelled}, return_when=asyncio.FIRST_COMPLETED
        )
    except asyncio.CancelledError:
        _kill(process, command)
        communicate.cancel()
        await asyncio.shield(process.wait())
        raise
    finally:
        cancelled.cancel()

    if communicate not in done:
        _kill(process, command)
        communicate.cancel()
        await process.wait()
        raise asyncio.CancelledError(token.reason or "cancelled")

    stdout, _ = communicate.result()
    output = stdout.decode(errors="replace") if stdout else ""
    return process.returncode or 0, output


def _kill(process: asyncio.subprocess.Process, command: Sequence[str]) -> None:
    if process.returncode is None:
        logger.warning(f"Killing process {process.pid}: {' '.join(command)}")
        process.kill()


def parse_coverage(output: str, pattern: str) -> float:
    """Extract a coverage percentage from command output.

    The first capture group of the last match is read as a percentage.

    """
    matches = re.findall(pattern, output)
    if not matches:
        return 0.0
    last = matches[-1]
    value = last[0] if isinstance(last, tuple) else last
    return min(max(float(value) / 100.0, 0.0), 1.0)


def command_operation(
    command: Sequence[str],
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    coverage_pattern: str | None = None,
) -> Callable[[CancellationToken], Awaitable[CaseOutcome]]:
    """Build a test operation that runs ``command`` in its own process.

    Exit code 0 passes. The process is killed when the attempt times out or
    the execution is cancelled, which makes this the way to run untrusted or
    non-cooperative test code.

    """

    async def operation(token: CancellationToken) -> CaseOutcome:
        returncode, output = await run_command(command, token, cwd=cwd, env=env)
        if returncode != 0:
            raise CommandFailedError(command, returncode, output)
        coverage = parse_coverage(output, coverage_pattern) if coverage_pattern else 0.0
        return CaseOutcome(coverage=coverage)

    return operation

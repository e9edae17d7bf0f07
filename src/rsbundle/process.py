"""Process management utilities for rsbundle."""

import os
import subprocess
from shutil import which

import trio

from rsbundle.source import BundleError


class ProcessError(BundleError):
    """Raised when an external tool cannot be started or talked to."""


def find_tool(name: str) -> str | None:
    """Find a Rust toolchain command on PATH or in the default cargo location."""
    first_attempt = which(name)
    if first_attempt is not None:
        return first_attempt
    cargo_home = os.environ.get("CARGO_HOME") or os.path.expanduser("~/.cargo")
    second_attempt = os.path.join(cargo_home, "bin", name)
    if os.path.exists(second_attempt):
        return second_attempt
    return None


async def communicate(
    command: list[str], data: bytes, cwd: str | None = None
) -> subprocess.CompletedProcess[bytes]:
    """Run ``command`` with ``data`` on stdin and collect all of its output.

    This is a single synchronous round trip: spawn, write all input, close
    stdin, wait for exit. There is no timeout, so a hung tool hangs the run.
    The exit status is left to the caller to interpret.
    """
    try:
        return await trio.run_process(
            command,
            stdin=data,
            capture_stdout=True,
            capture_stderr=True,
            check=False,
            cwd=cwd,
        )
    except OSError as e:
        raise ProcessError(f"Could not run {command[0]}: {e}") from e

"""Formatting utilities for rsbundle."""

import shlex

import chardet

from rsbundle.process import ProcessError, communicate, find_tool
from rsbundle.source import BundleError, SourceEncodingError, decode


class FormatterError(BundleError):
    """The formatter could not be run or did not exit cleanly."""


def try_decode(data: bytes) -> tuple[str | None, str]:
    """Try to decode bytes using detected encoding."""
    for guess in chardet.detect_all(data):
        try:
            enc = guess["encoding"]
            if enc is not None:
                return enc, data.decode(enc)
        except UnicodeDecodeError:
            pass
    return None, ""


def check_source_encoding(data: bytes, filename: str) -> None:
    """Rust sources must be UTF-8. Name the likely encoding if they are not."""
    try:
        data.decode("utf-8")
    except UnicodeDecodeError as e:
        encoding, _ = try_decode(data)
        hint = f" (it looks like {encoding})" if encoding is not None else ""
        raise SourceEncodingError(
            f"{filename} is not valid UTF-8 at byte {e.start}{hint}"
        ) from e


def default_formatter_command(edition: str) -> list[str] | None:
    rustfmt = find_tool("rustfmt")
    if rustfmt is None:
        return None
    return [rustfmt, "--edition", edition, "--emit", "stdout"]


def determine_formatter_command(formatter: str, edition: str) -> list[str] | None:
    """Determine the formatter command to use based on settings."""
    if formatter.lower() == "default":
        return default_formatter_command(edition)
    elif formatter.lower() != "none":
        return shlex.split(formatter)
    else:
        return None


async def run_formatter(command: list[str], source: bytes) -> bytes:
    """Pipe ``source`` through the formatter and return its output verbatim."""
    try:
        result = await communicate(command, source)
    except ProcessError as e:
        raise FormatterError(str(e)) from e
    if result.returncode != 0:
        raise FormatterError(
            f"Formatter {shlex.join(command)} exited with status {result.returncode}:\n"
            f"{result.stderr.decode('utf-8', errors='replace').strip()}"
        )
    decode(result.stdout)
    return result.stdout

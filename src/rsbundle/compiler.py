"""Asking rustc which declarations are dead.

rustc is run in check-only mode with ``--error-format=json``. It writes one
JSON record per line to stderr; records tagged ``"$message_type":
"diagnostic"`` are diagnostics, everything else (artifact notifications,
future-incompat reports, ...) is dropped.

Only two lints matter for bundling:

- ``dead_code``: "function `foo` is never used", pointing at the name.
- ``unused_imports``: "unused import: `a::b`", pointing at the use tree.
"""

import json
from collections.abc import Iterable, Sequence
from tempfile import TemporaryDirectory
from typing import Any

import attrs
from attrs import define

from rsbundle.process import ProcessError, communicate, find_tool
from rsbundle.source import BundleError, ByteRange


DEAD_CODE_LINTS = frozenset({"dead_code", "unused_imports"})

ERROR_LEVELS = frozenset({"error", "error: internal compiler error"})


class CompilerError(BundleError):
    """rustc could not be run, or rejected the source."""


class DiagnosticDecodeError(BundleError, ValueError):
    """rustc produced a record we could not understand."""


@define(frozen=True)
class SpanLine:
    """One source line of a span, with 1-based highlight columns."""

    text: str
    highlight_start: int
    highlight_end: int

    @property
    def highlighted(self) -> str:
        return self.text[self.highlight_start - 1 : self.highlight_end - 1]


@define(frozen=True)
class DiagnosticSpan:
    byte_start: int
    byte_end: int
    is_primary: bool = True
    text: tuple[SpanLine, ...] = ()

    @property
    def byte_range(self) -> ByteRange:
        return ByteRange(self.byte_start, self.byte_end)

    @property
    def highlighted_text(self) -> str | None:
        """The highlighted text of the first line, if rustc rendered one."""
        if not self.text:
            return None
        return self.text[0].highlighted


@define(frozen=True)
class Diagnostic:
    level: str
    message: str
    code: str | None = None
    spans: tuple[DiagnosticSpan, ...] = ()
    rendered: str | None = None

    @property
    def primary_span(self) -> DiagnosticSpan:
        if not self.spans:
            raise DiagnosticDecodeError(f"Diagnostic {self.message!r} has no spans")
        return self.spans[0]


def decode_span(data: dict[str, Any]) -> DiagnosticSpan:
    return DiagnosticSpan(
        byte_start=int(data["byte_start"]),
        byte_end=int(data["byte_end"]),
        is_primary=bool(data.get("is_primary", True)),
        text=tuple(
            SpanLine(
                text=line["text"],
                highlight_start=int(line["highlight_start"]),
                highlight_end=int(line["highlight_end"]),
            )
            for line in data.get("text") or ()
        ),
    )


def decode_diagnostic(data: dict[str, Any]) -> Diagnostic:
    try:
        code = data.get("code")
        return Diagnostic(
            level=data["level"],
            message=data["message"],
            code=code["code"] if code is not None else None,
            spans=tuple(decode_span(s) for s in data.get("spans") or ()),
            rendered=data.get("rendered"),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise DiagnosticDecodeError(f"Malformed diagnostic {data!r}: {e!r}") from e


def parse_diagnostic_stream(stream: bytes) -> list[Diagnostic]:
    """Decode rustc's line-delimited JSON output into diagnostics."""
    try:
        text = stream.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DiagnosticDecodeError(f"rustc output is not UTF-8: {e}") from e
    diagnostics = []
    for lineno, line in enumerate(text.splitlines(), 1):
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError as e:
            raise DiagnosticDecodeError(
                f"Line {lineno} of rustc output is not JSON: {line[:200]!r}"
            ) from e
        if not isinstance(record, dict):
            raise DiagnosticDecodeError(
                f"Line {lineno} of rustc output is not an object: {line[:200]!r}"
            )
        if record.get("$message_type") != "diagnostic":
            continue
        del record["$message_type"]
        diagnostics.append(decode_diagnostic(record))
    return diagnostics


def is_dead_code(diagnostic: Diagnostic) -> bool:
    return diagnostic.code in DEAD_CODE_LINTS


def dead_code_spans(diagnostics: Iterable[Diagnostic]) -> list[DiagnosticSpan]:
    """The first span of every dead code or unused import diagnostic."""
    return [d.primary_span for d in diagnostics if is_dead_code(d)]


def compile_errors(diagnostics: Iterable[Diagnostic]) -> list[Diagnostic]:
    return [d for d in diagnostics if d.level in ERROR_LEVELS and not is_dead_code(d)]


@define
class RustCompiler:
    """Runs rustc over a whole source unit and reports its diagnostics."""

    rustc: Sequence[str] = attrs.field(factory=lambda: [find_tool("rustc") or "rustc"])
    edition: str = "2021"
    crate_name: str = "main"
    extra_args: Sequence[str] = ()

    def command(self, output_dir: str) -> list[str]:
        return [
            *self.rustc,
            "--edition",
            self.edition,
            "--crate-type",
            "bin",
            "--crate-name",
            self.crate_name,
            "--error-format=json",
            "--emit=metadata",
            # `#![deny(...)]` in the source must not turn lints into errors.
            "--cap-lints",
            "warn",
            "-W",
            "dead_code",
            "-W",
            "unused_imports",
            "-o",
            f"{output_dir}/out.rmeta",
            *self.extra_args,
            "-",
        ]

    async def diagnostics(self, source: bytes) -> list[Diagnostic]:
        with TemporaryDirectory(prefix="rsbundle-") as d:
            try:
                result = await communicate(self.command(d), source, cwd=d)
            except ProcessError as e:
                raise CompilerError(str(e)) from e

        diagnostics = parse_diagnostic_stream(result.stderr)
        errors = compile_errors(diagnostics)
        if errors:
            raise CompilerError(
                "rustc rejected the source:\n"
                + "\n".join((e.rendered or e.message).rstrip() for e in errors)
            )
        if result.returncode != 0:
            raise CompilerError(f"rustc exited with status {result.returncode}")
        return diagnostics

import json
import re
import shutil
import sys
import textwrap
from collections.abc import Iterable
from pathlib import Path

import pytest
import trio
from attrs import define, field

from rsbundle.compiler import Diagnostic, DiagnosticSpan, SpanLine
from rsbundle.reducer import DeadCodeReducer, MinimizeOptions, minimize_code
from rsbundle.ui import BasicUI, Volume


needs_rustc = pytest.mark.skipif(
    shutil.which("rustc") is None, reason="rustc is not installed"
)
needs_rustfmt = pytest.mark.skipif(
    shutil.which("rustfmt") is None, reason="rustfmt is not installed"
)


# A diagnostic target is "<keyword> <name>", e.g. "fn helper", "struct Foo",
# or "use a::b" for an unused import. The keyword picks the pattern used to
# find where rustc would point.
DEAD_CODE_KEYWORDS = ("fn", "struct", "enum", "union", "trait", "type", "const", "static")


def rust(source: str) -> bytes:
    return textwrap.dedent(source).lstrip("\n").encode("utf-8")


def locate(source: bytes, target: str) -> tuple[int, int, str]:
    """Find the span rustc would report for ``target`` in ``source``."""
    keyword, _, name = target.partition(" ")
    if keyword == "use":
        pattern = rb"\buse\s+(" + re.escape(name.encode()) + rb")\s*;"
        code = "unused_imports"
    else:
        assert keyword in DEAD_CODE_KEYWORDS, keyword
        pattern = rb"\b" + keyword.encode() + rb"\s+(" + re.escape(name.encode()) + rb")\b"
        code = "dead_code"
    match = re.search(pattern, source)
    if match is None:
        raise AssertionError(f"{target!r} not found in {source!r}")
    return match.start(1), match.end(1), code


def diagnostic_for(source: bytes, target: str, message: str | None = None) -> Diagnostic:
    start, end, code = locate(source, target)
    line_start = source.rfind(b"\n", 0, start) + 1
    line_end = source.find(b"\n", start)
    if line_end == -1:
        line_end = len(source)
    line = source[line_start:line_end].decode("utf-8")
    column = len(source[line_start:start].decode("utf-8")) + 1
    width = len(source[start:end].decode("utf-8"))
    return Diagnostic(
        level="warning",
        message=message or f"{target} is never used",
        code=code,
        spans=(
            DiagnosticSpan(
                byte_start=start,
                byte_end=end,
                is_primary=True,
                text=(SpanLine(line, column, column + width),),
            ),
        ),
    )


@define
class ScriptedCompiler:
    """Stands in for rustc, reporting a fixed list of dead declarations per call.

    Once the script is exhausted every further call reports nothing.
    """

    script: list[list[str]]
    calls: list[bytes] = field(factory=list)

    async def diagnostics(self, source: bytes) -> list[Diagnostic]:
        await trio.lowlevel.checkpoint()
        self.calls.append(source)
        if len(self.calls) > len(self.script):
            return []
        return [diagnostic_for(source, t) for t in self.script[len(self.calls) - 1]]


def quiet_ui() -> BasicUI:
    return BasicUI(volume=Volume.quiet)


async def remove_dead_code_with(
    script: Iterable[list[str]], source: bytes
) -> tuple[bytes, DeadCodeReducer]:
    reducer = DeadCodeReducer(compiler=ScriptedCompiler(list(script)), ui=quiet_ui())
    result = await reducer.run(source)
    return result, reducer


async def minimize_with(
    script: Iterable[list[str]], source: bytes, options: MinimizeOptions | None = None
) -> bytes:
    compiler = ScriptedCompiler(list(script))
    return await minimize_code(source, compiler, options=options, ui=quiet_ui())


def diagnostic_record(diagnostic: Diagnostic) -> dict:
    return {
        "$message_type": "diagnostic",
        "message": diagnostic.message,
        "code": None if diagnostic.code is None else {"code": diagnostic.code, "explanation": None},
        "level": diagnostic.level,
        "spans": [
            {
                "file_name": "<anon>",
                "byte_start": s.byte_start,
                "byte_end": s.byte_end,
                "line_start": 1,
                "line_end": 1,
                "column_start": 1,
                "column_end": 1,
                "is_primary": s.is_primary,
                "text": [
                    {
                        "text": line.text,
                        "highlight_start": line.highlight_start,
                        "highlight_end": line.highlight_end,
                    }
                    for line in s.text
                ],
                "label": None,
                "suggested_replacement": None,
                "suggestion_applicability": None,
                "expansion": None,
            }
            for s in diagnostic.spans
        ],
        "children": [],
        "rendered": f"warning: {diagnostic.message}\n",
    }


FAKE_RUSTC = '''
import json
import re
import sys

source = sys.stdin.buffer.read()
with open({log!r}, "ab") as log:
    log.write(json.dumps(sys.argv[1:]).encode() + b"\\n")
print(json.dumps({{"$message_type": "artifact", "artifact": "out.rmeta", "emit": "metadata"}}), file=sys.stderr)
for name in {dead!r}:
    match = re.search(rb"\\bfn\\s+(" + name.encode() + rb")\\b", source)
    if match is None:
        continue
    line_start = source.rfind(b"\\n", 0, match.start(1)) + 1
    line_end = source.find(b"\\n", match.start(1))
    line = source[line_start:line_end].decode()
    column = match.start(1) - line_start + 1
    print(json.dumps({{
        "$message_type": "diagnostic",
        "message": "function `%s` is never used" % name,
        "code": {{"code": "dead_code", "explanation": None}},
        "level": "warning",
        "spans": [{{
            "byte_start": match.start(1),
            "byte_end": match.end(1),
            "is_primary": True,
            "text": [{{"text": line, "highlight_start": column, "highlight_end": column + len(name)}}],
        }}],
        "children": [],
        "rendered": None,
    }}), file=sys.stderr)
'''


def write_fake_rustc(directory: Path, dead: list[str]) -> tuple[list[str], Path]:
    """A rustc stand-in script reporting functions named in ``dead`` as unused.

    Returns the command to run it and the file it logs its arguments to.
    """
    log = directory / "rustc-calls.log"
    script = directory / "fake_rustc.py"
    script.write_text(FAKE_RUSTC.format(log=str(log), dead=dead))
    return [sys.executable, str(script)], log


def read_calls(log: Path) -> list[list[str]]:
    return [json.loads(line) for line in log.read_text().splitlines()]

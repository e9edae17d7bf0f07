"""Removing dead code until nothing more can be removed.

Each iteration asks rustc for its dead code diagnostics, maps them onto
declarations and deletes those declarations. Deleting code can make more
code dead (a helper only called from a removed function), so iterations
repeat until one leaves the source unchanged.

Every iteration that changes the source deletes at least one byte and
deletes nothing else, so the source shrinks strictly and the loop
terminates. This is checked rather than trusted, since a misbehaving
compiler would otherwise keep the loop running forever.
"""

import time
from typing import Protocol

import attrs
from attrs import define

from rsbundle.compiler import Diagnostic, dead_code_spans
from rsbundle.formatting import run_formatter
from rsbundle.passes import pre_passes
from rsbundle.passes.correlate import find_dead_identities
from rsbundle.passes.prune import prune
from rsbundle.source import BundleError
from rsbundle.syntax import describe, parse
from rsbundle.ui import BasicUI


class NonShrinkingPass(BundleError):
    """An iteration changed the source without making it smaller."""


class DiagnosticSource(Protocol):
    async def diagnostics(self, source: bytes) -> list[Diagnostic]: ...


@define(frozen=True)
class IterationStats:
    iteration: int
    size_before: int
    size_after: int
    removed: list[str]
    elapsed: float

    @property
    def bytes_deleted(self) -> int:
        return self.size_before - self.size_after


@define
class MinimizeOptions:
    remove_tests: bool = True
    downgrade_visibility: bool = True
    remove_empty_modules: bool = True


@define
class DeadCodeReducer:
    compiler: DiagnosticSource
    ui: BasicUI = attrs.field(factory=BasicUI)
    remove_empty_modules: bool = True
    history: list[IterationStats] = attrs.field(factory=list, init=False)

    async def run_iteration(self, source: bytes) -> tuple[bytes, list[str]]:
        diagnostics = await self.compiler.diagnostics(source)
        spans = dead_code_spans(diagnostics)
        self.ui.debug(
            f"rustc reported {len(diagnostics)} diagnostics, "
            f"{len(spans)} about dead code"
        )
        dead = find_dead_identities(source, parse(source), spans)
        pruned = prune(source, dead, self.remove_empty_modules)
        return pruned.source, [describe(d) for d in pruned.removed]

    async def run(self, source: bytes) -> bytes:
        iteration = 0
        while True:
            iteration += 1
            start = time.monotonic()
            new_source, removed = await self.run_iteration(source)
            if new_source != source and len(new_source) >= len(source):
                raise NonShrinkingPass(
                    f"Iteration {iteration} changed the source from "
                    f"{len(source)} to {len(new_source)} bytes"
                )
            stats = IterationStats(
                iteration=iteration,
                size_before=len(source),
                size_after=len(new_source),
                removed=removed,
                elapsed=time.monotonic() - start,
            )
            self.history.append(stats)
            self.ui.iteration_finished(stats)
            if new_source == source:
                return source
            source = new_source


async def remove_dead_code(
    source: bytes,
    compiler: DiagnosticSource,
    ui: BasicUI | None = None,
    remove_empty_modules: bool = True,
) -> bytes:
    reducer = DeadCodeReducer(
        compiler=compiler,
        ui=ui or BasicUI(),
        remove_empty_modules=remove_empty_modules,
    )
    return await reducer.run(source)


async def minimize_code(
    source: bytes,
    compiler: DiagnosticSource,
    formatter_command: list[str] | None = None,
    options: MinimizeOptions | None = None,
    ui: BasicUI | None = None,
) -> bytes:
    """Run the whole pipeline over an assembled source unit.

    Test modules and ``pub`` markers are dealt with once, then dead code is
    removed to a fixpoint, and finally the result is formatted.
    """
    options = options or MinimizeOptions()
    ui = ui or BasicUI()
    for source_pass in pre_passes(options.remove_tests, options.downgrade_visibility):
        before = len(source)
        source = source_pass(source)
        ui.pass_finished(source_pass.__name__, before, len(source))
    source = await remove_dead_code(
        source, compiler, ui, remove_empty_modules=options.remove_empty_modules
    )
    if formatter_command is not None:
        before = len(source)
        source = await run_formatter(formatter_command, source)
        ui.pass_finished("formatter", before, len(source))
    return source

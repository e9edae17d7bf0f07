"""Progress output for rsbundle."""

import sys
from enum import IntEnum
from typing import TYPE_CHECKING, TextIO

import attrs
import humanize
from attrs import define


if TYPE_CHECKING:
    from rsbundle.reducer import IterationStats


class Volume(IntEnum):
    """Logging verbosity levels."""

    quiet = 0
    normal = 1
    verbose = 2
    debug = 3


@define
class BasicUI:
    """Simple text output on stderr, so stdout stays free for the bundle."""

    volume: Volume = Volume.normal
    file: TextIO = attrs.field(factory=lambda: sys.stderr)

    def log(self, message: str, level: Volume = Volume.normal) -> None:
        if self.volume >= level:
            print(message, file=self.file, flush=True)

    def debug(self, message: str) -> None:
        self.log(message, Volume.debug)

    def starting(self, name: str, size: int) -> None:
        self.log(f"Bundling {name} ({humanize.naturalsize(size)} after inlining)")

    def pass_finished(self, name: str, before: int, after: int) -> None:
        if before == after:
            self.log(f"{name}: no change", Volume.verbose)
        else:
            self.log(
                f"{name}: {humanize.naturalsize(before)} -> "
                f"{humanize.naturalsize(after)}",
                Volume.verbose,
            )

    def iteration_finished(self, stats: "IterationStats") -> None:
        if not stats.removed:
            self.log(
                f"Iteration {stats.iteration}: nothing left to remove", Volume.verbose
            )
            return
        self.log(
            f"Iteration {stats.iteration}: removed {len(stats.removed)} "
            f"declaration{'s' if len(stats.removed) != 1 else ''} "
            f"(deleted {humanize.naturalsize(stats.bytes_deleted)})",
            Volume.verbose,
        )
        for description in stats.removed:
            self.log(f"  - {description}", Volume.debug)

    def finished(self, name: str, initial: int, final: int, elapsed: float) -> None:
        self.log(
            f"Bundled {name}: {humanize.naturalsize(final)} "
            f"(deleted {humanize.naturalsize(initial - final)}) "
            f"in {humanize.precisedelta(elapsed, minimum_unit='milliseconds')}"
        )

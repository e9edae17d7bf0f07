"""Main entry point for rsbundle."""

import shlex
import sys
from pathlib import Path

import click
import trio

from rsbundle.bundle import (
    BinaryTarget,
    BundleConfig,
    bundle_file,
    find_binaries,
)
from rsbundle.cli import EnumChoice, validate_command, validate_libs
from rsbundle.compiler import RustCompiler
from rsbundle.formatting import determine_formatter_command
from rsbundle.process import find_tool
from rsbundle.reducer import MinimizeOptions
from rsbundle.source import BundleError
from rsbundle.ui import BasicUI, Volume


EDITIONS = ["2015", "2018", "2021", "2024"]


async def run_bundle(
    targets: list[BinaryTarget] | None,
    manifest_path: Path | None,
    package: str | None,
    bin_name: str | None,
    output: Path | None,
    out_dir: Path | None,
    config: BundleConfig,
    ui: BasicUI,
) -> None:
    """Bundle every requested binary and write out the results."""
    if targets is None:
        targets = await find_binaries(manifest_path, package, bin_name)

    if output is not None and len(targets) != 1:
        raise click.UsageError(
            f"--output needs exactly one binary but found {len(targets)}: "
            f"{', '.join(t.name for t in targets)}. Use --out-dir instead."
        )

    if output is None and out_dir is None and len(targets) != 1:
        raise click.UsageError(
            f"Writing to stdout needs exactly one binary but found {len(targets)}: "
            f"{', '.join(t.name for t in targets)}. Use --bin or --out-dir."
        )

    if out_dir is not None:
        out_dir.mkdir(parents=True, exist_ok=True)

    for target in targets:
        result = await bundle_file(target.src_path, config, ui)
        if out_dir is not None:
            (out_dir / f"{target.name}.rs").write_bytes(result)
        elif output is not None:
            output.write_bytes(result)
        else:
            sys.stdout.buffer.write(result)
            sys.stdout.flush()


@click.command(
    help="""
rsbundle turns a Rust binary and the libraries it uses into a single source
file, then deletes every declaration that rustc reports as dead so that only
what the program needs is left.

Pass SOURCE to bundle one file directly. Without it, the binaries of a cargo
package are found with `cargo metadata`.
""".strip()
)
@click.version_option()
@click.option("--bin", "bin_name", default=None, help="Binary to bundle.")
@click.option("-p", "--package", default=None, help="Package to bundle from.")
@click.option(
    "--manifest-path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Path to Cargo.toml. Defaults to the one in the current directory.",
)
@click.option(
    "--libs",
    "libs",
    multiple=True,
    callback=validate_libs,
    help=(
        "Libraries to inline, as a comma separated list of NAME=PATH. Each "
        "one becomes `mod NAME { ... }` ahead of the binary's source. May be "
        "given more than once."
    ),
)
@click.option(
    "--edition",
    default="2021",
    type=click.Choice(EDITIONS),
    help="Rust edition to check and format with.",
)
@click.option(
    "--rustc",
    default=lambda: shlex.quote(find_tool("rustc") or "rustc"),
    callback=validate_command,
    help="rustc command to ask for dead code diagnostics.",
)
@click.option(
    "--formatter",
    default="default",
    help="""
Formatter to run over the final result. It should accept input on stdin and
write to stdout.

Special values for this:

* 'none' turns off formatting.
* 'default' uses rustfmt if it can be found, and otherwise leaves the result
  unformatted.
""",
)
@click.option(
    "--keep-tests",
    is_flag=True,
    default=False,
    help="Do not remove #[cfg(test)] modules before looking for dead code.",
)
@click.option(
    "--keep-pub",
    is_flag=True,
    default=False,
    help="Do not rewrite `pub` to `pub(crate)`. Public items are then never removed.",
)
@click.option(
    "--keep-empty-modules",
    is_flag=True,
    default=False,
    help="Do not remove modules left empty by dead code removal.",
)
@click.option(
    "--volume",
    default="normal",
    type=EnumChoice(Volume),
    help="Level of output to provide on stderr.",
)
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="File to write the bundle to. Defaults to stdout.",
)
@click.option(
    "--out-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory to write one NAME.rs per binary to.",
)
@click.argument(
    "source",
    required=False,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
def main(
    bin_name: str | None,
    package: str | None,
    manifest_path: Path | None,
    libs: dict[str, Path],
    edition: str,
    rustc: list[str],
    formatter: str,
    keep_tests: bool,
    keep_pub: bool,
    keep_empty_modules: bool,
    volume: Volume,
    output: Path | None,
    out_dir: Path | None,
    source: Path | None,
) -> None:
    if output is not None and out_dir is not None:
        raise click.UsageError("--output and --out-dir cannot be used together.")

    if source is not None and (
        bin_name is not None or package is not None or manifest_path is not None
    ):
        raise click.UsageError(
            "SOURCE cannot be combined with --bin, --package or --manifest-path."
        )

    config = BundleConfig(
        libs=libs,
        compiler=RustCompiler(rustc=rustc, edition=edition),
        formatter_command=determine_formatter_command(formatter, edition),
        options=MinimizeOptions(
            remove_tests=not keep_tests,
            downgrade_visibility=not keep_pub,
            remove_empty_modules=not keep_empty_modules,
        ),
    )
    ui = BasicUI(volume=volume)

    targets = None
    if source is not None:
        targets = [BinaryTarget(name=source.stem, src_path=source)]

    try:
        trio.run(
            lambda: run_bundle(
                targets=targets,
                manifest_path=manifest_path,
                package=package,
                bin_name=bin_name,
                output=output,
                out_dir=out_dir,
                config=config,
                ui=ui,
            )
        )
    except BundleError as e:
        raise click.ClickException(str(e)) from e


if __name__ == "__main__":  # pragma: no cover
    main(prog_name="rsbundle")

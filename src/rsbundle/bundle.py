"""Assembling a single source unit from a binary and its libraries."""

import json
import re
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import attrs
from attrs import define

from rsbundle.compiler import RustCompiler
from rsbundle.formatting import check_source_encoding
from rsbundle.process import ProcessError, communicate, find_tool
from rsbundle.reducer import MinimizeOptions, minimize_code
from rsbundle.source import BundleError
from rsbundle.ui import BasicUI


RUST_IDENTIFIER = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
UTF8_BOM = b"\xef\xbb\xbf"


class CargoError(BundleError):
    """cargo could not tell us which file a binary is built from."""


@define(frozen=True)
class BinaryTarget:
    name: str
    src_path: Path


@define
class BundleConfig:
    libs: dict[str, Path] = attrs.field(factory=dict)
    compiler: RustCompiler = attrs.field(factory=RustCompiler)
    formatter_command: list[str] | None = None
    options: MinimizeOptions = attrs.field(factory=MinimizeOptions)


def normalize_source(data: bytes) -> bytes:
    """Drop a byte order mark and use ``\\n`` line endings.

    rustc does the same internally before computing span offsets, so this
    has to happen before anything else sees the bytes.
    """
    if data.startswith(UTF8_BOM):
        data = data[len(UTF8_BOM) :]
    return data.replace(b"\r\n", b"\n")


def read_source(path: Path) -> bytes:
    data = Path(path).read_bytes()
    check_source_encoding(data, str(path))
    return normalize_source(data)


def expand_libs(libs: Mapping[str, Path], source: bytes) -> bytes:
    """Inline each library as ``mod <name> { ... }`` ahead of ``source``."""
    parts = []
    for name, path in sorted(libs.items()):
        if RUST_IDENTIFIER.fullmatch(name) is None:
            raise BundleError(f"Library name {name!r} is not a Rust identifier")
        parts.append(b"mod %s {\n%s\n}" % (name.encode("ascii"), read_source(path)))
    parts.append(source)
    return b"".join(parts)


async def cargo_metadata(
    manifest_path: Path | None = None, cargo: str | None = None
) -> dict[str, Any]:
    command = [
        cargo or find_tool("cargo") or "cargo",
        "metadata",
        "--format-version",
        "1",
        "--no-deps",
    ]
    if manifest_path is not None:
        command += ["--manifest-path", str(manifest_path)]
    try:
        result = await communicate(command, b"")
    except ProcessError as e:
        raise CargoError(str(e)) from e
    if result.returncode != 0:
        raise CargoError(
            f"cargo metadata exited with status {result.returncode}:\n"
            f"{result.stderr.decode('utf-8', errors='replace').strip()}"
        )
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise CargoError(f"cargo metadata printed invalid JSON: {e}") from e


def select_package(metadata: dict[str, Any], package: str | None) -> dict[str, Any]:
    packages = metadata["packages"]
    if package is not None:
        for p in packages:
            if p["name"] == package:
                return p
        raise CargoError(f"Package {package} not found")
    if len(packages) == 1:
        return packages[0]
    root_manifest = str(Path(metadata["workspace_root"]) / "Cargo.toml")
    for p in packages:
        if p["manifest_path"] == root_manifest:
            return p
    raise CargoError("Root package not found. Pass --package to pick one.")


def binary_targets(package: dict[str, Any], bin: str | None) -> list[BinaryTarget]:
    bins = [
        BinaryTarget(name=t["name"], src_path=Path(t["src_path"]))
        for t in package["targets"]
        if "bin" in t["kind"]
    ]
    if bin is not None:
        bins = [t for t in bins if t.name == bin]
        if not bins:
            raise CargoError(f"Binary {bin} not found")
    if not bins:
        raise CargoError(f"Package {package['name']} has no binaries")
    return bins


async def find_binaries(
    manifest_path: Path | None, package: str | None, bin: str | None
) -> list[BinaryTarget]:
    metadata = await cargo_metadata(manifest_path)
    return binary_targets(select_package(metadata, package), bin)


async def bundle_file(
    path: Path, config: BundleConfig, ui: BasicUI | None = None
) -> bytes:
    """Inline libraries into the binary at ``path`` and minimize the result."""
    ui = ui or BasicUI()
    start = time.monotonic()
    source = expand_libs(config.libs, read_source(path))
    ui.starting(str(path), len(source))
    result = await minimize_code(
        source,
        config.compiler,
        formatter_command=config.formatter_command,
        options=config.options,
        ui=ui,
    )
    ui.finished(str(path), len(source), len(result), time.monotonic() - start)
    return result

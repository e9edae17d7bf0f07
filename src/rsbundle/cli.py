"""CLI utilities and types for rsbundle."""

import os
import shlex
from enum import Enum
from pathlib import Path
from shutil import which
from typing import Any, Generic, TypeVar

import click


def validate_command(ctx: Any, param: Any, value: str) -> list[str]:
    """Validate and resolve a command string."""
    parts = shlex.split(value)
    command = parts[0]

    if os.path.exists(command):
        command = os.path.abspath(command)
    else:
        what = which(command)
        if what is None:
            raise click.BadParameter(f"{command}: command not found")
        command = os.path.abspath(what)
    return [command] + parts[1:]


def parse_key_val(value: str) -> tuple[str, Path]:
    """Parse ``NAME=PATH``."""
    name, sep, path = value.partition("=")
    if not sep:
        raise click.BadParameter(f"invalid NAME=PATH: no `=` found in `{value}`")
    if not name or not path:
        raise click.BadParameter(f"invalid NAME=PATH: `{value}`")
    return name, Path(path)


def validate_libs(ctx: Any, param: Any, value: tuple[str, ...]) -> dict[str, Path]:
    """Collect ``--libs`` values, each a comma separated list of NAME=PATH."""
    libs: dict[str, Path] = {}
    for group in value:
        for item in group.split(","):
            if not item.strip():
                continue
            name, path = parse_key_val(item.strip())
            if name in libs:
                raise click.BadParameter(f"duplicate library name `{name}`")
            if not path.is_file():
                raise click.BadParameter(f"{path}: no such file")
            libs[name] = path
    return libs


EnumType = TypeVar("EnumType", bound=Enum)


class EnumChoice(click.Choice, Generic[EnumType]):
    """A click Choice that works with Enums."""

    def __init__(self, enum: type[EnumType]) -> None:
        self.enum = enum
        choices = [str(e.name) for e in enum]
        self.__values = {e.name: e for e in enum}
        super().__init__(choices)

    def convert(self, value: str, param: Any, ctx: Any) -> EnumType:
        if isinstance(value, self.enum):
            return value
        return self.__values[value]

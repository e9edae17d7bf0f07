"""Deleting every declaration tied to a dead identity.

The pruner works on a fresh parse of the source, so the spans it deletes
are guaranteed to belong to the snapshot it is given. An identity selects
every declaration that shares it:

- a struct, enum, function, trait, const, ... with that kind and name;
- impl blocks whose self type is a dead type, or whose trait is a dead trait;
- ``use`` statements whose imported name is a dead import.

Resolution is purely by name. It assumes impl targets are written as a
single path segment and that no two modules declare the same name with
different liveness.
"""

from collections.abc import Iterable
from typing import assert_never

from attrs import define

from rsbundle.passes.correlate import DeadIdentity
from rsbundle.source import remove_spans
from rsbundle.syntax import (
    Declaration,
    DeclarationKind,
    ImplBlock,
    ModuleBlock,
    NamedItem,
    TypePath,
    UnsupportedSyntax,
    UseDeclaration,
    parse,
)


@define
class Pruned:
    source: bytes
    removed: list[Declaration]


def _path_is_dead(
    path: TypePath | None, kind: DeclarationKind, dead: frozenset[DeadIdentity]
) -> bool:
    if path is None or DeadIdentity(kind, path.last) not in dead:
        return False
    if not path.is_single_segment:
        raise UnsupportedSyntax(
            f"impl refers to `{path}`, which may or may not be the dead "
            f"{kind.value} `{path.last}`: qualified impl paths are not supported"
        )
    return True


def _import_is_dead(use: UseDeclaration, dead: frozenset[DeadIdentity]) -> bool:
    names = [
        leaf.name
        for leaf in use.leaves
        if DeadIdentity(DeclarationKind.IMPORT, leaf.name) in dead
    ]
    if not names:
        return False
    if not use.is_simple:
        raise UnsupportedSyntax(
            f"Cannot remove unused import of {', '.join(names)} at {use.full_span}: "
            "grouped, renamed and glob imports are not supported"
        )
    return True


def is_dead(
    declaration: Declaration,
    dead: frozenset[DeadIdentity],
    remove_empty_modules: bool = True,
) -> bool:
    match declaration:
        case NamedItem(kind=kind, name=name):
            return DeadIdentity(kind, name) in dead
        case ImplBlock(self_type=self_type, trait=trait):
            # Evaluate both sides so an unsupported trait path is always reported.
            type_dead = _path_is_dead(self_type, DeclarationKind.TYPE, dead)
            trait_dead = _path_is_dead(trait, DeclarationKind.TRAIT, dead)
            return type_dead or trait_dead
        case UseDeclaration():
            return _import_is_dead(declaration, dead)
        case ModuleBlock(inline=inline, is_empty=is_empty):
            return remove_empty_modules and inline and is_empty
        case _:
            assert_never(declaration)


def select_dead_declarations(
    declarations: Iterable[Declaration],
    dead: frozenset[DeadIdentity],
    remove_empty_modules: bool = True,
) -> list[Declaration]:
    return [d for d in declarations if is_dead(d, dead, remove_empty_modules)]


def prune(
    source: bytes,
    dead: frozenset[DeadIdentity],
    remove_empty_modules: bool = True,
) -> Pruned:
    """Parse ``source`` afresh and delete every declaration selected by ``dead``.

    Everything outside the deleted spans is kept byte for byte, in order.
    """
    removed = select_dead_declarations(parse(source), dead, remove_empty_modules)
    return Pruned(
        source=remove_spans(source, [d.full_span for d in removed]),
        removed=removed,
    )

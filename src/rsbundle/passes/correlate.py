"""Matching rustc's dead code spans against declarations.

rustc points ``dead_code`` diagnostics at the identifier of the dead item
and ``unused_imports`` diagnostics at the unused use tree, never at the
whole item. A declaration is therefore dead exactly when one of its name
spans is *equal* to a diagnostic span. Mere overlap is not enough: a
diagnostic for a method ``foo`` lies inside its impl block, which is not
dead because of it.
"""

from collections.abc import Iterable, Iterator
from typing import assert_never

from attrs import define

from rsbundle.compiler import DiagnosticSpan
from rsbundle.source import BundleError, ByteRange, decode
from rsbundle.syntax import (
    Declaration,
    DeclarationKind,
    ImplBlock,
    ModuleBlock,
    NamedItem,
    UseDeclaration,
)


class SpanMismatch(BundleError):
    """rustc and the local parser disagree about what is at a span.

    This means byte offsets have drifted between the two parses, and
    nothing derived from them can be trusted.
    """


@define(frozen=True)
class DeadIdentity:
    kind: DeclarationKind
    name: str

    def __str__(self) -> str:
        return f"{self.kind.value} {self.name}"


def _candidates(
    declarations: Iterable[Declaration],
) -> Iterator[tuple[DeadIdentity, ByteRange]]:
    for declaration in declarations:
        match declaration:
            case NamedItem(kind=kind, name=name, name_span=name_span):
                yield DeadIdentity(kind, name), name_span
            case UseDeclaration(leaves=leaves):
                for leaf in leaves:
                    yield DeadIdentity(DeclarationKind.IMPORT, leaf.name), leaf.span
            case ImplBlock() | ModuleBlock():
                pass
            case _:
                assert_never(declaration)


def check_span_text(
    source: bytes,
    identity: DeadIdentity,
    span: ByteRange,
    diagnostic_span: DiagnosticSpan,
) -> None:
    """Fail unless both parses agree on the text at ``span``."""
    actual = decode(span.slice(source))
    if identity.kind == DeclarationKind.IMPORT:
        expected = actual
        # `a::{self}` imports `a` under the name of its parent path.
        if actual != "self" and not actual.endswith(identity.name):
            raise SpanMismatch(
                f"Import {actual!r} at {span} does not end in {identity.name!r}"
            )
    else:
        expected = identity.name
        if actual != expected:
            raise SpanMismatch(
                f"Expected {identity} at {span}, but the source has {actual!r}"
            )
    highlighted = diagnostic_span.highlighted_text
    # rustc only highlights the first line of a multi-line span.
    if highlighted is not None and "\n" not in expected and highlighted != expected:
        raise SpanMismatch(
            f"rustc highlights {highlighted!r} at {span}, "
            f"but the declaration there is {expected!r}"
        )


def find_dead_identities(
    source: bytes,
    declarations: Iterable[Declaration],
    spans: Iterable[DiagnosticSpan],
) -> frozenset[DeadIdentity]:
    """Identities of every declaration whose name rustc reported as dead.

    ``declarations`` and ``spans`` must both have been computed from
    ``source`` itself.
    """
    by_range = {s.byte_range: s for s in spans}
    dead = set()
    for identity, span in _candidates(declarations):
        diagnostic_span = by_range.get(span)
        if diagnostic_span is None:
            continue
        check_span_text(source, identity, span, diagnostic_span)
        dead.add(identity)
    return frozenset(dead)

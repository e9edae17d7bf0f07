"""Declaration-level view of Rust source, built on tree-sitter-rust.

The syntax tree is only ever used to answer one question: which byte
ranges belong to which top-level declaration. Everything rustc reports is
a byte offset into exactly the same bytes we hand to the parser here, so
no normalization happens between the two.

Declarations are modelled as a closed set of variants. Passes dispatch on
them with ``match`` and fail loudly on anything they do not expect.
"""

from collections.abc import Iterator
from enum import Enum
from typing import assert_never

import tree_sitter
import tree_sitter_rust
from attrs import define

from rsbundle.source import BundleError, ByteRange, decode


RUST = tree_sitter.Language(tree_sitter_rust.language())


class ParseError(BundleError):
    """Raised when the source does not parse as Rust."""


class UnsupportedSyntax(BundleError, NotImplementedError):
    """Raised for syntactic shapes that cannot be pruned safely."""


class DeclarationKind(Enum):
    TYPE = "type"
    FUNCTION = "function"
    TRAIT = "trait"
    CONSTANT = "constant"
    IMPLEMENTATION = "implementation"
    IMPORT = "import"
    MODULE = "module"


# Items that rustc's dead_code lint reports by name.
NAMED_ITEM_KINDS: dict[str, DeclarationKind] = {
    "struct_item": DeclarationKind.TYPE,
    "enum_item": DeclarationKind.TYPE,
    "union_item": DeclarationKind.TYPE,
    "type_item": DeclarationKind.TYPE,
    "function_item": DeclarationKind.FUNCTION,
    "trait_item": DeclarationKind.TRAIT,
    "const_item": DeclarationKind.CONSTANT,
    "static_item": DeclarationKind.CONSTANT,
}

TEST_ATTRIBUTE = b"#[cfg(test)]"


@define(frozen=True)
class TypePath:
    """A path naming a type or trait, e.g. ``fmt::Display`` -> ("fmt", "Display")."""

    segments: tuple[str, ...]

    @property
    def is_single_segment(self) -> bool:
        return len(self.segments) == 1

    @property
    def last(self) -> str:
        return self.segments[-1]

    def __str__(self) -> str:
        return "::".join(self.segments)


class ImportShape(Enum):
    PATH = "path"
    RENAME = "rename"
    GLOB = "glob"


@define(frozen=True)
class ImportLeaf:
    """One imported name of a ``use`` tree.

    ``span`` covers the leaf's whole use tree (``a::b::c``, ``a as b``,
    ``a::*``), which is where rustc points unused-import diagnostics.
    """

    name: str
    span: ByteRange
    shape: ImportShape


@define(frozen=True)
class NamedItem:
    """A struct, enum, union, type alias, function, trait, const or static."""

    kind: DeclarationKind
    name: str
    name_span: ByteRange
    full_span: ByteRange
    module: tuple[str, ...] = ()

    def __attrs_post_init__(self) -> None:
        assert self.name_span in self.full_span, (self.name_span, self.full_span)


@define(frozen=True)
class ImplBlock:
    full_span: ByteRange
    # None when the implemented type is not a path (references, tuples, ...)
    self_type: TypePath | None
    trait: TypePath | None = None
    module: tuple[str, ...] = ()

    @property
    def kind(self) -> DeclarationKind:
        return DeclarationKind.IMPLEMENTATION


@define(frozen=True)
class UseDeclaration:
    full_span: ByteRange
    leaves: tuple[ImportLeaf, ...]
    grouped: bool = False
    module: tuple[str, ...] = ()

    @property
    def kind(self) -> DeclarationKind:
        return DeclarationKind.IMPORT

    @property
    def is_simple(self) -> bool:
        """True for ``use a::b::c;``: one leaf, no group, rename or glob."""
        return (
            not self.grouped
            and len(self.leaves) == 1
            and self.leaves[0].shape == ImportShape.PATH
        )


@define(frozen=True)
class ModuleBlock:
    name: str
    name_span: ByteRange
    full_span: ByteRange
    # False for out-of-line ``mod foo;`` declarations.
    inline: bool
    is_test: bool
    # An inline module with no items left in it (comments do not count).
    is_empty: bool
    module: tuple[str, ...] = ()

    @property
    def kind(self) -> DeclarationKind:
        return DeclarationKind.MODULE


Declaration = NamedItem | ImplBlock | UseDeclaration | ModuleBlock


def node_range(node: tree_sitter.Node) -> ByteRange:
    return ByteRange(node.start_byte, node.end_byte)


def node_text(node: tree_sitter.Node, source: bytes) -> str:
    return decode(source[node.start_byte : node.end_byte])


def _is_comment(node: tree_sitter.Node) -> bool:
    return node.type in ("line_comment", "block_comment")


def _is_outer_doc_comment(node: tree_sitter.Node, source: bytes) -> bool:
    text = source[node.start_byte : node.end_byte]
    if node.type == "line_comment":
        return text.startswith(b"///") and not text.startswith(b"////")
    if node.type == "block_comment":
        return (
            text.startswith(b"/**")
            and not text.startswith(b"/***")
            and text != b"/**/"
        )
    return False


def _outer_attributes(
    node: tree_sitter.Node, source: bytes
) -> list[tree_sitter.Node]:
    """Attributes and doc comments preceding ``node``, nearest last.

    Plain comments may sit between them and the item. They are stepped
    over but not attached.
    """
    attached = []
    sibling = node.prev_sibling
    while sibling is not None:
        if sibling.type == "attribute_item" or _is_outer_doc_comment(sibling, source):
            attached.append(sibling)
        elif not _is_comment(sibling):
            break
        sibling = sibling.prev_sibling
    attached.reverse()
    return attached


def item_span(node: tree_sitter.Node, source: bytes) -> ByteRange:
    """The span of an item including its outer attributes and doc comments."""
    attached = _outer_attributes(node, source)
    start = attached[0].start_byte if attached else node.start_byte
    return ByteRange(start, node.end_byte)


def _is_test_attribute(node: tree_sitter.Node, source: bytes) -> bool:
    if node.type != "attribute_item":
        return False
    text = source[node.start_byte : node.end_byte]
    return b"".join(text.split()) == TEST_ATTRIBUTE


def _first_error(node: tree_sitter.Node) -> tree_sitter.Node | None:
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type == "ERROR" or current.is_missing:
            return current
        if current.has_error:
            stack.extend(reversed(current.children))
    return None


def parse_tree(source: bytes) -> tree_sitter.Tree:
    """Parse ``source``, failing on any syntax error."""
    parser = tree_sitter.Parser(RUST)
    tree = parser.parse(source)
    if tree.root_node.has_error:
        error = _first_error(tree.root_node) or tree.root_node
        row, column = error.start_point
        raise ParseError(
            f"Syntax error at line {row + 1}, column {column + 1}: "
            f"{source[error.start_byte : error.end_byte][:40]!r}"
        )
    return tree


def path_segments(node: tree_sitter.Node, source: bytes) -> tuple[str, ...]:
    if node.type in ("scoped_identifier", "scoped_type_identifier"):
        path = node.child_by_field_name("path")
        name = node.child_by_field_name("name")
        assert name is not None
        prefix = path_segments(path, source) if path is not None else ()
        return prefix + (node_text(name, source),)
    return (node_text(node, source),)


def type_path(node: tree_sitter.Node | None, source: bytes) -> TypePath | None:
    if node is None:
        return None
    match node.type:
        case "type_identifier" | "primitive_type":
            return TypePath((node_text(node, source),))
        case "scoped_type_identifier":
            return TypePath(path_segments(node, source))
        case "generic_type":
            return type_path(node.child_by_field_name("type"), source)
        case _:
            return None


def import_leaves(
    node: tree_sitter.Node, source: bytes, parent: str | None = None
) -> Iterator[ImportLeaf]:
    """Yield each imported name of a use tree."""
    span = node_range(node)
    match node.type:
        case "self":
            if parent is None:
                raise UnsupportedSyntax(f"Bare `self` import at {span}")
            yield ImportLeaf(parent, span, ImportShape.PATH)
        case "identifier" | "crate" | "super" | "metavariable":
            yield ImportLeaf(node_text(node, source), span, ImportShape.PATH)
        case "scoped_identifier":
            yield ImportLeaf(path_segments(node, source)[-1], span, ImportShape.PATH)
        case "use_as_clause":
            alias = node.child_by_field_name("alias")
            assert alias is not None
            yield ImportLeaf(node_text(alias, source), span, ImportShape.RENAME)
        case "use_wildcard":
            yield ImportLeaf("*", span, ImportShape.GLOB)
        case "scoped_use_list":
            path = node.child_by_field_name("path")
            items = node.child_by_field_name("list")
            assert items is not None
            prefix = path_segments(path, source)[-1] if path is not None else parent
            yield from import_leaves(items, source, prefix)
        case "use_list":
            for child in node.named_children:
                if not _is_comment(child):
                    yield from import_leaves(child, source, parent)
        case _:
            raise UnsupportedSyntax(f"Unrecognised use tree {node.type} at {span}")


def _is_empty_body(body: tree_sitter.Node) -> bool:
    return all(
        _is_comment(child) or child.type == "inner_attribute_item"
        for child in body.named_children
    )


def _declarations(
    container: tree_sitter.Node, source: bytes, module: tuple[str, ...]
) -> Iterator[Declaration]:
    for node in container.named_children:
        if node.type in NAMED_ITEM_KINDS:
            name = node.child_by_field_name("name")
            assert name is not None
            yield NamedItem(
                kind=NAMED_ITEM_KINDS[node.type],
                name=node_text(name, source),
                name_span=node_range(name),
                full_span=item_span(node, source),
                module=module,
            )
        elif node.type == "impl_item":
            yield ImplBlock(
                full_span=item_span(node, source),
                self_type=type_path(node.child_by_field_name("type"), source),
                trait=type_path(node.child_by_field_name("trait"), source),
                module=module,
            )
        elif node.type == "use_declaration":
            argument = node.child_by_field_name("argument")
            assert argument is not None
            yield UseDeclaration(
                full_span=item_span(node, source),
                leaves=tuple(import_leaves(argument, source)),
                grouped=argument.type in ("scoped_use_list", "use_list"),
                module=module,
            )
        elif node.type == "mod_item":
            name = node.child_by_field_name("name")
            body = node.child_by_field_name("body")
            assert name is not None
            module_name = node_text(name, source)
            yield ModuleBlock(
                name=module_name,
                name_span=node_range(name),
                full_span=item_span(node, source),
                inline=body is not None,
                is_test=any(
                    _is_test_attribute(a, source)
                    for a in _outer_attributes(node, source)
                ),
                is_empty=body is not None and _is_empty_body(body),
                module=module,
            )
            if body is not None:
                yield from _declarations(body, source, module + (module_name,))


def parse(source: bytes) -> list[Declaration]:
    """Parse ``source`` into its declarations, including those of nested modules.

    Items inside function bodies, impl blocks and trait definitions are not
    declarations in this sense and are not returned.
    """
    tree = parse_tree(source)
    return list(_declarations(tree.root_node, source, ()))


def visibility_spans(source: bytes) -> list[ByteRange]:
    """Spans of every bare ``pub`` visibility modifier in ``source``."""
    tree = parse_tree(source)
    result = []
    stack = [tree.root_node]
    while stack:
        node = stack.pop()
        if node.type == "visibility_modifier":
            if source[node.start_byte : node.end_byte] == b"pub":
                result.append(node_range(node))
            continue
        stack.extend(node.children)
    result.sort()
    return result


def describe(declaration: Declaration) -> str:
    """A short human readable label, used in progress output."""
    prefix = "::".join(declaration.module + ("",))
    match declaration:
        case NamedItem(kind=kind, name=name):
            return f"{kind.value} {prefix}{name}"
        case ImplBlock(self_type=self_type, trait=None):
            return f"impl {prefix}{self_type or '<type>'}"
        case ImplBlock(self_type=self_type, trait=trait):
            return f"impl {prefix}{trait} for {self_type or '<type>'}"
        case UseDeclaration(leaves=leaves):
            return f"use {prefix}{', '.join(leaf.name for leaf in leaves)}"
        case ModuleBlock(name=name):
            return f"mod {prefix}{name}"
        case _:
            assert_never(declaration)

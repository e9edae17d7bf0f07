"""Removing ``#[cfg(test)]`` modules.

Unit tests use production code that the shipped binary never calls. Left
in place they would keep that code alive, so test modules go before any
dead code analysis.
"""

from rsbundle.source import ByteRange, remove_spans
from rsbundle.syntax import ModuleBlock, parse


def cfg_test_module_spans(source: bytes) -> list[ByteRange]:
    return [
        d.full_span
        for d in parse(source)
        if isinstance(d, ModuleBlock) and d.is_test
    ]


def remove_test_modules(source: bytes) -> bytes:
    return remove_spans(source, cfg_test_module_spans(source))

"""Downgrading ``pub`` to ``pub(crate)``.

Once libraries are inlined into a binary crate, rustc still treats a
``pub`` item as reachable from outside the crate and never reports it as
dead. Restricting every such item to the crate lets the dead code lint see
the whole program.
"""

from rsbundle.source import replace_spans
from rsbundle.syntax import visibility_spans


CRATE_VISIBILITY = b"pub(crate)"


def downgrade_visibility(source: bytes) -> bytes:
    spans = visibility_spans(source)
    return replace_spans(source, dict.fromkeys(spans, CRATE_VISIBILITY))

from collections.abc import Callable

from rsbundle.passes.testonly import remove_test_modules
from rsbundle.passes.visibility import downgrade_visibility


SourcePass = Callable[[bytes], bytes]


def pre_passes(remove_tests: bool = True, downgrade: bool = True) -> list[SourcePass]:
    """The one-shot passes to run before dead code removal, in order."""
    passes: list[SourcePass] = []
    if remove_tests:
        passes.append(remove_test_modules)
    if downgrade:
        passes.append(downgrade_visibility)
    return passes

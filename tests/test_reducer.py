import io
import sys
from unittest.mock import patch

import pytest

from rsbundle.passes.prune import Pruned
from rsbundle.reducer import (
    DeadCodeReducer,
    MinimizeOptions,
    NonShrinkingPass,
    minimize_code,
    remove_dead_code,
)
from rsbundle.ui import BasicUI, Volume
from tests.helpers import (
    ScriptedCompiler,
    minimize_with,
    quiet_ui,
    remove_dead_code_with,
    rust,
)


DEAD_STRUCT = rust(
    """
    #[derive(Default)]
    struct AliveStruct {
        x: i32,
    }

    trait MyTrait {
        fn mytrait_fun() {}
    }

    struct DeadStruct {}

    impl MyTrait for DeadStruct {}

    #[allow(dead_code)]
    fn main() {
        let s = AliveStruct::default();
        let _ = s.x;
    }
    """
)


async def test_dead_struct_and_its_impl_are_removed():
    result, reducer = await remove_dead_code_with(
        [["struct DeadStruct"], ["trait MyTrait"]], DEAD_STRUCT
    )
    assert b"DeadStruct" not in result
    assert b"MyTrait" not in result
    assert b"struct AliveStruct" in result
    assert b"#[derive(Default)]" in result
    assert b"fn main()" in result
    assert [s.removed for s in reducer.history] == [
        ["type DeadStruct", "impl MyTrait for DeadStruct"],
        ["trait MyTrait"],
        [],
    ]


async def test_removal_cascades_over_iterations():
    source = rust(
        """
        fn helper() -> i32 { 1 }
        fn unused_wrapper() -> i32 { helper() }
        fn main() {}
        """
    )
    result, reducer = await remove_dead_code_with(
        [["fn unused_wrapper"], ["fn helper"]], source
    )
    assert result == b"\n\nfn main() {}\n"
    assert len(reducer.history) == 3
    assert reducer.history[0].removed == ["function unused_wrapper"]
    assert reducer.history[1].removed == ["function helper"]
    sizes = [(s.size_before, s.size_after) for s in reducer.history]
    assert all(after < before for before, after in sizes[:-1])
    assert sizes[-1][0] == sizes[-1][1]


async def test_source_without_dead_code_is_unchanged():
    result, reducer = await remove_dead_code_with([], DEAD_STRUCT)
    assert result == DEAD_STRUCT
    assert len(reducer.history) == 1


async def test_result_is_a_fixpoint():
    result, _ = await remove_dead_code_with([["struct DeadStruct"]], DEAD_STRUCT)
    compiler = ScriptedCompiler([])
    again = await remove_dead_code(result, compiler, quiet_ui())
    assert again == result
    assert compiler.calls == [result]


async def test_test_only_use_is_removed_with_the_module():
    source = rust(
        """
        fn main() {
            println!("{}", 2 + 2);
        }

        use mylib::add;

        mod mylib {
            pub fn add(a: i32, b: i32) -> i32 { a + b }

            #[cfg(test)]
            mod tests {
                use super::*;

                #[test]
                fn test_add() { assert_eq!(add(2, 2), 4); }
            }
        }
        """
    )
    result = await minimize_with([["use mylib::add", "fn add"]], source)
    assert b"add" not in result
    assert b"mod mylib" not in result
    assert b"fn main()" in result


async def test_options_turn_off_pre_passes():
    source = rust(
        """
        pub fn kept() {}

        #[cfg(test)]
        mod tests {}

        fn main() {}
        """
    )
    result = await minimize_with(
        [],
        source,
        MinimizeOptions(
            remove_tests=False, downgrade_visibility=False, remove_empty_modules=False
        ),
    )
    assert result == source


async def test_pre_passes_run_before_the_compiler_sees_the_source():
    source = rust(
        """
        pub fn kept() {}

        #[cfg(test)]
        mod tests {}

        fn main() {}
        """
    )
    compiler = ScriptedCompiler([])
    await minimize_code(source, compiler, ui=quiet_ui())
    (seen,) = compiler.calls
    assert b"cfg(test)" not in seen
    assert b"pub(crate) fn kept" in seen


async def test_formatter_runs_last():
    compiler = ScriptedCompiler([["fn unused"]])
    source = b"fn unused() {}\nfn main() {}\n"
    formatter = [sys.executable, "-c", "import sys; sys.stdout.write(sys.stdin.read().upper())"]
    result = await minimize_code(source, compiler, formatter_command=formatter, ui=quiet_ui())
    assert result == b"\nFN MAIN() {}\n"


async def test_growing_iteration_is_an_error():
    def grow(source, dead, remove_empty_modules=True):
        return Pruned(source=source + b"// more\n", removed=[])

    with patch("rsbundle.reducer.prune", grow):
        with pytest.raises(NonShrinkingPass):
            await remove_dead_code_with([], b"fn main() {}\n")


async def test_progress_is_reported():
    out = io.StringIO()
    reducer = DeadCodeReducer(
        compiler=ScriptedCompiler([["fn unused"]]),
        ui=BasicUI(volume=Volume.debug, file=out),
    )
    await reducer.run(b"fn unused() {}\nfn main() {}\n")
    output = out.getvalue()
    assert "Iteration 1: removed 1 declaration " in output
    assert "  - function unused" in output
    assert "Iteration 2: nothing left to remove" in output

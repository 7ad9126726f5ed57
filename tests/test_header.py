from __future__ import annotations

import itertools
from pathlib import Path

import pytest
from compiletest.errors import ConfigError, MalformedDirective
from compiletest.header import (
    DirectiveParser,
    EarlyProps,
    TestProps,
    expand_variables,
    iter_header,
    parse_normalization_string,
)


def test_ignore_by_target_os(make_config, write_test) -> None:
    config = make_config()

    windows_only = write_test("a.rs", "// ignore-windows", "fn main() {}")
    assert EarlyProps.from_file(config, windows_only).ignore is False

    linux = write_test("b.rs", "// ignore-linux", "fn main() {}")
    assert EarlyProps.from_file(config, linux).ignore is True


@pytest.mark.parametrize(
    "directive",
    ["ignore-x86_64", "ignore-64bit", "ignore-gnu", "ignore-stage1", "ignore-test", "ignore"],
)
def test_ignore_matches_every_tag_kind(make_config, write_test, directive: str) -> None:
    path = write_test("t.rs", f"// {directive}", "fn main() {}")
    assert EarlyProps.from_file(make_config(), path).ignore is True


def test_ignore_cross_compile_only_when_host_differs(make_config, write_test) -> None:
    path = write_test("t.rs", "// ignore-cross-compile")
    assert EarlyProps.from_file(make_config(), path).ignore is False
    cross = make_config(target="aarch64-unknown-linux-gnu")
    assert EarlyProps.from_file(cross, path).ignore is True


def test_ignore_tag_is_a_whole_word(make_config, write_test) -> None:
    path = write_test("t.rs", "// ignore-x86")
    assert EarlyProps.from_file(make_config(), path).ignore is False


def test_revisioned_compile_flags(make_config, write_test) -> None:
    config = make_config()
    path = write_test(
        "rev.rs",
        "// revisions: a b",
        "//[a] compile-flags: -O",
        "//[b] compile-flags: -g",
    )

    assert TestProps.from_file(path, "a", config).compile_flags == ["-O"]
    assert TestProps.from_file(path, "b", config).compile_flags == ["-g"]

    base = TestProps.from_file(path, None, config)
    assert base.revisions == ["a", "b"]
    assert base.compile_flags == []


def test_min_system_llvm_version_gate(make_config, write_test) -> None:
    path = write_test("llvm.rs", "// min-system-llvm-version 8.0")

    old = make_config(llvm_version="7.0", system_llvm=True)
    assert EarlyProps.from_file(old, path).ignore is True

    new = make_config(llvm_version="9.0", system_llvm=True)
    assert EarlyProps.from_file(new, path).ignore is False

    bundled = make_config(llvm_version="7.0", system_llvm=False)
    assert EarlyProps.from_file(bundled, path).ignore is False


def test_llvm_gates(make_config, write_test) -> None:
    min_version = write_test("min.rs", "// min-llvm-version 4.0")
    assert EarlyProps.from_file(make_config(llvm_version="3.9"), min_version).ignore is True
    assert EarlyProps.from_file(make_config(llvm_version="4.0"), min_version).ignore is False
    assert EarlyProps.from_file(make_config(), min_version).ignore is False

    no_system = write_test("nosys.rs", "// no-system-llvm")
    assert EarlyProps.from_file(make_config(system_llvm=True), no_system).ignore is True
    assert EarlyProps.from_file(make_config(), no_system).ignore is False


def test_llvm_gate_without_version_is_an_error(make_config, write_test) -> None:
    path = write_test("bad.rs", "// min-llvm-version")
    with pytest.raises(ConfigError, match="Malformed llvm version"):
        EarlyProps.from_file(make_config(llvm_version="5.0"), path)


def test_early_props_collects_aux_and_should_fail(make_config, write_test) -> None:
    path = write_test(
        "early.rs",
        "// aux-build: first.rs",
        "// should-fail",
        "// aux-build: second.rs",
    )
    props = EarlyProps.from_file(make_config(), path)
    assert props.aux == ["first.rs", "second.rs"]
    assert props.should_fail is True


def test_header_stops_at_first_item(tmp_path: Path) -> None:
    path = tmp_path / "stop.rs"
    path.write_text(
        "// compile-flags: -O\nfn main() {}\n// compile-flags: -g\n",
        encoding="utf-8",
    )
    assert list(iter_header(path)) == ["compile-flags: -O"]


def test_header_filters_revision_lines(tmp_path: Path) -> None:
    path = tmp_path / "rev.rs"
    path.write_text(
        "// shared\n//[a] only-a\n//[b] only-b\nlet x = 1;\n",
        encoding="utf-8",
    )
    assert list(iter_header(path)) == ["shared"]
    assert list(iter_header(path, "a")) == ["shared", "only-a"]
    assert list(iter_header(path, "b")) == ["shared", "only-b"]


def test_header_of_directory_is_empty(tmp_path: Path) -> None:
    assert list(iter_header(tmp_path)) == []


def test_unterminated_revision_tag(make_config, write_test) -> None:
    path = write_test("bad.rs", "//[a compile-flags: -O")
    with pytest.raises(MalformedDirective, match="expected `//\\[foo\\]`"):
        TestProps.from_file(path, None, make_config())


def test_boolean_props_are_order_independent(make_config, write_test) -> None:
    config = make_config()
    lines = [
        "// force-host",
        "// check-stdout",
        "// no-prefer-dynamic",
        "// must-compile-successfully",
    ]
    results = set()
    for index, permutation in enumerate(itertools.permutations(lines)):
        path = write_test(f"perm{index}.rs", *permutation)
        props = TestProps.from_file(path, None, config)
        results.add(
            (
                props.force_host,
                props.check_stdout,
                props.no_prefer_dynamic,
                props.must_compile_successfully,
                props.pretty_expanded,
            )
        )
    assert results == {(True, True, True, True, False)}


def test_list_props_keep_source_order(make_config, write_test) -> None:
    path = write_test(
        "lists.rs",
        "// error-pattern: first",
        "// aux-build: one.rs",
        "// error-pattern: second",
        "// forbid-output: never",
        "// aux-build: two.rs",
        "// check: something",
    )
    props = TestProps.from_file(path, None, make_config())
    assert props.error_patterns == ["first", "second"]
    assert props.aux_builds == ["one.rs", "two.rs"]
    assert props.forbid_output == ["never"]
    assert props.check_lines == ["something"]


def test_first_run_flags_and_pretty_mode_win(make_config, write_test) -> None:
    path = write_test(
        "first.rs",
        "// run-flags: --one",
        "// pretty-mode: expanded",
        "// run-flags: --two",
        "// pretty-mode: identified",
    )
    props = TestProps.from_file(path, None, make_config())
    assert props.run_flags == "--one"
    assert props.pretty_mode == "expanded"


def test_pp_exact_forms(make_config, write_test) -> None:
    named = write_test("named.rs", "// pp-exact: reference.pp")
    assert TestProps.from_file(named, None, make_config()).pp_exact == Path("reference.pp")

    bare = write_test("bare.rs", "// pp-exact")
    assert TestProps.from_file(bare, None, make_config()).pp_exact == Path("bare.rs")


def test_env_directives(make_config, write_test) -> None:
    path = write_test(
        "env.rs",
        "// exec-env: FOO=bar=baz",
        "// exec-env: EMPTY",
        "// rustc-env: RUSTC_BOOTSTRAP=1",
    )
    props = TestProps.from_file(path, None, make_config())
    assert props.exec_env == [("FOO", "bar=baz"), ("EMPTY", "")]
    assert props.rustc_env == [("RUSTC_BOOTSTRAP", "1")]


def test_ambient_exec_env_appended_unless_present(
    make_config, write_test, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("RUST_TEST_NOCAPTURE", "1")
    monkeypatch.setenv("RUST_TEST_THREADS", "4")
    path = write_test("ambient.rs", "// exec-env: RUST_TEST_THREADS=1")

    props = TestProps.from_file(path, None, make_config())
    assert props.exec_env == [("RUST_TEST_THREADS", "1"), ("RUST_TEST_NOCAPTURE", "1")]


def test_custom_normalization_rules(make_config, write_test) -> None:
    path = write_test(
        "norm.rs",
        '// normalize-stderr-test "foo" -> "bar"',
        '// normalize-stdout-64bit "ptr: 8" -> "ptr: N"',
        '// normalize-stderr-windows "a" -> "b"',
        '// normalize-stderr-test "missing -> "quote',
    )
    props = TestProps.from_file(path, None, make_config())
    assert props.normalize_stderr == [("foo", "bar")]
    assert props.normalize_stdout == [("ptr: 8", "ptr: N")]


def test_parse_normalization_string() -> None:
    assert parse_normalization_string('"abc" -> "def"') == ("abc", ' -> "def"')
    assert parse_normalization_string("no quotes") is None
    assert parse_normalization_string('"unterminated') is None


def test_name_value_expands_variables(make_config) -> None:
    config = make_config()
    parser = DirectiveParser(config)
    value = parser.parse_name_value_directive(
        "compile-flags: -L {{build-base}}/lib",
        "compile-flags",
    )
    assert value == f"-L {config.build_base}/lib"
    assert parser.parse_name_value_directive("compile-flagsX: -O", "compile-flags") is None


def test_expand_variables_is_identity_without_placeholders(make_config) -> None:
    config = make_config()
    for value in ["", "-O -g", "{cwd}", "{{ src-base }}"]:
        assert expand_variables(value, config) == value
        assert expand_variables(expand_variables(value, config), config) == value


def test_flag_directives_set_their_props(make_config, write_test) -> None:
    path = write_test(
        "flags.rs",
        "// build-aux-docs",
        "// pretty-expanded",
        "// pretty-compare-only",
        "// check-test-line-numbers-match",
        "// run-pass",
        "// incremental",
    )
    props = TestProps.from_file(path, None, make_config())
    assert props.build_aux_docs
    assert props.pretty_expanded
    assert props.pretty_compare_only
    assert props.check_test_line_numbers_match
    assert props.run_pass
    assert props.incremental
    assert not props.force_host

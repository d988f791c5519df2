import json
import logging

import pytest

from conftest import MEMOIZE_STUB
from memoizer import cli
from memoizer.config import RewriteConfig

SOURCE = """\
__attribute__((annotate("memoize"))) int fib(int n) { return n < 2 ? n : fib(n - 1) + fib(n - 2); }

int plain(int x) { return x; }
"""


def run_cli(tmp_path, *argv):
    # keep the log out of the captured streams
    return cli.main([*argv, "--log-file", str(tmp_path / "memoizer.log"), "-vv"])


def test_rewrites_into_dest(tmp_path, write_source):
    src = write_source(SOURCE)
    dest = tmp_path / "out" / "kernel.cpp"

    assert run_cli(tmp_path, "--src", str(src), "--dest", str(dest), "--clang-args=-std=c++17") == 0

    out = dest.read_text()
    assert "int fib(int n);\n" in out
    assert "int fib__original__(int n) { return n < 2 ? n : fib(n - 1) + fib(n - 2); }" in out
    assert "static const auto proxy = memoize(fib__original__);\n  return proxy(n);\n}" in out
    assert "int plain(int x) { return x; }" in out
    assert "int plain__original__" not in out
    assert src.read_text() == SOURCE


def test_writes_to_stdout_by_default(tmp_path, write_source, capsys):
    src = write_source(SOURCE)
    assert run_cli(tmp_path, "--src", str(src)) == 0
    assert "return proxy(n);" in capsys.readouterr().out


def test_in_place(tmp_path, write_source):
    src = write_source(SOURCE)
    assert run_cli(tmp_path, "--src", str(src), "--in-place") == 0
    assert "fib__original__" in src.read_text()


def test_no_matches_leaves_file_unchanged(tmp_path, write_source):
    code = "int plain(int x) { return x; }\n"
    src = write_source(code)
    dest = tmp_path / "out.cpp"
    assert run_cli(tmp_path, "--src", str(src), "--dest", str(dest)) == 0
    assert dest.read_text() == code


def test_include_and_options(tmp_path, write_source):
    src = write_source(SOURCE.replace('"memoize"', '"cached"'))
    dest = tmp_path / "out.cpp"
    assert run_cli(tmp_path, "--src", str(src), "--dest", str(dest),
                   "--annotation", "cached", "--memoize-fn", "mz::memoize",
                   "--suffix", "_impl", "--cache-name", "cache",
                   "--include", "memoize.hpp") == 0
    out = dest.read_text()
    assert out.startswith('#include "memoize.hpp"\n')
    assert "int fib(int n);\n" in out
    assert "static const auto cache = mz::memoize(fib_impl);" in out


def test_config_file(tmp_path, write_source):
    src = write_source(SOURCE)
    config = tmp_path / "memoizer.json"
    config.write_text(json.dumps({"suffix": "_slow", "clang_args": ["-std=c++14"]}))
    dest = tmp_path / "out.cpp"
    assert run_cli(tmp_path, "--src", str(src), "--dest", str(dest), "--config", str(config)) == 0
    assert "int fib_slow(int n)" in dest.read_text()


def test_report(tmp_path, write_source):
    src = write_source(SOURCE)
    report = tmp_path / "report.json"
    assert run_cli(tmp_path, "--src", str(src), "--dest", str(tmp_path / "out.cpp"),
                   "--report", str(report)) == 0
    entries = json.loads(report.read_text())
    assert len(entries) == 1
    assert entries[0]["function"] == "fib"
    assert entries[0]["mangled_name"] == "fib__original__"
    assert [e["kind"] for e in entries[0]["edits"]] == ["replace", "insert_after", "insert_before"]


def test_dump_ast(tmp_path, write_source):
    src = write_source(SOURCE)
    dump = tmp_path / "ast.txt"
    assert run_cli(tmp_path, "--src", str(src), "--dest", str(tmp_path / "out.cpp"), "--dump-ast", str(dump)) == 0
    assert "Name: fib" in dump.read_text()


def test_missing_source_exits(tmp_path):
    with pytest.raises(SystemExit) as excinfo:
        run_cli(tmp_path, "--src", str(tmp_path / "absent.cpp"))
    assert "No such source file" in str(excinfo.value.code)


def test_parse_error_exits(tmp_path, write_source):
    src = write_source("int broken( { return; }\n")
    with pytest.raises(SystemExit) as excinfo:
        run_cli(tmp_path, "--src", str(src))
    assert str(excinfo.value.code).startswith("memoizer:")


def test_in_place_and_dest_are_exclusive(tmp_path, write_source):
    src = write_source(SOURCE)
    with pytest.raises(SystemExit):
        run_cli(tmp_path, "--src", str(src), "--in-place", "--dest", str(tmp_path / "x.cpp"))


def test_collision_warning(parse, caplog):
    code = ("int fib__original__(int n);\n"
            "__attribute__((annotate(\"memoize\"))) int fib(int n) { return n; }\n")
    tu, src = parse(code)
    config = RewriteConfig()
    _, plans = cli.step_codegen(src, cli.step_match(tu, config), config)
    with caplog.at_level(logging.WARNING, logger="memoizer.cli"):
        cli.check_collisions(tu, plans)
    assert "fib__original__" in caplog.text


def test_step_codegen_handles_every_match(parse):
    code = ("__attribute__((annotate(\"memoize\"))) int a(int x) { return x; }\n"
            "__attribute__((annotate(\"memoize\"))) int b(int y) { return a(y); }\n")
    tu, src = parse(code)
    config = RewriteConfig()
    rw, plans = cli.step_codegen(src, cli.step_match(tu, config), config)
    assert [p.function for p in plans] == ["a", "b"]
    out = rw.commit().decode()
    assert out.count("static const auto proxy") == 2
    assert out.index("int a(int x);") < out.index("int a__original__")
    assert out.index("int b(int y);") < out.index("int b__original__")


def test_step_codegen_adjacent_definitions(parse):
    code = ('__attribute__((annotate("memoize"))) int a(int x){return x;}'
            '__attribute__((annotate("memoize"))) int b(int y){return y;}\n')
    tu, src = parse(MEMOIZE_STUB + code)
    config = RewriteConfig()
    rw, _ = cli.step_codegen(src, cli.step_match(tu, config), config)
    out = rw.commit().decode()

    assert "int a__original__(int x){return x;}" in out
    assert "int b__original__(int y){return y;}" in out
    assert "return proxy(x);\n}" in out
    # the rewritten file must still parse cleanly
    parse(out, "rewritten.cpp")


def test_source_that_is_not_utf8_goes_to_stdout_unchanged(tmp_path, capsysbinary):
    code = b'// caf\xe9\n__attribute__((annotate("memoize"))) int f(int n) { return n; }\n'
    src = tmp_path / "latin1.cpp"
    src.write_bytes(code)

    assert run_cli(tmp_path, "--src", str(src)) == 0
    out = capsysbinary.readouterr().out
    assert out.startswith(b"// caf\xe9\n")
    assert b"int f__original__(int n) { return n; }" in out
    assert b"return proxy(n);\n}\n" in out

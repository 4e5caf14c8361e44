import pytest

from rvemu.fixdep import (
    ConfigTracker,
    FixdepError,
    dep_path,
    fixdep,
    main,
    parse_dep_file,
)


def _reader(files, calls=None):
    def read(name):
        if calls is not None:
            calls.append(name)
        return files[name]
    return read


def test_dep_path_simple_name():
    assert dep_path("FOO_BAR") == "include/config/foo/bar.h"


def test_dep_path_collapses_separators():
    path = dep_path("__FOO___BAR")
    assert path.startswith("include/config/")
    assert "//" not in path
    assert path == dep_path("FOO_BAR")


def test_dep_path_custom_directory():
    assert dep_path("X", "cfg") == "cfg/x.h"


def test_tracker_use_only_once():
    tracker = ConfigTracker()
    first = tracker.use("ABC")
    second = tracker.use("ABC")
    assert first is not None
    assert dep_path("ABC") in first
    assert first.startswith("    $(wildcard ")
    assert second is None
    assert tracker.seen == {"ABC"}


def test_parse_config_text_deduplicates():
    tracker = ConfigTracker()
    out = tracker.parse_config_text("CONFIG_A CONFIG_A CONFIG_B")
    assert out.count(dep_path("A")) == 1
    assert out.count(dep_path("B")) == 1
    assert tracker.seen == {"A", "B"}


def test_parse_config_text_skips_embedded_words():
    tracker = ConfigTracker()
    assert tracker.parse_config_text("XCONFIG_B _CONFIG_C 1CONFIG_D") == ""
    assert tracker.seen == set()


def test_parse_config_text_strips_module_suffix():
    tracker = ConfigTracker()
    tracker.parse_config_text("#ifdef CONFIG_FOO_MODULE")
    assert tracker.seen == {"FOO"}


def test_parse_config_text_ignores_bare_prefix():
    tracker = ConfigTracker()
    assert tracker.parse_config_text("CONFIG_ CONFIG__MODULE") == ""
    assert tracker.seen == set()


def test_parse_dep_file_layout():
    files = {
        "foo.c": "int x = CONFIG_X;\n",
        "include/a.h": "#define Y CONFIG_Y\n#if CONFIG_X\n",
    }
    calls = []
    text = "foo.o: foo.c include/a.h \\\n include/generated/autoconf.h\n"
    out = parse_dep_file(text, "foo.o", _reader(files, calls))
    assert out.startswith("source_foo.o := foo.c\n\ndeps_foo.o := \\\n")
    assert "  include/a.h \\\n" in out
    assert "autoconf" not in out
    assert out.count(dep_path("X")) == 1
    assert out.count(dep_path("Y")) == 1
    assert out.endswith("\nfoo.o: $(deps_foo.o)\n\n$(deps_foo.o):\n")
    assert calls == ["foo.c", "include/a.h"]


def test_parse_dep_file_only_first_target_is_source():
    files = {"a.c": "", "b.c": "", "c.h": ""}
    out = parse_dep_file("a.o: a.c c.h\nb.o: b.c\n", "a.o", _reader(files))
    assert out.count("source_a.o") == 1
    assert "  b.c" not in out
    assert "  c.h \\\n" in out


def test_parse_dep_file_without_target_fails():
    with pytest.raises(FixdepError) as info:
        parse_dep_file("foo.c bar.h", "foo.o", _reader({"foo.c": "", "bar.h": ""}))
    assert info.value.exit_code == 1


def test_fixdep_reads_files(tmp_path):
    header = tmp_path / "h.h"
    header.write_text("CONFIG_ZED\n")
    source = tmp_path / "m.c"
    source.write_text("\n")
    depfile = tmp_path / "m.d"
    depfile.write_text(f"m.o: {source} {header}\n")
    out = fixdep(str(depfile), "m.o", "gcc -c m.c")
    assert out.startswith("cmd_m.o := gcc -c m.c\n\n")
    assert f"source_m.o := {source}\n" in out
    assert dep_path("ZED") in out


def test_fixdep_missing_file(tmp_path):
    with pytest.raises(FixdepError) as info:
        fixdep(str(tmp_path / "absent.d"), "x.o", "cc")
    assert info.value.exit_code == 2


def test_main_usage_error(capsys):
    assert main(["only", "two"]) == 1
    assert "Usage: fixdep" in capsys.readouterr().err


def test_main_missing_depfile(tmp_path, capsys):
    assert main([str(tmp_path / "none.d"), "t.o", "cc"]) == 2
    assert "error opening file" in capsys.readouterr().err


def test_main_success(tmp_path, capsys):
    source = tmp_path / "s.c"
    source.write_text("CONFIG_Q\n")
    depfile = tmp_path / "s.d"
    depfile.write_text(f"s.o: {source}\n")
    assert main([str(depfile), "s.o", "cc"]) == 0
    out = capsys.readouterr().out
    assert out.startswith("cmd_s.o := cc\n\n")
    assert dep_path("Q") in out
    assert out.endswith("$(deps_s.o):\n")
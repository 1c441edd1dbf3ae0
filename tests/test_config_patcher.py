from __future__ import annotations

import pytest

from boardkit.build_config import load_build_config
from boardkit.config_patcher import (
    KernelConfig,
    apply_options,
    clear_option,
    normalize_key,
    plan_options,
    set_option,
)

SAMPLE = """#
# Automatically generated file; DO NOT EDIT.
#
CONFIG_ARM=y
# CONFIG_FOO is not set
CONFIG_LOCALVERSION="-board"

CONFIG_HZ=100
"""


def test_normalize_key_adds_prefix_once():
    assert normalize_key("FOO") == "CONFIG_FOO"
    assert normalize_key("CONFIG_FOO") == "CONFIG_FOO"


def test_unpatched_file_round_trips_exactly():
    assert KernelConfig.parse(SAMPLE).dumps() == SAMPLE
    no_newline = "CONFIG_A=y\n# comment"
    assert KernelConfig.parse(no_newline).dumps() == no_newline


def test_set_twice_leaves_one_line(tmp_path):
    p = tmp_path / ".config"
    p.write_text(SAMPLE, encoding="utf-8")

    set_option(p, "FOO")
    once = p.read_text(encoding="utf-8")
    set_option(p, "FOO")
    twice = p.read_text(encoding="utf-8")

    assert once == twice
    lines = twice.splitlines()
    assert lines.count("CONFIG_FOO=y") == 1
    assert not any("CONFIG_FOO is not set" in line for line in lines)


def test_set_then_clear_leaves_one_disabled_line(tmp_path):
    p = tmp_path / ".config"
    p.write_text(SAMPLE, encoding="utf-8")

    set_option(p, "FOO")
    clear_option(p, "FOO")
    clear_option(p, "FOO")

    lines = p.read_text(encoding="utf-8").splitlines()
    assert lines.count("# CONFIG_FOO is not set") == 1
    assert not any(line.startswith("CONFIG_FOO=") for line in lines)


def test_unrelated_lines_keep_order_and_text():
    cfg = KernelConfig.parse(SAMPLE)
    cfg.set("FOO")
    cfg.set("NEW_THING", "m")

    out = cfg.dumps().splitlines()
    assert out == [
        "#",
        "# Automatically generated file; DO NOT EDIT.",
        "#",
        "CONFIG_ARM=y",
        "CONFIG_FOO=y",
        'CONFIG_LOCALVERSION="-board"',
        "",
        "CONFIG_HZ=100",
        "CONFIG_NEW_THING=m",
    ]


def test_patch_collapses_duplicate_keys():
    cfg = KernelConfig.parse("CONFIG_X=y\nCONFIG_Y=y\n# CONFIG_X is not set\nCONFIG_X=m\n")
    cfg.set("X", "n2")
    assert cfg.dumps() == "CONFIG_X=n2\nCONFIG_Y=y\n"


def test_clear_missing_key_appends_marker():
    cfg = KernelConfig.parse("CONFIG_ARM=y\n")
    cfg.clear("MODULE_SIG")
    assert cfg.dumps() == "CONFIG_ARM=y\n# CONFIG_MODULE_SIG is not set\n"
    assert cfg.get("MODULE_SIG") is None


def test_get_reports_enabled_values_only():
    cfg = KernelConfig.parse(SAMPLE)
    assert cfg.get("ARM") == "y"
    assert cfg.get("LOCALVERSION") == '"-board"'
    assert cfg.get("FOO") is None
    assert cfg.get("NEVER_MENTIONED") is None


def test_clear_acts_on_the_given_file(tmp_path):
    a = tmp_path / "a.config"
    b = tmp_path / "b.config"
    a.write_text("CONFIG_FOO=y\n", encoding="utf-8")
    b.write_text("CONFIG_FOO=y\n", encoding="utf-8")

    clear_option(b, "FOO")

    assert a.read_text(encoding="utf-8") == "CONFIG_FOO=y\n"
    assert b.read_text(encoding="utf-8") == "# CONFIG_FOO is not set\n"


def test_apply_options_batch(tmp_path):
    p = tmp_path / ".config"
    p.write_text("CONFIG_STATIC is junk\n# CONFIG_STATIC is not set\nCONFIG_TC=y\n", encoding="utf-8")

    apply_options(p, set_opts={"STATIC": True, "FEATURE_X": "m", "OFF": False}, clear_opts=["TC"])

    assert p.read_text(encoding="utf-8") == (
        "CONFIG_STATIC is junk\n"
        "CONFIG_STATIC=y\n"
        "# CONFIG_TC is not set\n"
        "CONFIG_FEATURE_X=m\n"
        "# CONFIG_OFF is not set\n"
    )


def test_plan_options_normalizes_and_orders_edits():
    edits = plan_options({"STATIC": True, "CMDLINE": '"console=ttyO0"', "TC": False}, ["FEATURE_X"])
    assert edits == [
        ("CONFIG_STATIC", "y"),
        ("CONFIG_CMDLINE", '"console=ttyO0"'),
        ("CONFIG_TC", None),
        ("CONFIG_FEATURE_X", None),
    ]


@pytest.mark.parametrize("value", [0x80000000, 100, 1.5, None])
def test_non_string_values_are_rejected_without_writing(tmp_path, value):
    p = tmp_path / ".config"
    p.write_text("CONFIG_ARM=y\n", encoding="utf-8")

    with pytest.raises(ValueError, match="quote it"):
        apply_options(p, set_opts={"ARM": "y", "PHYS_OFFSET": value})

    assert p.read_text(encoding="utf-8") == "CONFIG_ARM=y\n"


def test_yaml_hex_and_null_values_must_be_quoted(tmp_path):
    cfg_file = tmp_path / "board.yaml"
    cfg_file.write_text(
        "kernel:\n"
        "  options:\n"
        "    set:\n"
        "      PHYS_OFFSET: 0x80000000\n"
        "      CMDLINE: ~\n",
        encoding="utf-8",
    )
    kconfig = tmp_path / ".config"
    kconfig.write_text("# CONFIG_PHYS_OFFSET is not set\n", encoding="utf-8")
    set_opts = load_build_config(str(cfg_file)).kernel_set_options

    with pytest.raises(ValueError, match="CONFIG_PHYS_OFFSET"):
        apply_options(kconfig, set_opts=set_opts)
    assert kconfig.read_text(encoding="utf-8") == "# CONFIG_PHYS_OFFSET is not set\n"

    with pytest.raises(ValueError, match="CONFIG_CMDLINE"):
        apply_options(kconfig, set_opts={"CMDLINE": None})


def test_quoted_yaml_values_are_written_verbatim(tmp_path):
    cfg_file = tmp_path / "board.yaml"
    cfg_file.write_text(
        "kernel:\n"
        "  options:\n"
        "    set:\n"
        "      PHYS_OFFSET: \"0x80000000\"\n"
        "      LOCALVERSION: '\"-board\"'\n",
        encoding="utf-8",
    )
    kconfig = tmp_path / ".config"
    kconfig.write_text("", encoding="utf-8")

    apply_options(kconfig, set_opts=load_build_config(str(cfg_file)).kernel_set_options)

    lines = kconfig.read_text(encoding="utf-8").splitlines()
    assert "CONFIG_PHYS_OFFSET=0x80000000" in lines
    assert 'CONFIG_LOCALVERSION="-board"' in lines

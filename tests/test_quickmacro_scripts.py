import logging
import textwrap

import pytest

from quickmacro.quickmacro_scripts import (
    get_settings_spec, initialize_user_script_settings, load_user_script, split_member_access,
)


def write_script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(textwrap.dedent(body), encoding="utf-8")
    return path


def test_exports_attribute_wins(tmp_path):
    write_script(tmp_path, "exp.py", """
        def helper(params):
            return "helper"

        exports = {"run": helper}
        default = "ignored"
    """)
    exports = load_user_script("exp.py", str(tmp_path))
    assert list(exports) == ["run"]
    assert exports["run"](None) == "helper"


def test_default_attribute(tmp_path):
    write_script(tmp_path, "dflt.py", """
        async def default(params):
            return 1
    """)
    exports = load_user_script(str(tmp_path / "dflt.py"))
    assert callable(exports)


def test_public_members_become_object_export(tmp_path):
    write_script(tmp_path, "members.py", """
        import os
        from pathlib import Path

        GREETING = "hi"
        _private = 1

        def first(params):
            return "first"

        class Tool:
            pass
    """)
    exports = load_user_script("members.py", str(tmp_path))
    assert list(exports) == ["GREETING", "first", "Tool"]


def test_missing_script_returns_none(tmp_path, caplog):
    with caplog.at_level(logging.ERROR):
        assert load_user_script("nope.py", str(tmp_path)) is None
    assert "failed to load file nope.py" in caplog.text


def test_script_errors_propagate(tmp_path):
    write_script(tmp_path, "bad.py", """
        raise RuntimeError("broken script")
    """)
    with pytest.raises(RuntimeError, match="broken script"):
        load_user_script("bad.py", str(tmp_path))


def test_each_load_executes_fresh(tmp_path):
    path = write_script(tmp_path, "counter.py", """
        exports = 1
    """)
    assert load_user_script(str(path)) == 1
    path.write_text("exports = 2222\n", encoding="utf-8")
    assert load_user_script(str(path)) == 2222


@pytest.mark.parametrize("raw,expected", [
    ("M", ("M", [])),
    ("M::f", ("M", ["f"])),
    (" M :: a :: b ", ("M", ["a", "b"])),
    ("M::::f", ("M", ["f"])),
    ("", (None, [])),
])
def test_split_member_access(raw, expected):
    assert split_member_access(raw) == expected


def test_settings_defaults_fill_only_unset_values():
    spec = {"options": {
        "a": {"defaultValue": "A"},
        "b": {"defaultValue": "B"},
        "c": {"type": "text"},
    }}
    settings = {"b": "kept"}
    initialize_user_script_settings(settings, spec)
    assert settings == {"b": "kept", "a": "A"}


def test_get_settings_spec():
    assert get_settings_spec({"settings": {"options": {}}}) == {"options": {}}
    assert get_settings_spec({"settings": "nope"}) is None
    assert get_settings_spec(lambda p: None) is None

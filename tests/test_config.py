import logging

import pytest

from config import FuzzConfig, load_config, read_config_file
from errors import ConfigError


def test_defaults():
    cfg = load_config()
    assert cfg.max_depth == 10
    assert cfg.interval_ms == 5.0
    assert cfg.iterations_per_batch == 30
    assert cfg.throttle_ms == 10.0
    assert cfg.operation_roster == []
    assert cfg.random_strings == 100
    assert cfg.random_string_length == 10
    assert cfg.seed is None


def test_unknown_keys_are_ignored_with_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="config"):
        cfg = FuzzConfig.from_mapping({"max_depth": 3, "bogus": 1})
    assert cfg.max_depth == 3
    assert "bogus" in caplog.text


@pytest.mark.parametrize("key,value,expected", [
    ("max_depth", 1000, 64),
    ("max_depth", -1, 0),
    ("max_depth", "nope", 10),
    ("interval_ms", 0, 0.1),
    ("interval_ms", float("nan"), 5.0),
    ("max_in_flight", 0, 1),
    ("throttle_ms", -3, 0.0),
])
def test_values_are_clamped(key, value, expected):
    assert getattr(FuzzConfig.from_mapping({key: value}), key) == expected


def test_roster_accepts_comma_string():
    cfg = FuzzConfig.from_mapping({"operation_roster": "styles, events,,content"})
    assert cfg.operation_roster == ["styles", "events", "content"]


def test_invalid_seed_is_dropped():
    assert FuzzConfig.from_mapping({"seed": "abc"}).seed is None
    assert FuzzConfig.from_mapping({"seed": "12"}).seed == 12


def test_merged_keeps_base_values():
    base = FuzzConfig.from_mapping({"max_depth": 4})
    cfg = base.merged({"interval_ms": 20})
    assert cfg.max_depth == 4 and cfg.interval_ms == 20.0
    assert base.interval_ms == 5.0


def test_toml_file_with_table(tmp_path):
    path = tmp_path / "fuzz.toml"
    path.write_text('[racefuzz]\nmax_depth = 2\noperation_roster = ["styles"]\n')
    cfg = load_config(str(path))
    assert cfg.max_depth == 2
    assert cfg.operation_roster == ["styles"]


def test_json_file_with_comments(tmp_path):
    path = tmp_path / "fuzz.json"
    path.write_text('{\n  // shallow\n  "max_depth": 1, /* fast */ "interval_ms": 2.5\n}\n')
    cfg = load_config(str(path))
    assert cfg.max_depth == 1
    assert cfg.interval_ms == 2.5


def test_overrides_win_and_none_is_skipped(tmp_path):
    path = tmp_path / "fuzz.json"
    path.write_text('{"max_depth": 1, "interval_ms": 2.5}')
    cfg = load_config(str(path), {"max_depth": 7, "interval_ms": None})
    assert cfg.max_depth == 7
    assert cfg.interval_ms == 2.5


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigError):
        load_config(str(tmp_path / "absent.toml"))


@pytest.mark.parametrize("name,body", [
    ("bad.json", "{not json"),
    ("bad.toml", "max_depth = = 3"),
    ("list.json", "[1, 2]"),
])
def test_unparseable_file_raises(tmp_path, name, body):
    path = tmp_path / name
    path.write_text(body)
    with pytest.raises(ConfigError):
        read_config_file(str(path))

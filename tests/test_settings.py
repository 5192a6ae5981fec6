import pytest

from amgr.settings import ConfigError, load_settings, parse_bool, parse_duration


@pytest.mark.parametrize(
    "raw,seconds",
    [("10s", 10.0), ("1m30s", 90.0), ("500ms", 0.5), ("2h", 7200.0), ("2.5", 2.5), ("1h1m1s", 3661.0)],
)
def test_parse_duration(raw, seconds):
    assert parse_duration(raw) == pytest.approx(seconds)


@pytest.mark.parametrize("raw", ["", "ten seconds", "10x", "s10", "10s garbage"])
def test_parse_duration_rejects_garbage(raw):
    with pytest.raises(ConfigError):
        parse_duration(raw)


def test_parse_bool_accepts_go_style_true():
    assert parse_bool("t") and parse_bool("TRUE") and parse_bool("1")
    assert not parse_bool("false") and not parse_bool("")


def test_defaults(tmp_path):
    s = load_settings({"dir": str(tmp_path)}, environ={})
    assert s.port == 8900
    assert s.serve_addr == ":8900"
    assert s.external_dir == str(tmp_path)
    assert s.marathon_hosts == "localhost:8080"
    assert s.marathon_query_interval_s == 10.0
    assert s.queue_capacity == 100
    assert s.restart_batch_count == 5
    assert s.restart_batch_timeout_s == 5.0
    assert s.flush_on_stop is True


def test_env_overrides_cli(tmp_path):
    env = {
        "AM_PORT": "9100",
        "AM_DEBUG": "true",
        "AM_MARATHON_QUERY_INTERVAL": "1m",
        "AM_EXTERNAL_DIR": "/data/models",
        "AM_KEY_MODE": "name",
    }
    s = load_settings({"dir": str(tmp_path), "port": 8000, "addr": "127.0.0.1"}, environ=env)
    assert s.port == 9100
    assert s.addr == "127.0.0.1"
    assert s.debug is True
    assert s.marathon_query_interval_s == 60.0
    assert s.external_dir == "/data/models"
    assert s.host_dir == "/data/models"
    assert s.key_mode == "name"


def test_none_overrides_are_ignored(tmp_path):
    s = load_settings({"dir": str(tmp_path), "port": None}, environ={})
    assert s.port == 8900


@pytest.mark.parametrize(
    "overrides,env",
    [
        ({"dir": "/definitely/not/here"}, {}),
        ({}, {"AM_PORT": "eighty"}),
        ({}, {"AM_MARATHON_QUERY_INTERVAL": "soon"}),
        ({}, {"AM_ORCHESTRATOR": "nomad"}),
        ({}, {"AM_KEY_MODE": "both"}),
        ({"queue_capacity": 0}, {}),
        ({"bogus": 1}, {}),
    ],
)
def test_invalid_configuration(tmp_path, overrides, env):
    values = {"dir": str(tmp_path)}
    values.update(overrides)
    with pytest.raises(ConfigError):
        load_settings(values, environ=env)

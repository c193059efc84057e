import pytest

from stepy.stepy_config import RunnerConfig


def test_defaults():
    cfg = RunnerConfig()
    assert cfg.step_delay == 0.1
    assert cfg.error_prefix == "main_script.py"
    assert cfg.reset_scene is True
    assert cfg.max_call_depth == 100


def test_from_yaml(tmp_path):
    path = tmp_path / "stepy.yaml"
    path.write_text("step-delay: 0.5\nerror_prefix: level1.py\nreset-scene: false\n", encoding="utf-8")
    cfg = RunnerConfig.from_yaml(path)
    assert cfg.step_delay == 0.5
    assert cfg.error_prefix == "level1.py"
    assert cfg.reset_scene is False
    assert cfg.max_call_depth == 100


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert RunnerConfig.from_yaml(path) == RunnerConfig()


def test_yaml_must_be_a_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n", encoding="utf-8")
    with pytest.raises(ValueError):
        RunnerConfig.from_yaml(path)


def test_unknown_keys_are_rejected():
    with pytest.raises(ValueError, match="unknown config keys: speed"):
        RunnerConfig.from_mapping({"speed": 2})


@pytest.mark.parametrize("data", [
    {"step_delay": -1},
    {"max_call_depth": 0},
    {"reset_scene": "yes"},
])
def test_invalid_values(data):
    with pytest.raises(ValueError):
        RunnerConfig.from_mapping(data)


def test_env_overrides():
    env = {
        "STEPY_STEP_DELAY": "0",
        "STEPY_RESET_SCENE": "false",
        "STEPY_MAX_CALL_DEPTH": "25",
        "STEPY_ERROR_PREFIX": "run.py",
        "UNRELATED": "1",
    }
    cfg = RunnerConfig().with_env(env)
    assert cfg.step_delay == 0.0
    assert cfg.reset_scene is False
    assert cfg.max_call_depth == 25
    assert cfg.error_prefix == "run.py"


def test_env_without_overrides_returns_same_config():
    cfg = RunnerConfig()
    assert cfg.with_env({}) is cfg

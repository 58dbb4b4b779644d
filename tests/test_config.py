import importlib

import pytest

from techflix_rec import config


@pytest.fixture(autouse=True)
def restore_config(monkeypatch):
    """Reload config from the untouched environment once each test is done."""
    yield
    monkeypatch.undo()
    importlib.reload(config)


def test_env_overrides_and_validation(monkeypatch):
    monkeypatch.setenv("TECHFLIX_RECOMMENDATION_LIMIT", "25")
    monkeypatch.setenv("TECHFLIX_INFLUENCER_LIMIT", "0")  # should clamp to min
    monkeypatch.setenv("TECHFLIX_POOL_SIZE", "-4")

    cfg = importlib.reload(config)

    assert cfg.RECOMMENDATION_LIMIT == 25
    assert cfg.INFLUENCER_LIMIT == 1
    assert cfg.POOL_MAX_SIZE == 1


def test_db_path_respects_env(monkeypatch, tmp_path):
    db_path = tmp_path / "custom.db"
    monkeypatch.setenv("TECHFLIX_DB", str(db_path))

    cfg = importlib.reload(config)

    assert cfg.DB_PATH == db_path


def test_invalid_env_values_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("TECHFLIX_RECOMMENDATION_LIMIT", "ten")
    monkeypatch.setenv("TECHFLIX_INFLUENCER_LIMIT", "1.5")

    cfg = importlib.reload(config)

    assert cfg.RECOMMENDATION_LIMIT == 10
    assert cfg.INFLUENCER_LIMIT == 10


def test_overlap_threshold_constants():
    cfg = importlib.reload(config)
    assert (cfg.OVERLAP_NUMERATOR, cfg.OVERLAP_OFFSET, cfg.OVERLAP_DENOMINATOR) == (3, 3, 4)


def test_overrides_do_not_leak_into_later_tests():
    # Runs after the override tests above; the module must hold defaults again
    assert config.RECOMMENDATION_LIMIT == 10
    assert config.INFLUENCER_LIMIT == 10
    assert config.POOL_MAX_SIZE == 50
    assert config.DB_PATH.name != "custom.db"

"""Tests for configuration loading."""

import pytest

from bucketsync.config import (
    ENV_INTERVAL,
    ENV_LOCAL,
    ENV_MIN_TIME_DELTA,
    ENV_REMOTE,
    Config,
)
from bucketsync.exceptions import SyncConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (ENV_LOCAL, ENV_REMOTE, ENV_INTERVAL, ENV_MIN_TIME_DELTA):
        monkeypatch.delenv(key, raising=False)


class TestConfig:
    """Tests for Config."""

    def test_defaults(self, tmp_path):
        config = Config(config_dir=tmp_path)

        assert config.local_dir is None
        assert config.remote_url is None
        assert config.interval == 5.0
        assert config.min_time_delta == 1.0
        assert not config.is_configured()

    def test_save_and_reload(self, tmp_path):
        config = Config(config_dir=tmp_path / "bucketsync")
        config.save(**{ENV_LOCAL: "/data", ENV_REMOTE: "s3://bucket"})

        reloaded = Config(config_dir=tmp_path / "bucketsync")

        assert reloaded.local_dir == "/data"
        assert reloaded.remote_url == "s3://bucket"
        assert reloaded.is_configured()
        assert reloaded.get_config_path() == tmp_path / "bucketsync" / "config"

    def test_environment_overrides_file(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config"
        config_file.write_text(
            "# comment\n"
            f"{ENV_REMOTE}=s3://from-file\n"
            f"{ENV_INTERVAL}=20\n"
        )
        monkeypatch.setenv(ENV_REMOTE, "gs://from-env")

        config = Config(config_dir=tmp_path)

        assert config.remote_url == "gs://from-env"
        assert config.interval == 20.0

    def test_quoted_values(self, tmp_path):
        (tmp_path / "config").write_text(f'{ENV_LOCAL}="/my dir"\n')
        assert Config(config_dir=tmp_path).local_dir == "/my dir"

    def test_invalid_number(self, tmp_path, monkeypatch):
        monkeypatch.setenv(ENV_MIN_TIME_DELTA, "soon")
        with pytest.raises(SyncConfigError):
            Config(config_dir=tmp_path).min_time_delta

    def test_negative_number(self, tmp_path, monkeypatch):
        monkeypatch.setenv(ENV_INTERVAL, "-3")
        with pytest.raises(SyncConfigError):
            Config(config_dir=tmp_path).interval

    def test_save_rejects_unknown_keys(self, tmp_path):
        with pytest.raises(SyncConfigError):
            Config(config_dir=tmp_path).save(API_KEY="secret")

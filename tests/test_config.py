"""Tests for environment-driven configuration."""

from __future__ import annotations

import os

import pytest

from easyacme.utils import config as config_module
from easyacme.utils.config import ConfigValidationError, load_config, load_dotenv


@pytest.fixture()
def env(monkeypatch, tmp_path):
	monkeypatch.setattr(os, "environ", dict(os.environ))
	for name in list(os.environ):
		if name.startswith("EASYACME_"):
			monkeypatch.delenv(name)
	monkeypatch.setenv("EASYACME_DATA_DIR", str(tmp_path / "data"))
	monkeypatch.setenv("EASYACME_SECRET_KEY", "pepper")
	# Keep a developer's settings.env out of the picture
	monkeypatch.setattr(config_module, "load_dotenv", lambda dotenv_path=None: None)
	return monkeypatch


class TestLoadConfig:
	def test_defaults(self, env, tmp_path):
		cfg = load_config()
		assert cfg.data_dir == (tmp_path / "data").resolve()
		assert cfg.db_path.name == "easyacme.db"
		assert cfg.data_dir.is_dir()
		assert cfg.dns_propagation_check is True
		assert cfg.dns_nameservers == ("8.8.8.8", "1.1.1.1")
		assert cfg.dns_retry_attempts == 4
		assert cfg.session_ttl == 3600

	def test_overrides(self, env):
		env.setenv("EASYACME_DNS_PROPAGATION_CHECK", "off")
		env.setenv("EASYACME_DNS_NAMESERVERS", "9.9.9.9, 208.67.222.222 ,")
		env.setenv("EASYACME_ACME_POLL_TIMEOUT", "45")
		env.setenv("EASYACME_PORT", "9443")
		env.setenv("LOG_LEVEL", "debug")
		cfg = load_config()
		assert cfg.dns_propagation_check is False
		assert cfg.dns_nameservers == ("9.9.9.9", "208.67.222.222")
		assert cfg.acme_poll_timeout == 45.0
		assert cfg.port == 9443
		assert cfg.log_level == "DEBUG"

	def test_bad_number(self, env):
		env.setenv("EASYACME_ISSUANCE_TIMEOUT", "soon")
		with pytest.raises(ConfigValidationError):
			load_config()

	def test_below_minimum(self, env):
		env.setenv("EASYACME_SESSION_TTL", "5")
		with pytest.raises(ConfigValidationError):
			load_config()

	def test_data_dir_is_a_file(self, env, tmp_path):
		target = tmp_path / "occupied"
		target.write_text("x")
		env.setenv("EASYACME_DATA_DIR", str(target))
		with pytest.raises(ConfigValidationError):
			load_config()


class TestDotenv:
	def test_environment_wins(self, monkeypatch, tmp_path):
		monkeypatch.setattr(os, "environ", dict(os.environ))
		monkeypatch.setenv("EASYACME_HOST", "127.0.0.1")
		path = tmp_path / "settings.env"
		path.write_text(
			"# comment\n"
			"EASYACME_HOST=0.0.0.0\n"
			"export EASYACME_PORT=8443  # inline\n"
			"EASYACME_ADMIN_TOKEN='quoted # not a comment'\n",
			encoding="utf-8",
		)
		load_dotenv(path)
		assert os.environ["EASYACME_HOST"] == "127.0.0.1"
		assert os.environ["EASYACME_PORT"] == "8443"
		assert os.environ["EASYACME_ADMIN_TOKEN"] == "quoted # not a comment"

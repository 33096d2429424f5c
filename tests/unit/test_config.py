"""
Unit tests for configuration loading.
"""

import json
import os

import pytest

from httppush.config import (
    ConfigError,
    ConfigNotFoundError,
    ConfigNotJSONError,
    ConfigValidationError,
    ServerConfig,
    load_config,
)


def write_config(tmp_path, data, name="config.json"):
    path = tmp_path / name
    path.write_text(json.dumps(data))
    return str(path)


class TestLoadConfig:

    def test_missing_file(self):
        with pytest.raises(ConfigNotFoundError) as exc_info:
            load_config("incorrect.wrong")

        error = exc_info.value
        assert isinstance(error, FileNotFoundError)
        assert isinstance(error, ConfigError)
        assert error.path == "incorrect.wrong"

    def test_not_json(self, sample_html):
        with pytest.raises(ConfigNotJSONError) as exc_info:
            load_config(sample_html)

        assert isinstance(exc_info.value, ValueError)
        assert not isinstance(exc_info.value, FileNotFoundError)

    def test_json_but_not_an_object(self, tmp_path):
        with pytest.raises(ConfigNotJSONError):
            load_config(write_config(tmp_path, ["Host", "Port"]))

    def test_sample_config(self, sample_dir):
        config = load_config(str(sample_dir / "sample_config.json"))

        assert config.host == "127.0.0.1"
        assert config.port == 0
        assert config.tls_enabled is False

    def test_historical_keys(self, tmp_path):
        config = load_config(write_config(tmp_path, {
            "Host": "localhost",
            "Port": "8443",
            "RootCA": "/etc/certs/ca.pem",
            "CertFile": "/etc/certs/cert.pem",
            "KeyFile": "/etc/certs/key.pem",
        }))

        assert config.address == ("localhost", 8443)
        assert config.root_ca == "/etc/certs/ca.pem"
        assert config.cert_file == "/etc/certs/cert.pem"
        assert config.key_file == "/etc/certs/key.pem"
        assert config.tls_enabled is True

    def test_snake_case_keys_and_int_port(self, tmp_path):
        config = load_config(write_config(tmp_path, {
            "host": "0.0.0.0",
            "port": 9000,
            "max_workers": 2,
            "keep_alive_timeout": 1.5,
        }))

        assert config.port == 9000
        assert config.max_workers == 2
        assert config.keep_alive_timeout == 1.5

    def test_unknown_keys_ignored(self, tmp_path):
        config = load_config(write_config(tmp_path, {"Port": "80", "Colour": "blue"}))
        assert config.port == 80

    def test_relative_cert_paths_resolve_against_config_dir(self, tmp_path):
        config = load_config(write_config(tmp_path, {
            "CertFile": "certs/cert.pem",
            "KeyFile": "certs/key.pem",
        }))

        assert config.cert_file == os.path.join(str(tmp_path), "certs", "cert.pem")
        assert config.key_file == os.path.join(str(tmp_path), "certs", "key.pem")

    def test_empty_cert_paths_mean_unset(self, tmp_path):
        config = load_config(write_config(tmp_path, {"CertFile": "", "KeyFile": ""}))
        assert config.tls_enabled is False

    @pytest.mark.parametrize("data", [
        {"max_workers": "four"},
        {"max_workers": True},
        {"keep_alive_timeout": None},
        {"buffer_size": "big"},
        {"timeout": [30]},
        {"keep_alive": "yes"},
        {"Host": 127},
        {"CertFile": 42},
    ])
    def test_wrong_value_types(self, tmp_path, data):
        with pytest.raises(ConfigValidationError):
            load_config(write_config(tmp_path, data))

    def test_numeric_strings_are_converted(self, tmp_path):
        config = load_config(write_config(tmp_path, {
            "max_workers": "4",
            "keep_alive_timeout": "2.5",
            "timeout": None,
        }))

        assert config.max_workers == 4
        assert config.keep_alive_timeout == 2.5
        assert config.timeout is None

    def test_invalid_port(self, tmp_path):
        with pytest.raises(ConfigValidationError):
            load_config(write_config(tmp_path, {"Port": "eighty"}))

        with pytest.raises(ConfigValidationError):
            load_config(write_config(tmp_path, {"Port": 70000}))


class TestServerConfig:

    def test_defaults_are_valid(self):
        config = ServerConfig()
        config.validate()

        assert config.address == ("127.0.0.1", 8080)
        assert config.allow_h2c is True

    @pytest.mark.parametrize("field,value", [
        ("host", ""),
        ("max_workers", 0),
        ("buffer_size", 100),
        ("timeout", 0),
        ("keep_alive_timeout", -1),
        ("log_level", "LOUD"),
    ])
    def test_validate_rejects(self, field, value):
        config = ServerConfig(**{field: value})

        with pytest.raises(ConfigValidationError):
            config.validate()

    def test_validate_rejects_wrong_types(self):
        with pytest.raises(ConfigValidationError):
            ServerConfig(max_workers="4").validate()

        with pytest.raises(ConfigValidationError):
            ServerConfig(keep_alive_timeout=None).validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HTTPPUSH_HOST", "0.0.0.0")
        monkeypatch.setenv("HTTPPUSH_PORT", "8443")
        monkeypatch.setenv("HTTPPUSH_CERT_FILE", "/certs/cert.pem")
        monkeypatch.setenv("HTTPPUSH_WORKERS", "3")

        config = ServerConfig.from_env()

        assert config.address == ("0.0.0.0", 8443)
        assert config.cert_file == "/certs/cert.pem"
        assert config.key_file is None
        assert config.max_workers == 3

    def test_from_env_invalid(self, monkeypatch):
        monkeypatch.setenv("HTTPPUSH_PORT", "not-a-port")

        with pytest.raises(ConfigValidationError):
            ServerConfig.from_env()

    def test_log_summary(self, caplog):
        config = ServerConfig(port=8443, cert_file="/c.pem", key_file="/k.pem")

        with caplog.at_level("INFO", logger="httppush.config"):
            config.log_summary()

        assert "8443" in caplog.text
        assert "/c.pem" in caplog.text
        assert "TLS:      on" in caplog.text

"""Tests de configuración."""

import os

import pytest

from common.config import ConfigError, Settings, get_settings

CONFIG_KEYS = (
    "IOT_ENV_FILE",
    "REDIS_HOST",
    "REDIS_PORT",
    "REDIS_PASSWORD",
    "MQTT_BROKER_URL",
    "MQTT_CLIENT_ID",
    "MQTT_PASSWORD",
    "POLL_INTERVAL",
    "SENSOR_DATA_KEY",
    "AUTO_REGISTER_ON_START",
    "DEVICE_TOPIC_PREFIX",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Aísla os.environ: load_dotenv escribe directamente en él."""
    snapshot = dict(os.environ)
    for key in CONFIG_KEYS:
        monkeypatch.delenv(key, raising=False)
    yield
    os.environ.clear()
    os.environ.update(snapshot)


@pytest.fixture
def no_env_file(tmp_path):
    return str(tmp_path / "missing.env")


class TestGetSettings:

    def test_defaults(self, no_env_file):
        settings = get_settings(no_env_file)

        assert settings.redis_host == "127.0.0.1"
        assert settings.redis_port == 6379
        assert settings.mqtt_broker_url == "mqtt://localhost:1883"
        assert settings.poll_interval_ms == 5000
        assert settings.sensor_data_key == "SENINF"
        assert settings.device_registration_topic == "device/name"
        assert settings.auto_register_on_start is True
        assert settings.mqtt_client_id.startswith("mqtt-push-service-")

    def test_environment_overrides(self, no_env_file, monkeypatch):
        monkeypatch.setenv("REDIS_HOST", "redis.local")
        monkeypatch.setenv("REDIS_PORT", "6380")
        monkeypatch.setenv("POLL_INTERVAL", "2000")
        monkeypatch.setenv("AUTO_REGISTER_ON_START", "false")
        monkeypatch.setenv("MQTT_CLIENT_ID", "gateway-7")

        settings = get_settings(no_env_file)

        assert settings.redis_host == "redis.local"
        assert settings.redis_port == 6380
        assert settings.poll_interval_seconds == 2.0
        assert settings.auto_register_on_start is False
        assert settings.mqtt_client_id == "gateway-7"

    def test_env_file_does_not_override_environment(self, tmp_path, monkeypatch):
        env_file = tmp_path / "config.env"
        env_file.write_text("REDIS_HOST=from-file\nSENSOR_DATA_KEY=DATA\n", encoding="utf-8")
        monkeypatch.setenv("REDIS_HOST", "from-env")

        settings = get_settings(str(env_file))

        assert settings.redis_host == "from-env"
        assert settings.sensor_data_key == "DATA"

    def test_env_file_from_variable(self, tmp_path, monkeypatch):
        env_file = tmp_path / "other.env"
        env_file.write_text("DEVICE_TOPIC_PREFIX=farm\n", encoding="utf-8")
        monkeypatch.setenv("IOT_ENV_FILE", str(env_file))

        assert get_settings().device_topic_prefix == "farm"

    def test_invalid_integer(self, no_env_file, monkeypatch):
        monkeypatch.setenv("REDIS_PORT", "abc")
        with pytest.raises(ConfigError):
            get_settings(no_env_file)

    @pytest.mark.parametrize("url", ["http://broker:1883", "mqtt://", "broker:1883"])
    def test_invalid_broker_url(self, no_env_file, monkeypatch, url):
        monkeypatch.setenv("MQTT_BROKER_URL", url)
        with pytest.raises(ConfigError):
            get_settings(no_env_file)

    @pytest.mark.parametrize("port", ["0", "70000"])
    def test_port_out_of_range(self, no_env_file, monkeypatch, port):
        monkeypatch.setenv("REDIS_PORT", port)
        with pytest.raises(ConfigError):
            get_settings(no_env_file)

    def test_non_positive_poll_interval(self, no_env_file, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "0")
        with pytest.raises(ConfigError):
            get_settings(no_env_file)

    def test_short_poll_interval_only_warns(self, no_env_file, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "500")
        assert get_settings(no_env_file).poll_interval_ms == 500


class TestSettings:

    def test_broker_address(self):
        settings = Settings(mqtt_broker_url="mqtt://broker.example:1884")
        assert settings.broker_host == "broker.example"
        assert settings.broker_port == 1884
        assert settings.broker_uses_tls is False

    def test_tls_default_port(self):
        settings = Settings(mqtt_broker_url="mqtts://broker.example")
        assert settings.broker_uses_tls is True
        assert settings.broker_port == 8883

    def test_safe_dict_masks_passwords(self):
        settings = Settings(redis_password="r", mqtt_password="m")
        data = settings.safe_dict()

        assert data["redis_password"] == "***"
        assert data["mqtt_password"] == "***"
        assert settings.mqtt_password == "m"

    def test_safe_dict_keeps_empty_passwords(self):
        assert Settings().safe_dict()["redis_password"] is None

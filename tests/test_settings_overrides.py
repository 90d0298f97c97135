from __future__ import annotations

from typing import Iterable

from services.hub import build_default_hub
from services.processor import build_default_processor
from settings import get_settings


def _clear_caches(caches: Iterable) -> None:
    for cache in caches:
        cache.cache_clear()


def test_environment_overrides_apply(monkeypatch) -> None:
    monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "4")
    monkeypatch.setenv("DEFAULT_DEVICE_ID", "DEV-777")
    monkeypatch.setenv("SHOCK_WARNING_G", "1.0")
    monkeypatch.setenv("SHOCK_ALERT_G", "2.0")
    monkeypatch.setenv("TEMP_SAFE_MIN_C", "0")
    monkeypatch.setenv("TEMP_SAFE_MAX_C", "8")
    monkeypatch.setenv("SYNTHESIZE_PATH", "off")
    monkeypatch.setenv("RECONNECT_DELAY_SECONDS", "0.5")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    caches = (get_settings, build_default_hub)
    _clear_caches(caches)

    try:
        settings = get_settings()
        hub = build_default_hub()
        processor = build_default_processor()

        assert settings.reconnect_delay == 0.5
        assert settings.log_level == "DEBUG"
        assert hub.max_pending == 4
        assert hub.default_device_id == "DEV-777"
        assert processor.thresholds.warning_g == 1.0
        assert processor.thresholds.alert_g == 2.0
        assert processor.safe_ranges.resolve("DEV-999").max_c == 8.0
        assert processor.synthesize_path is False
    finally:
        _clear_caches(caches)


def test_invalid_values_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("SUBSCRIBER_QUEUE_SIZE", "-3")
    monkeypatch.setenv("SERIAL_BAUD", "fast")
    monkeypatch.setenv("SHOCK_WARNING_G", "3.0")
    monkeypatch.setenv("SHOCK_ALERT_G", "2.0")
    monkeypatch.setenv("TEMP_SAFE_MIN_C", "9")
    monkeypatch.setenv("TEMP_SAFE_MAX_C", "1")
    monkeypatch.setenv("SYNTHESIZE_PATH", "maybe")
    monkeypatch.setenv("SERIAL_PORT", "   ")
    get_settings.cache_clear()

    try:
        settings = get_settings()

        assert settings.subscriber_queue_size == 32
        assert settings.serial_baud == 9600
        assert (settings.shock_warning_g, settings.shock_alert_g) == (1.5, 2.5)
        assert (settings.temp_safe_min_c, settings.temp_safe_max_c) == (2.0, 6.0)
        assert settings.synthesize_path is True
        assert settings.serial_port is None
    finally:
        get_settings.cache_clear()

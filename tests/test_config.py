import pytest

from campus_market import FileWatermarkStore, MarketApp, MarketConfig, MemoryWatermarkStore
from campus_market.app import watermarks_from_config


def test_defaults():
    config = MarketConfig()
    assert config.project_id == "student-market"
    assert config.campus_email_domain == "@s.kyushu-u.ac.jp"
    assert config.strict_listing_checks is False
    assert config.log_level == "INFO"


def test_from_env_reads_every_setting():
    config = MarketConfig.from_env(
        {
            "GOOGLE_CLOUD_PROJECT": "market-prod",
            "DATABASE": "market",
            "FIRESTORE_EMULATOR_HOST": "localhost:8080",
            "FIREBASE_API_KEY": "key-123",
            "FIREBASE_AUTH_EMULATOR_HOST": "localhost:9099",
            "CAMPUS_MARKET_EMAIL_DOMAIN": "@example.ac.jp",
            "CAMPUS_MARKET_WATERMARKS": "/tmp/wm.json",
            "CAMPUS_MARKET_LOG_LEVEL": "DEBUG",
            "CAMPUS_MARKET_STRICT_CHECKS": "yes",
        }
    )
    assert config.project_id == "market-prod"
    assert config.database == "market"
    assert config.emulator_host == "localhost:8080"
    assert config.api_key == "key-123"
    assert config.auth_emulator_host == "localhost:9099"
    assert config.campus_email_domain == "@example.ac.jp"
    assert config.watermark_path == "/tmp/wm.json"
    assert config.log_level == "DEBUG"
    assert config.strict_listing_checks is True


def test_from_env_treats_empty_values_as_missing():
    config = MarketConfig.from_env({"GOOGLE_CLOUD_PROJECT": "", "CAMPUS_MARKET_STRICT_CHECKS": "0"})
    assert config.project_id == "student-market"
    assert config.strict_listing_checks is False


def test_watermarks_follow_config(tmp_path):
    assert isinstance(watermarks_from_config(MarketConfig()), MemoryWatermarkStore)
    store = watermarks_from_config(MarketConfig(watermark_path=str(tmp_path / "wm.json")))
    assert isinstance(store, FileWatermarkStore)


@pytest.mark.asyncio
async def test_in_memory_app_uses_configured_domain_and_checks(clock):
    app = MarketApp.in_memory(
        MarketConfig(campus_email_domain="@example.ac.jp", strict_listing_checks=True), clock=clock
    )
    identity = await app.session.sign_up("a@example.ac.jp", "pw")

    assert identity.email == "a@example.ac.jp"
    assert app.lifecycle.strict_checks is True
    app.close()

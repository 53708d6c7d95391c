import logging

from photoguide.core.config import Settings
from photoguide.logging import configure_logging, scrub_event


def test_scrub_masks_secrets_and_raw_bytes():
    event = scrub_event(None, "info", {
        "event": "upload_received",
        "x_debug_token": "letmein",
        "OPENAI_API_KEY": "sk-test",
        "image": b"\xff\xd8" * 10,
        "job_id": "abc",
    })
    assert event["x_debug_token"] == "***"
    assert event["OPENAI_API_KEY"] == "***"
    assert event["image"] == "<20 bytes>"
    assert event["job_id"] == "abc"


def test_empty_secret_is_left_alone():
    assert scrub_event(None, "info", {"debug_token": None})["debug_token"] is None


def test_configure_sets_levels():
    configure_logging(Settings(_env_file=None, ENV="test", LOG_LEVEL="debug"))
    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").propagate is True

    configure_logging(Settings(_env_file=None, ENV="test", LOG_LEVEL="error"))
    assert logging.getLogger().level == logging.ERROR
    assert logging.getLogger("openai").level == logging.ERROR


def test_unknown_level_falls_back_to_info():
    configure_logging(Settings(_env_file=None, ENV="production", LOG_LEVEL="chatty"))
    assert logging.getLogger().level == logging.INFO

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from photoguide.core.config import Settings, settings as default_settings

# Third-party loggers and the level they are held at; httpx and openai log every request at INFO
NOISY_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "openai": logging.WARNING,
}

# Stdlib loggers re-routed through the root handler
ROUTED_LOGGERS = ["uvicorn", "uvicorn.error", "uvicorn.access", *NOISY_LOGGERS]

SECRET_KEYS = {"api_key", "openai_api_key", "debug_token", "x_debug_token", "authorization"}


def scrub_event(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Never log secrets or raw uploads: secrets are masked, bytes are replaced by their size."""
    for key, value in list(event_dict.items()):
        if key.lower() in SECRET_KEYS and value:
            event_dict[key] = "***"
        elif isinstance(value, (bytes, bytearray)):
            event_dict[key] = f"<{len(value)} bytes>"
    return event_dict


def configure_logging(settings: Optional[Settings] = None):
    """
    Configure structlog over stdlib logging for the photo guide service.

    ``ENV=development`` renders coloured console lines; anything else renders one
    JSON object per line. ``LOG_LEVEL`` sets the root level. Safe to call again
    (each app instance calls it from its lifespan); the last call wins.
    """
    settings = settings or default_settings
    is_local = settings.ENV.lower() == "development"
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        scrub_event,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.FILENAME,
                structlog.processors.CallsiteParameter.FUNC_NAME,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
    ]

    if is_local:
        renderer = [structlog.dev.ConsoleRenderer()]
    else:
        renderer = [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]

    structlog.configure(
        processors=shared_processors + renderer,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level, force=True)

    for name in ROUTED_LOGGERS:
        routed = logging.getLogger(name)
        routed.handlers = []
        routed.propagate = True
    for name, floor in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(max(floor, level))

    structlog.get_logger(__name__).debug("logging_configured", env=settings.ENV, level=logging.getLevelName(level))

import logging
import logging.config
import sys
from typing import Any, Dict, List, Mapping, Union, cast

import structlog

LOG_LEVELS: Mapping[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def _formatter(processors: List[Any]) -> Dict[str, Any]:
    return {
        "()": structlog.stdlib.ProcessorFormatter,
        "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta]
        + processors,
        "foreign_pre_chain": [
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.ExtraAdder(),
            structlog.processors.format_exc_info,
        ],
    }


def configure_logging(overrides: dict, *, debug: bool = False):
    """Route structlog and stdlib logging through one handler on stderr.

    ``overrides`` is merged into the ``logging.config.dictConfig`` schema and
    may select one of the ``plain``, ``colored`` or ``json`` formatters.
    Standard output is left to the report output.
    """
    log_level = (
        logging.DEBUG
        if debug
        else parse_log_level(overrides.get("root", {}).get("level", logging.WARNING))
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    timestamper = structlog.processors.TimeStamper(
        fmt="%Y-%m-%d %H:%M:%S", utc=False
    )
    logging_config: Dict[str, Any] = {
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stderr",
                "formatter": "colored" if sys.stderr.isatty() else "plain",
            },
        },
        "root": {},
    }
    logging_config.update(overrides)
    logging_config.update(
        {
            "version": 1,
            "incremental": False,
            "disable_existing_loggers": False,
            "formatters": {
                "plain": _formatter(
                    [timestamper, structlog.dev.ConsoleRenderer(colors=False)]
                ),
                "colored": _formatter(
                    [timestamper, structlog.dev.ConsoleRenderer(colors=True)]
                ),
                "json": _formatter(
                    [
                        structlog.processors.TimeStamper(fmt="iso"),
                        structlog.processors.dict_tracebacks,
                        structlog.processors.JSONRenderer(),
                    ]
                ),
            },
        }
    )
    root = cast(dict, logging_config["root"])
    root.setdefault("handlers", ["default"])
    root["level"] = log_level
    logging.config.dictConfig(logging_config)


def parse_log_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        try:
            return LOG_LEVELS[level.lower()]
        except KeyError:
            raise ValueError(f"invalid log level: {level}") from None
    return level

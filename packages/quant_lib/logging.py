# packages/quant_lib/logging.py

import sys
from pathlib import Path
from loguru import logger as _logger  # Aliased to avoid conflict

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[context]}</cyan> | <level>{message}</level>"
)


class LogManager:
    """
    Owns the loguru sinks for one service (console + rotating JSON file).
    Components never configure logging themselves; they receive a bound logger.
    """

    def __init__(
        self,
        service_name: str,
        debug: bool = False,
        log_dir: Path | None = None,
        file_logging: bool = True,
    ):
        self.service_name = service_name
        self.debug = debug
        self.log_dir = log_dir or Path(__file__).resolve().parents[2] / "logs"
        self.file_logging = file_logging
        self._configure()

    def _configure(self):
        _logger.remove()
        _logger.configure(extra={"context": self.service_name})

        # Console Handler
        _logger.add(
            sys.stderr,
            format=CONSOLE_FORMAT,
            level="DEBUG" if self.debug else "INFO",
            colorize=True,
        )

        if not self.file_logging:
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_file = self.log_dir / f"{self.service_name}.json.log"

        # File Handler: machine readable, one JSON object per line
        _logger.add(
            log_file,
            rotation="10 MB",
            retention="7 days",
            level="DEBUG" if self.debug else "INFO",
            serialize=True,
            enqueue=True,
        )

    def get_logger(self, context_name: str):
        return _logger.bind(app=self.service_name, context=context_name)


def get_null_logger(context_name: str = "null"):
    """A bound logger for components built without a LogManager (tests, notebooks)."""
    return _logger.bind(context=context_name)

import logging

from gentask.core.interfaces.logging import LoggingPort
from gentask.core.logging_config import coerce_level


class LoggingAdapter(LoggingPort):
    """LoggingPort backed by a named standard-library logger.

    Installs no handlers: sinks and the correlation id filter come from
    `configure_logging` on the root logger, which records propagate to.
    """

    def __init__(self, name: str = "gentask", log_level: int | str = logging.INFO):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(coerce_level(log_level))
        self.logger.propagate = True

    @property
    def level(self) -> int:
        return self.logger.getEffectiveLevel()

    def info(self, msg: str, *args):
        self.logger.info(msg, *args)

    def warning(self, msg: str, *args):
        self.logger.warning(msg, *args)

    def error(self, msg: str, *args):
        self.logger.error(msg, *args)

    def debug(self, msg: str, *args):
        self.logger.debug(msg, *args)

# Logging adapter for application-wide logging
from gentask.adapters.logging_adapter import LoggingAdapter

from pydantic import HttpUrl, SecretStr, field_validator
from pydantic_settings import BaseSettings
from rich import print

from gentask.core.interfaces.logging import LoggingPort


# using pydantic_settings to manage environment variables
# and do automatic type casting in a central place
class GenTaskSettings(BaseSettings):
    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": True,
        "extra": "ignore",
    }
    GENTASK_LOG_LEVEL: str = "INFO"
    GENTASK_API_SERVER_HOST: str = "0.0.0.0"
    GENTASK_API_SERVER_PORT: int = 8000
    GENTASK_DISABLE_UVICORN_ACCESS: bool = False

    # Remote generation service
    GENTASK_PROVIDER_URL: HttpUrl = HttpUrl("https://api.piapi.ai")
    GENTASK_PROVIDER_API_KEY: SecretStr = SecretStr("")
    GENTASK_PROVIDER_MODEL: str = "Qubico/wanx"

    # Object storage (Supabase-style storage REST API)
    GENTASK_STORAGE_URL: HttpUrl | None = None
    GENTASK_STORAGE_KEY: SecretStr = SecretStr("")
    GENTASK_STORAGE_BUCKET: str = "generated-videos"
    GENTASK_STORAGE_PREFIX: str = "videos"
    GENTASK_STORAGE_QUOTA_BYTES: int = 1024 * 1024 * 1024

    # Lifecycle
    GENTASK_POLL_INTERVAL: float = 10.0
    GENTASK_POLL_TIMEOUT: float | None = 1800.0  # seconds
    GENTASK_REQUEST_TIMEOUT: float = 30.0
    GENTASK_MAX_RETRIES: int = 3
    GENTASK_RETRY_DELAY: float = 5.0
    GENTASK_DOWNLOAD_TIMEOUT: float = 120.0
    GENTASK_MAX_ARTIFACT_BYTES: int = 500 * 1024 * 1024
    GENTASK_VERIFY_ARCHIVE_SIZE: bool = True
    GENTASK_ARCHIVE_THUMBNAILS: bool = True

    # Snapshot directory of the in-memory repository (None disables dumps)
    GENTASK_TASK_DUMP_DIR: str | None = "scratch/gentask_tasks"

    def print_settings(self, logger: LoggingPort):
        """Prints the settings for debugging purposes (secrets stay masked)"""
        logger.info("GenTask Settings:")
        print(self)

    @field_validator("GENTASK_PROVIDER_URL", "GENTASK_STORAGE_URL", mode="before")
    def strip_trailing_slash(cls, value):
        """Base URLs are joined with absolute paths."""
        if isinstance(value, str):
            value = value.rstrip("/")
        return value


class NoOpLogger(LoggingPort):
    """Swallows every message; useful when the app is embedded without logging."""

    def info(self, msg: str, *args):
        pass

    def warning(self, msg: str, *args):
        pass

    def error(self, msg: str, *args):
        pass

    def debug(self, msg: str, *args):
        pass


class _LoggerProxy(LoggingPort):
    """Module-level logger whose backend can be swapped by the composition root."""

    def __init__(self, target: LoggingPort):
        self.target = target

    def info(self, msg: str, *args):
        self.target.info(msg, *args)

    def warning(self, msg: str, *args):
        self.target.warning(msg, *args)

    def error(self, msg: str, *args):
        self.target.error(msg, *args)

    def debug(self, msg: str, *args):
        self.target.debug(msg, *args)


app_settings = GenTaskSettings()

logger = _LoggerProxy(LoggingAdapter("gentask", app_settings.GENTASK_LOG_LEVEL))


def set_logger(new_logger: LoggingPort) -> None:
    """Route every ``logger`` call in the package to ``new_logger``."""
    logger.target = new_logger

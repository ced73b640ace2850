# main.py
import uvicorn

from gentask.adapters.aiohttp_client_adapter import AioHttpClientAdapter
from gentask.adapters.generation_client_http import PiApiGenerationClient
from gentask.adapters.logging_adapter import LoggingAdapter
from gentask.adapters.object_storage_http import HttpObjectStorage
from gentask.adapters.object_storage_inmemory import InMemoryObjectStorage
from gentask.adapters.retry_tenacity import TenacityRetryAdapter
from gentask.adapters.task_repository_inmemory import InMemoryTaskRepository
from gentask.adapters.web.fastapi import create_app
from gentask.core.config import OrchestratorConfig
from gentask.core.logging_config import configure_logging
from gentask.core.managers.orchestrator import TaskOrchestrator
from gentask.core.settings import app_settings, logger, set_logger


# main lives at the outermost layer (not in core)
# Instantiates all the concrete adapters
# Wires dependencies together
# Starts the application

def build_app():
    # Central logging configuration BEFORE injecting adapter so uvicorn adopts level/format
    configure_logging(
        app_settings.GENTASK_LOG_LEVEL,
        disable_uvicorn_access=app_settings.GENTASK_DISABLE_UVICORN_ACCESS,
    )
    set_logger(LoggingAdapter("gentask", app_settings.GENTASK_LOG_LEVEL))
    app_settings.print_settings(logger)

    config = OrchestratorConfig.from_app_settings(app_settings)
    http_client = AioHttpClientAdapter(default_total=config.request_timeout)
    task_repo = InMemoryTaskRepository(app_settings.GENTASK_TASK_DUMP_DIR)

    def orchestrator_factory(client):
        generation_client = PiApiGenerationClient(
            client,
            base_url=str(app_settings.GENTASK_PROVIDER_URL),
            api_key=app_settings.GENTASK_PROVIDER_API_KEY.get_secret_value(),
            model=app_settings.GENTASK_PROVIDER_MODEL,
            request_timeout=config.request_timeout,
        )
        if app_settings.GENTASK_STORAGE_URL is not None:
            storage = HttpObjectStorage(
                client,
                base_url=str(app_settings.GENTASK_STORAGE_URL),
                bucket=app_settings.GENTASK_STORAGE_BUCKET,
                service_key=app_settings.GENTASK_STORAGE_KEY.get_secret_value(),
                request_timeout=config.download_timeout,
            )
        else:
            logger.warning("GENTASK_STORAGE_URL not set, archiving into process memory")
            storage = InMemoryObjectStorage()
        return TaskOrchestrator(
            repository=task_repo,
            client=generation_client,
            storage=storage,
            http_client=client,
            config=config,
            retry_port=TenacityRetryAdapter(),
        )

    return create_app(orchestrator_factory=orchestrator_factory, http_client=http_client)


def main():
    app = build_app()
    # Let uvicorn inherit existing logging (separate sinks & correlation ids)
    uvicorn.run(
        app,
        host=app_settings.GENTASK_API_SERVER_HOST,
        port=app_settings.GENTASK_API_SERVER_PORT,
        log_config=None,
        log_level=str(app_settings.GENTASK_LOG_LEVEL).lower(),
    )


if __name__ == "__main__":
    main()

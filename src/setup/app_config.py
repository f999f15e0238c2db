from pathlib import Path

import inject

from src.flowbatch.application.broadcaster import BatchEventBroadcaster
from src.flowbatch.application.executor import BatchExecutor
from src.flowbatch.domain.models.batch_config import BatchConfiguration
from src.flowbatch.domain.repositories import (
    FlowInvocationRepository,
    PreferencesRepository,
    ResultSinkRepository,
)
from src.flowbatch.infrastructure.events.router import EventRouter
from src.flowbatch.infrastructure.filesystem.preferences import JsonPreferencesStore
from src.flowbatch.infrastructure.filesystem.result_sink import LocalResultSink
from src.flowbatch.infrastructure.http.client import FlowApiClient
from src.flowbatch.infrastructure.http.repositories import HttpFlowRepository
from src.setup.batch_config import BatchSettings, get_batch_settings
from src.setup.flow_config import FlowApiSettings, get_flow_api_settings


def default_batch_configuration(
    settings: BatchSettings, preferences: PreferencesRepository
) -> BatchConfiguration:
    """Build the initial run configuration, restoring the saved output directory."""
    return BatchConfiguration(
        parallelism=settings.DEFAULT_PARALLELISM,
        singleton_mode=settings.SINGLETON_MODE,
        write_output_to_file=settings.WRITE_OUTPUT_TO_FILE,
        output_directory=preferences.get_output_directory() or str(Path.cwd()),
    )


def configure_di(
    batch_settings: BatchSettings | None = None,
    flow_settings: FlowApiSettings | None = None,
) -> None:
    """Bind repository contracts to their implementations once per process."""
    if inject.is_configured():
        return
    batch_settings = batch_settings or get_batch_settings()
    flow_settings = flow_settings or get_flow_api_settings()

    client = FlowApiClient(
        flow_settings.FLOWHUNT_API_BASE_URL,
        token=flow_settings.FLOWHUNT_API_TOKEN,
        timeout=flow_settings.REQUEST_TIMEOUT_SEC,
    )
    flows = HttpFlowRepository(client)
    router = EventRouter()
    preferences = JsonPreferencesStore(batch_settings.PREFERENCES_PATH)
    executor = BatchExecutor(
        flows=flows,
        broadcaster=router,
        poll_interval=batch_settings.POLL_INTERVAL_SEC,
        max_poll_attempts=batch_settings.MAX_POLL_ATTEMPTS,
    )

    def _config(binder: inject.Binder) -> None:
        binder.bind(FlowApiClient, client)
        binder.bind(FlowInvocationRepository, flows)
        binder.bind(ResultSinkRepository, LocalResultSink())
        binder.bind(PreferencesRepository, preferences)
        binder.bind(EventRouter, router)
        binder.bind(BatchEventBroadcaster, router)
        binder.bind(BatchExecutor, executor)
        binder.bind_to_provider(
            BatchConfiguration,
            lambda: default_batch_configuration(batch_settings, preferences),
        )

    inject.configure(_config)

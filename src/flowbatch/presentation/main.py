from fastapi import FastAPI

import inject

from src.flowbatch.infrastructure.events.router import EventRouter
from src.flowbatch.infrastructure.http.client import FlowApiClient
from src.flowbatch.presentation.websockets import (
    WebSocketEventForwarder,
    connection_manager,
    router as ws_router,
)
from src.setup.api_config import get_api_settings
from src.setup.app_config import configure_di
from src.setup.logging_config import configure_logging

settings = get_api_settings()
configure_logging()
configure_di()

inject.instance(EventRouter).subscribe(WebSocketEventForwarder(connection_manager))

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Batch execution of FlowHunt flows with live progress updates",
)


async def _close_client() -> None:
    await inject.instance(FlowApiClient).close()


app.add_event_handler("shutdown", _close_client)

from src.flowbatch.presentation.routes import router as api_router  # noqa: E402

app.include_router(api_router, prefix="")
app.include_router(ws_router, prefix="")

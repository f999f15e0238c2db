from __future__ import annotations

import logging
from typing import Any

from src.flowbatch.domain.exceptions import FlowApiError
from src.flowbatch.domain.models.flow_response import FlowInfo, FlowTaskResponse
from src.flowbatch.domain.repositories import FlowInvocationRepository
from src.flowbatch.infrastructure.http.client import FlowApiClient

logger = logging.getLogger(__name__)


class HttpFlowRepository(FlowInvocationRepository):
    """
    Flow invocation backed by the FlowHunt REST API.
    """

    def __init__(self, client: FlowApiClient) -> None:
        self._client = client

    async def invoke(
        self,
        flow_id: str,
        workspace_id: str,
        flow_input: dict[str, Any],
        *,
        singleton: bool,
    ) -> FlowTaskResponse:
        """
        Start a flow run. The singleton endpoint de-duplicates identical inputs.
        """
        endpoint = "invoke_singleton" if singleton else "invoke"
        body = {**flow_input, "stream_response": False, "variables": {}}
        logger.info(
            "Invoking flow",
            extra={"flow_id": flow_id, "workspace_id": workspace_id, "endpoint": endpoint},
        )
        data = await self._client.post(
            f"/flows/{flow_id}/{endpoint}",
            params={"workspace_id": workspace_id},
            json=body,
        )
        return self._to_response(data)

    async def poll_status(self, flow_id: str, task_id: str, workspace_id: str) -> FlowTaskResponse:
        data = await self._client.get(
            f"/flows/{flow_id}/{task_id}",
            params={"workspace_id": workspace_id},
        )
        response = self._to_response(data)
        if response.error_message:
            logger.warning(
                "Task reported an error",
                extra={"remote_task_id": task_id, "error_message": response.error_message},
            )
        return response

    async def list_flows(
        self,
        workspace_id: str,
        *,
        limit: int | None = None,
        offset: int | None = None,
        public: bool = False,
    ) -> list[FlowInfo]:
        path = "/flows/all" if public else "/flows/"
        data = await self._client.post(
            path,
            params={"workspace_id": workspace_id},
            json={"limit": limit, "offset": offset},
        )
        if not isinstance(data, list):
            raise FlowApiError(f"Unexpected flow list response: {type(data).__name__}")
        flows = [FlowInfo.model_validate(item) for item in data]
        logger.info("Fetched %d flows", len(flows), extra={"workspace_id": workspace_id})
        return flows

    @staticmethod
    def _to_response(data: Any) -> FlowTaskResponse:
        if not isinstance(data, dict):
            raise FlowApiError(f"Unexpected task response: {type(data).__name__}")
        return FlowTaskResponse.model_validate(data)

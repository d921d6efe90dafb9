"""
Interfaces of the entity-side collaborators the dispatcher calls into.

The entity services (session, budget, project) own their data. The workflow
engine only asks them for a flat dict of template variables, and asks them to
apply field updates or create follow-up tasks.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from loguru import logger

from bizflow.constants import ENTITY_SERVICE_TOKEN, ENTITY_SERVICE_URL


class CollaboratorError(Exception):
    pass


@dataclass
class TaskRequest:
    title: str
    description: Optional[str] = None
    assignee_id: Optional[int | str] = None


class EntityDataProvider(ABC):
    @abstractmethod
    async def get_entity_data(
        self, organization_id: int, entity_type: str, entity_id: str
    ) -> Dict[str, Any]:
        """Return the template variables of an entity, e.g. {"client_name": ...}"""
        pass


class FieldUpdater(ABC):
    @abstractmethod
    async def update_field(
        self,
        organization_id: int,
        entity_type: str,
        entity_id: str,
        field: str,
        value: Any,
    ) -> None:
        pass


class TaskCreator(ABC):
    @abstractmethod
    async def create_task(
        self,
        organization_id: int,
        entity_type: str,
        entity_id: str,
        task: TaskRequest,
    ) -> None:
        pass


class LoggingTaskCreator(TaskCreator):
    """Records requested tasks in the log until a task service is wired in."""

    async def create_task(self, organization_id, entity_type, entity_id, task):
        logger.info(
            f"Creating task {task.title!r} for {entity_type} {entity_id} "
            f"(org {organization_id}, assignee {task.assignee_id}): {task.description}"
        )


class HTTPEntityServiceCollaborator(EntityDataProvider, FieldUpdater, TaskCreator):
    """Talks to the entity services' internal workflow endpoints."""

    def __init__(self, base_url: str, token: str | None = None, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self, organization_id: int) -> dict:
        headers = {"X-Organization-Id": str(organization_id)}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, organization_id: int, **kwargs):
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            try:
                response = await client.request(
                    method,
                    f"{self.base_url}{path}",
                    headers=self._headers(organization_id),
                    **kwargs,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise CollaboratorError(f"{method} {path} failed: {e}") from e
        return response

    async def get_entity_data(self, organization_id, entity_type, entity_id):
        response = await self._request(
            "GET", f"/{entity_type}s/{entity_id}/workflow-data", organization_id
        )
        return response.json()

    async def update_field(self, organization_id, entity_type, entity_id, field, value):
        await self._request(
            "PATCH",
            f"/{entity_type}s/{entity_id}",
            organization_id,
            json={field: value},
        )

    async def create_task(self, organization_id, entity_type, entity_id, task):
        await self._request(
            "POST",
            "/tasks",
            organization_id,
            json={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "title": task.title,
                "description": task.description,
                "assignee_id": task.assignee_id,
            },
        )


class CollaboratorRegistry:
    """Per entity type lookup of the collaborators used by the dispatcher.

    Entity services running in-process register themselves here. When
    ENTITY_SERVICE_URL is set, the HTTP collaborator covers every entity type
    without a registration of its own.
    """

    def __init__(self, fallback: HTTPEntityServiceCollaborator | None = None):
        self._fallback = fallback
        self._data_providers: dict[str, EntityDataProvider] = {}
        self._field_updaters: dict[str, FieldUpdater] = {}
        self._task_creator: TaskCreator = fallback or LoggingTaskCreator()

    def register_data_provider(self, entity_type: str, provider: EntityDataProvider):
        self._data_providers[entity_type] = provider

    def register_field_updater(self, entity_type: str, updater: FieldUpdater):
        self._field_updaters[entity_type] = updater

    def set_task_creator(self, creator: TaskCreator):
        self._task_creator = creator

    def data_provider(self, entity_type: str) -> EntityDataProvider:
        provider = self._data_providers.get(entity_type) or self._fallback
        if provider is None:
            raise CollaboratorError(f"No data provider registered for {entity_type}")
        return provider

    def field_updater(self, entity_type: str) -> FieldUpdater:
        updater = self._field_updaters.get(entity_type) or self._fallback
        if updater is None:
            raise CollaboratorError(f"No field updater registered for {entity_type}")
        return updater

    def task_creator(self) -> TaskCreator:
        return self._task_creator


collaborators = CollaboratorRegistry(
    fallback=HTTPEntityServiceCollaborator(ENTITY_SERVICE_URL, ENTITY_SERVICE_TOKEN)
    if ENTITY_SERVICE_URL
    else None
)

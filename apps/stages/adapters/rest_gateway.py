# apps/stages/adapters/rest_gateway.py
import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import aiohttp
from django.conf import settings

from apps.stages.domain.entities import StageEntity, TaskEntity
from apps.stages.domain.services.status import coerce_date
from apps.stages.ports.stage_gateway import (
    GatewayError,
    IStageGateway,
    MutationResult,
    StagePayload,
    TaskPayload,
)

logger = logging.getLogger(__name__)


def _iso(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value else None


class RestStageGateway(IStageGateway):
    """
    Adapter HTTP (aiohttp) dla zdalnego API etapów i zadań.

    Odpowiedzi listujące mają postać:
        {"success": bool, "message": str, "data": {"items": [...], "hasNextPage": bool, ...}}
    Operacje zmieniające dane zwracają {"success": bool, "message": str}.
    """

    def __init__(self, base_url: str, page_size: int = 50, timeout_seconds: float = 15.0,
                 session: Optional[aiohttp.ClientSession] = None, max_pages: int = 1000):
        self.base_url = base_url.rstrip('/')
        self.page_size = page_size
        self.max_pages = max_pages
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls) -> 'RestStageGateway':
        config = settings.STAGES_API
        return cls(
            base_url=config['BASE_URL'],
            page_size=config.get('PAGE_SIZE', 50),
            timeout_seconds=config.get('TIMEOUT_SECONDS', 15.0),
            max_pages=config.get('MAX_PAGES', 1000),
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={'Content-Type': 'application/json'},
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, params: Optional[Dict[str, Any]] = None,
                       payload: Optional[Dict[str, Any]] = None) -> Tuple[int, Any]:
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug("%s %s params=%s", method, url, params)
        try:
            async with self._get_session().request(method, url, params=params, json=payload) as resp:
                try:
                    body = await resp.json(content_type=None)
                except ValueError:
                    body = None
                return resp.status, body
        except asyncio.TimeoutError as e:
            raise GatewayError(f"Timeout: {method} {url}") from e
        except aiohttp.ClientError as e:
            raise GatewayError(f"Connection error: {method} {url}: {e}") from e

    async def _fetch_items(self, path: str, params: Dict[str, Any], what: str) -> List[Dict[str, Any]]:
        """Pobiera wszystkie strony listy."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params, pageNumber=page, pageSize=self.page_size)
            status, body = await self._request('GET', path, params=query)

            if not 200 <= status < 300:
                raise GatewayError(f"HTTP error! status: {status}")
            if not isinstance(body, dict) or not body.get('success'):
                message = body.get('message') if isinstance(body, dict) else None
                raise GatewayError(message or f"Failed to fetch {what} data")

            data = body.get('data')
            if not isinstance(data, dict) or not isinstance(data.get('items'), list):
                raise GatewayError("Invalid API response structure")

            page_items = data['items']
            items.extend(page_items)
            if not data.get('hasNextPage') or not page_items:
                break
            total_pages = data.get('totalPages')
            if isinstance(total_pages, int) and page >= total_pages:
                break
            if page >= self.max_pages:
                raise GatewayError(f"Too many pages of {what} data (limit {self.max_pages})")
            page += 1
        return items

    async def _mutate(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> MutationResult:
        status, body = await self._request(method, path, payload=payload)

        if isinstance(body, dict) and 'success' in body:
            return MutationResult(success=bool(body['success']), message=body.get('message') or "")

        if 200 <= status < 300:
            # np. 204 No Content
            return MutationResult(success=True)

        raise GatewayError(f"HTTP error! status: {status}")

    # ------------------------------------------------------------------
    # Mapowanie API -> encje
    # ------------------------------------------------------------------

    def to_stage(self, item: Dict[str, Any], project_id: int) -> StageEntity:
        return StageEntity(
            id=int(item['id']),
            project_id=int(item.get('projectId') or project_id),
            name=item.get('name') or "",
            description=item.get('description') or "",
            start_date=coerce_date(item.get('startDate')),
            end_date=coerce_date(item.get('endDate') or item.get('expectedEndDate')),
        )

    def to_task(self, item: Dict[str, Any], stage_id: int) -> TaskEntity:
        return TaskEntity(
            id=int(item['id']),
            stage_id=int(item.get('stageId') or stage_id),
            name=item.get('name') or "",
            description=item.get('description') or "",
            start_date=coerce_date(item.get('startDate')),
            expected_end_date=coerce_date(item.get('endDate') or item.get('expectedEndDate')),
            is_completed=bool(item.get('isCompleted', False)),
        )

    # ------------------------------------------------------------------
    # IStageGateway
    # ------------------------------------------------------------------

    async def fetch_stages(self, project_id: int) -> List[StageEntity]:
        items = await self._fetch_items('Stages', {'projectId': project_id}, 'stages')
        stages = []
        for item in items:
            try:
                stages.append(self.to_stage(item, project_id))
            except (KeyError, TypeError, ValueError):
                logger.warning("Pomijam etap bez poprawnego id: %r", item)
        return stages

    async def fetch_tasks(self, stage_id: int) -> List[TaskEntity]:
        items = await self._fetch_items('Tasks', {'stageId': stage_id}, 'tasks')
        tasks = []
        for item in items:
            try:
                tasks.append(self.to_task(item, stage_id))
            except (KeyError, TypeError, ValueError):
                logger.warning("Pomijam zadanie bez poprawnego id: %r", item)
        return tasks

    async def create_stage(self, payload: StagePayload) -> MutationResult:
        return await self._mutate('POST', 'Stages', {
            'projectId': payload.project_id,
            'name': payload.name,
            'description': payload.description,
            'startDate': _iso(payload.start_date),
            'endDate': _iso(payload.end_date),
        })

    async def edit_stage(self, stage_id: int, payload: StagePayload) -> MutationResult:
        return await self._mutate('PUT', f'Stages/{stage_id}', {
            'id': stage_id,
            'projectId': payload.project_id,
            'name': payload.name,
            'description': payload.description,
            'startDate': _iso(payload.start_date),
            'endDate': _iso(payload.end_date),
        })

    async def delete_stage(self, stage_id: int) -> MutationResult:
        return await self._mutate('DELETE', f'Stages/{stage_id}')

    async def create_task(self, payload: TaskPayload) -> MutationResult:
        return await self._mutate('POST', 'Tasks', {
            'stageId': payload.stage_id,
            'name': payload.name,
            'description': payload.description,
            'startDate': _iso(payload.start_date),
            'endDate': _iso(payload.end_date),
        })

    async def edit_task(self, task_id: int, name: str, description: str) -> MutationResult:
        return await self._mutate('PUT', f'Tasks/{task_id}', {
            'id': task_id,
            'name': name,
            'description': description,
        })

    async def delete_task(self, task_id: int) -> MutationResult:
        return await self._mutate('DELETE', f'Tasks/{task_id}')

    async def complete_task(self, task_id: int) -> MutationResult:
        return await self._mutate('PATCH', f'Tasks/{task_id}/complete')

    async def uncheck_task(self, task_id: int) -> MutationResult:
        return await self._mutate('PATCH', f'Tasks/{task_id}/uncheck')

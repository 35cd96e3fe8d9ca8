"""
api.py - REST API over one grouped jobs table

Every mutating endpoint feeds one event to the controller and returns the
resulting table. A WebSocket pushes each new table state to subscribers.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel

from jobs_table.backends.ibis_backend import IbisJobsBackend
from jobs_table.cache.memory_cache import MemoryCache
from jobs_table.cache.redis_cache import RedisCache
from jobs_table.config import JobsTableConfig, get_config
from jobs_table.controller import FetchError, JobsTableController, TableState
from jobs_table.sample_data import make_test_jobs
from jobs_table.services.base import JobsService
from jobs_table.services.cached import CachedJobsService

logger = logging.getLogger(__name__)


class GroupingRequest(BaseModel):
    """Pydantic model for a grouping change"""
    grouping: List[str] = []


class ExpandedRequest(BaseModel):
    """Pydantic model for replacing the expansion state"""
    expanded: Dict[str, bool] = {}


class ToggleRequest(BaseModel):
    """Pydantic model for toggling one row"""
    row_id: str


class PaginationRequest(BaseModel):
    """Pydantic model for a page change"""
    page_index: int = 0
    page_size: Optional[int] = None


class APIResponse(BaseModel):
    """Base API response model"""
    status: str
    data: Optional[Any] = None
    metadata: Optional[Dict[str, Any]] = None
    error: Optional[str] = None


class JobsTableAPI:
    """REST API around a JobsTableController"""

    def __init__(self, controller: JobsTableController):
        self.controller = controller
        self.app = FastAPI(title="Grouped Jobs Table API")
        self._setup_routes()

    def _response(self, state: TableState) -> APIResponse:
        return APIResponse(
            status="success",
            data=state.to_dict(),
            metadata=self.controller.get_stats(),
        )

    async def _run(self, action) -> APIResponse:
        try:
            state = await action
        except FetchError as e:
            raise HTTPException(status_code=502, detail=str(e))
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return self._response(state)

    def _setup_routes(self):
        """Setup all API routes"""

        @self.app.get("/health")
        async def health_check():
            return {"status": "healthy", "service": "jobs-table", "version": "1.0"}

        @self.app.get("/table")
        async def get_table():
            return self._response(self.controller.state)

        @self.app.post("/table/load")
        async def load_table():
            return await self._run(self.controller.load())

        @self.app.post("/table/grouping")
        async def set_grouping(request: GroupingRequest):
            return await self._run(self.controller.set_grouping(request.grouping))

        @self.app.post("/table/expanded")
        async def set_expanded(request: ExpandedRequest):
            return await self._run(self.controller.set_expanded(request.expanded))

        @self.app.post("/table/toggle")
        async def toggle_row(request: ToggleRequest):
            return await self._run(self.controller.toggle_expanded(request.row_id))

        @self.app.post("/table/pagination")
        async def set_pagination(request: PaginationRequest):
            return await self._run(self.controller.set_page(request.page_index, request.page_size))

        @self.app.post("/table/retry")
        async def retry():
            return await self._run(self.controller.retry())

        @self.app.websocket("/ws/table")
        async def table_updates(websocket: WebSocket):
            await websocket.accept()
            queue: asyncio.Queue = asyncio.Queue()
            unsubscribe = self.controller.subscribe(queue.put_nowait)

            async def forward_updates():
                while True:
                    state = await queue.get()
                    await websocket.send_json(jsonable_encoder(state.to_dict()))

            await websocket.send_json(jsonable_encoder(self.controller.state.to_dict()))
            forwarder = asyncio.ensure_future(forward_updates())
            try:
                # clients only listen; receiving surfaces the disconnect
                while True:
                    await websocket.receive_text()
            except WebSocketDisconnect:
                logger.debug("Table subscriber disconnected")
            finally:
                forwarder.cancel()
                unsubscribe()

    def get_app(self) -> FastAPI:
        return self.app


def build_service(config: JobsTableConfig, backend: JobsService) -> JobsService:
    """Wrap the lookup backend in the configured cache."""
    if config.cache_type == "memory":
        return CachedJobsService(backend, MemoryCache(ttl=config.default_cache_ttl))
    if config.cache_type == "redis":
        cache = RedisCache(ttl=config.default_cache_ttl, **config.redis_config)
        return CachedJobsService(backend, cache)
    return backend


def create_api(config: Optional[JobsTableConfig] = None, backend: Optional[JobsService] = None) -> JobsTableAPI:
    """Create the API with a backend and controller built from configuration"""
    config = config or get_config()
    if backend is None:
        backend = IbisJobsBackend(connection_uri=config.backend_uri, table_name=config.table_name)
        if config.load_sample_data:
            backend.load_jobs(make_test_jobs(config.sample_jobs))
            logger.info(f"Loaded {config.sample_jobs} sample jobs into table: {config.table_name}")

    service = build_service(config, backend)
    controller = JobsTableController(service, service, config=config)
    return JobsTableAPI(controller)

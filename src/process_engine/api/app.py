"""
FastAPI host adapter for the process engine
"""
from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, List, Optional

from fastapi import Body, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..config import EngineSettings
from ..core import DefinitionParser, SimulationRunner, WorkflowEngine
from ..exceptions import (
    DefinitionError, InstanceNotFoundError, WorkflowNotFoundError,
    WorkflowParseError, WorkflowValidationError
)
from .models import (
    ErrorResponse, StartInstanceRequest, TaskInstanceResponse, TickResponse, WorkflowRegistered
)


logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[WorkflowEngine] = None,
    settings: Optional[EngineSettings] = None
) -> FastAPI:
    """Build the API around an engine; the polling loop runs when ``auto_tick`` is set.

    Handlers are coroutines and the engine is synchronous, so a request and
    a runner tick never work on the same instance at the same time.
    """
    settings = settings or (engine.settings if engine else EngineSettings.from_env())
    engine = engine or WorkflowEngine(settings=settings)
    runner = SimulationRunner(engine, interval=settings.tick_interval)
    parser = DefinitionParser()
    errors = {404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting process engine API...")
        if settings.auto_tick:
            await runner.start()
        yield
        logger.info("Shutting down process engine API...")
        await runner.stop()

    app = FastAPI(
        title="Process Engine API",
        description="Run workflow definitions and forward approval decisions",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.engine = engine
    app.state.runner = runner

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DefinitionError)
    async def definition_error_handler(request: Request, exc: DefinitionError):
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "definition_error",
                "message": str(exc),
                "stateId": exc.state_id,
                "target": exc.target
            }
        )

    @app.exception_handler(InstanceNotFoundError)
    @app.exception_handler(WorkflowNotFoundError)
    async def not_found_handler(request: Request, exc: Exception):
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"error": "not_found", "message": str(exc)}
        )

    @app.post("/workflows", response_model=WorkflowRegistered, status_code=status.HTTP_201_CREATED)
    async def register_workflow(payload: Dict[str, Any] = Body(...)):
        try:
            definition = parser.parse_dict(payload)
        except (WorkflowParseError, WorkflowValidationError) as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        engine.register_workflow(definition)
        return WorkflowRegistered(
            workflowId=definition.workflow_id,
            version=definition.version,
            warnings=parser.lint(definition)
        )

    @app.get("/workflows/{workflow_id}")
    async def get_workflow(workflow_id: str) -> Dict[str, Any]:
        return parser.to_dict(engine.get_workflow(workflow_id))

    @app.post("/instances", response_model=TaskInstanceResponse, status_code=status.HTTP_201_CREATED)
    async def start_instance(request: StartInstanceRequest):
        snapshot = engine.start_instance(request.workflowId, request.data, request.instanceId)
        return snapshot.to_dict()

    @app.get("/instances", response_model=List[TaskInstanceResponse])
    async def list_instances():
        return [snapshot.to_dict() for snapshot in engine.list_instances()]

    @app.get("/instances/{instance_id}", response_model=TaskInstanceResponse)
    async def get_instance(instance_id: str):
        return engine.get_snapshot(instance_id).to_dict()

    @app.post(
        "/instances/{instance_id}/states/{state_id}/approve",
        response_model=TaskInstanceResponse,
        responses=errors
    )
    async def approve(instance_id: str, state_id: str):
        return engine.approve(instance_id, state_id).to_dict()

    @app.post(
        "/instances/{instance_id}/states/{state_id}/reject",
        response_model=TaskInstanceResponse,
        responses=errors
    )
    async def reject(instance_id: str, state_id: str):
        return engine.reject(instance_id, state_id).to_dict()

    @app.post(
        "/instances/{instance_id}/tick",
        response_model=TickResponse,
        responses=errors
    )
    async def tick(instance_id: str):
        result = engine.tick(instance_id)
        return TickResponse(
            instance=engine.get_snapshot(instance_id).to_dict(),
            timedOut=result.timed_out,
            advanced=result.advanced,
            merged=result.merged
        )

    @app.get("/")
    async def root():
        return {
            "name": "Process Engine API",
            "version": "1.0.0",
            "workflows": len(engine.workflows),
            "instances": len(engine.instances),
            "autoTick": runner.running
        }

    return app

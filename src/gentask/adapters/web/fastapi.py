# gentask/adapters/web/fastapi.py
from contextlib import asynccontextmanager
from typing import Callable, List, Optional

import uuid

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from gentask.core.exceptions import (
    ConfigurationError,
    InvalidRequestError,
    InvalidTaskStateError,
    OrchestratorError,
    TaskNotFoundError,
)
from gentask.core.interfaces.http_client import HttpClientPort
from gentask.core.logging_config import correlation_id_var, correlation_scope
from gentask.core.managers.orchestrator import TaskOrchestrator
from gentask.core.models.artifact import StorageUsage
from gentask.core.models.generation import GenerationRequest
from gentask.core.models.problem import AdditionalInfo, ProblemDetails
from gentask.core.models.task import PublicStatus, TaskList, TaskView
from gentask.core.settings import logger


class SubmitTaskBody(BaseModel):
    owner_id: str = Field(min_length=1)
    request: GenerationRequest

    model_config = {"extra": "forbid"}


_STATUS_BY_ERROR = (
    (TaskNotFoundError, 404, "Task Not Found"),
    (InvalidTaskStateError, 409, "Invalid Task State"),
    (InvalidRequestError, 422, "Invalid Request"),
    (ConfigurationError, 503, "Service Not Configured"),
)


# Note: this is a driver adapter. It depends on the core orchestrator but the
# core does not depend on it.
def create_app(
    orchestrator_factory: Callable[[HttpClientPort], TaskOrchestrator],
    http_client: HttpClientPort,
    resume_on_startup: bool = True,
):
    """Create the FastAPI app.

    Adapters and concrete infrastructure (logging, repositories, providers)
    are assembled outside and passed in as a factory, keeping this module
    limited to HTTP concerns and lifecycle.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with http_client as client:
            orchestrator = orchestrator_factory(client)
            app.state.orchestrator = orchestrator
            if resume_on_startup:
                await orchestrator.resume_active()
            try:
                yield
            finally:
                await orchestrator.shutdown()

    app = FastAPI(title="GenTask API", lifespan=lifespan)

    def render_problem(
        problem: ProblemDetails,
        *,
        include_request_id: bool = False,
    ) -> JSONResponse:
        payload = jsonable_encoder(problem.model_dump(exclude_none=True))
        response = JSONResponse(
            status_code=problem.status,
            content=payload,
            media_type="application/problem+json",
        )
        if include_request_id and problem.additional and problem.additional.requestId:
            response.headers["X-Request-ID"] = problem.additional.requestId
        return response

    def build_problem(
        status: int,
        title: str,
        detail: str,
        request: Request,
        task_id: Optional[str] = None,
    ) -> ProblemDetails:
        return ProblemDetails(
            title=title,
            status=status,
            detail=detail,
            instance=str(request.url),
            additional=AdditionalInfo(taskId=task_id) if task_id else None,
        )

    # Correlation ID middleware: per-request id (header override) exposed to logging
    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        incoming = request.headers.get("x-request-id")
        cid = incoming or uuid.uuid4().hex[:12]
        with correlation_scope(cid):
            response = await call_next(request)
        response.headers["X-Request-ID"] = cid
        return response

    @app.exception_handler(OrchestratorError)
    async def orchestrator_error_handler(request: Request, exc: OrchestratorError):
        status, title = 500, "Internal Server Error"
        for error_type, mapped_status, mapped_title in _STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status, title = mapped_status, mapped_title
                break
        problem = build_problem(status, title, exc.message, request, task_id=exc.task_id)
        include_request_id = status >= 500
        if include_request_id:
            logger.error(f"[http:error] {type(exc).__name__} detail={exc.message}")
            problem = problem.with_request_id(correlation_id_var.get())
        return render_problem(problem, include_request_id=include_request_id)

    def orchestrator() -> TaskOrchestrator:
        return app.state.orchestrator

    @app.get("/health")
    async def health():
        return {"status": "ok", "active_tasks": len(orchestrator().registry.active_ids())}

    @app.post("/tasks", status_code=201, response_model=TaskView)
    async def submit_task(request: Request):
        try:
            raw = await request.json()
        except ValueError:
            raw = None
        try:
            body = SubmitTaskBody.model_validate(raw)
        except ValidationError as ve:
            detail_messages = []
            for err in ve.errors():
                loc = ".".join(str(part) for part in err.get("loc", []))
                msg = err.get("msg", "invalid value")
                detail_messages.append(f"{loc or 'body'}: {msg}")
            detail_text = "; ".join(detail_messages) or "Invalid task request payload"
            return render_problem(
                build_problem(422, "Invalid Request", detail_text, request)
            )

        task_id = await orchestrator().submit(body.request, body.owner_id)
        task = await orchestrator().get_task(task_id)
        view = TaskView.from_task(task)
        return JSONResponse(
            status_code=201,
            content=jsonable_encoder(view),
            headers={"Location": f"/tasks/{task_id}"},
        )

    @app.get("/tasks", response_model=TaskList)
    async def list_tasks(owner_id: Optional[str] = None, status: Optional[PublicStatus] = None):
        tasks = await orchestrator().list_tasks(owner_id=owner_id, status=status)
        return TaskList(tasks=[TaskView.from_task(t) for t in tasks])

    @app.get("/owners/{owner_id}/storage", response_model=StorageUsage)
    async def storage_usage(owner_id: str):
        return await orchestrator().storage_usage(owner_id)

    @app.get("/tasks/{task_id}", response_model=TaskView)
    async def get_task(task_id: str):
        return TaskView.from_task(await orchestrator().get_task(task_id))

    @app.post("/tasks/{task_id}/cancel")
    async def cancel_task(task_id: str):
        stopped = await orchestrator().cancel(task_id)
        task = await orchestrator().get_task(task_id)
        return {"stopped": stopped, "task": jsonable_encoder(TaskView.from_task(task))}

    @app.post("/tasks/{task_id}/retry", response_model=TaskView)
    async def retry_task(task_id: str):
        return TaskView.from_task(await orchestrator().retry(task_id))

    @app.post("/tasks/{task_id}/recheck", response_model=TaskView)
    async def recheck_task(task_id: str):
        return TaskView.from_task(await orchestrator().recheck(task_id))

    @app.get("/tasks/{task_id}/events")
    async def task_events(task_id: str) -> List[dict]:
        return await orchestrator().events(task_id)

    return app

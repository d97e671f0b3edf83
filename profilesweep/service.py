"""HTTP API exposing profile inventory and cleanup."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence

import anyio
from fastapi import Depends, FastAPI, HTTPException, status
from pydantic import BaseModel, Field, field_validator, model_validator

from .models import LOCAL_TARGET, TaskResult
from .orchestrator import Orchestrator
from .preconditions import PreconditionError
from .report import NOT_AVAILABLE, Report
from .security import TokenAuth, load_tokens_from_env

logger = logging.getLogger("profilesweep.service")


def _clean_names(value: object) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ValueError("must be a list of strings")
    return [str(item).strip() for item in value if str(item).strip()]


class ListProfilesRequest(BaseModel):
    targets: List[str] = Field(default_factory=lambda: [LOCAL_TARGET])
    exclude: List[str] = Field(default_factory=list)

    @field_validator("targets", "exclude", mode="before")
    @classmethod
    def _normalise(cls, value: object) -> List[str]:
        return _clean_names(value)


class DeleteProfilesRequest(BaseModel):
    targets: List[str] = Field(default_factory=lambda: [LOCAL_TARGET])
    user_names: List[str] = Field(default_factory=list)
    all: bool = False
    exclude: List[str] = Field(default_factory=list)

    @field_validator("targets", "user_names", "exclude", mode="before")
    @classmethod
    def _normalise(cls, value: object) -> List[str]:
        return _clean_names(value)

    @model_validator(mode="after")
    def _check_selection(self) -> "DeleteProfilesRequest":
        if self.all == bool(self.user_names):
            raise ValueError("Provide either user_names or all=true, but not both")
        return self


class ProfileView(BaseModel):
    user_name: str
    local_path: str
    sid: str
    last_used: Optional[datetime] = None
    loaded: bool
    idle: str


class TaskResultView(BaseModel):
    target: str
    subject: str
    outcome: str
    message: str
    error: Optional[str] = None
    profile: Optional[ProfileView] = None


class ReportResponse(BaseModel):
    results: List[TaskResultView]
    has_failures: bool


def _result_to_view(result: TaskResult, now: datetime) -> TaskResultView:
    profile = None
    if result.profile is not None:
        record = result.profile
        idle = record.idle_duration(now)
        profile = ProfileView(
            user_name=record.user_name,
            local_path=record.local_path,
            sid=record.sid,
            last_used=record.last_use_time,
            loaded=record.loaded,
            idle=str(idle) if idle is not None else NOT_AVAILABLE,
        )
    return TaskResultView(
        target=result.target,
        subject=result.subject,
        outcome=result.outcome.value,
        message=result.message,
        error=result.error.value if result.error is not None else None,
        profile=profile,
    )


def _report_to_response(report: Report) -> ReportResponse:
    now = datetime.now(timezone.utc)
    return ReportResponse(
        results=[_result_to_view(result, now) for result in report.results],
        has_failures=report.has_failures,
    )


async def _run_report(operation: Callable[[], Report]) -> ReportResponse:
    try:
        report = await anyio.to_thread.run_sync(operation)
    except PreconditionError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return _report_to_response(report)


def register_api_routes(app: FastAPI, orchestrator: Orchestrator, *, auth: TokenAuth) -> None:
    """Expose the JSON API endpoints on the provided FastAPI application."""

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/v1/profiles/list", response_model=ReportResponse, dependencies=[Depends(auth)])
    async def list_profiles(request: ListProfilesRequest) -> ReportResponse:
        return await _run_report(partial(orchestrator.enumerate, request.targets, exclude=request.exclude))

    @app.post("/v1/profiles/delete", response_model=ReportResponse, dependencies=[Depends(auth)])
    async def delete_profiles(request: DeleteProfilesRequest) -> ReportResponse:
        logger.info(
            "API delete request for %s (all=%s, users=%s, exclude=%s)",
            ", ".join(request.targets),
            request.all,
            ", ".join(request.user_names) or "-",
            ", ".join(request.exclude) or "-",
        )
        return await _run_report(
            partial(
                orchestrator.delete,
                request.targets,
                user_names=request.user_names,
                delete_all=request.all,
                exclude=request.exclude,
            )
        )


def create_app(orchestrator: Orchestrator, *, tokens: Sequence[str] | None = None) -> FastAPI:
    """Instantiate the FastAPI application for profile management."""

    token_list = list(tokens) if tokens is not None else load_tokens_from_env()
    auth = TokenAuth(token_list)

    app = FastAPI(
        title="profilesweep API",
        version="0.1.0",
        description="Inventory and remove Windows user profiles across managed hosts.",
    )
    app.state.orchestrator = orchestrator
    register_api_routes(app, orchestrator, auth=auth)
    return app


__all__ = ["create_app", "register_api_routes"]

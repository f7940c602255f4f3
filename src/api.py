"""
api.py

REST API layer for the Progress Curve (Curva S) & Snapshot-Diff engine.

Framework : FastAPI
Auth      : none at this layer; the API sits behind the platform gateway.
            Annotation authorship is taken from the request body
            (``user_email``).

Structure
---------
  Routers (all prefixed under /api/v1)
  ├── /weights/defaults                          — global default weights
  ├── /projects/{project_code}
  │   ├── /weights                               — per-project overrides
  │   ├── /progress                              — weighted progress + IDP
  │   ├── /tasks                                 — task breakdown / load tasks
  │   ├── /snapshots/{snapshot_date}             — load a monthly snapshot
  │   ├── /discipline-mappings                   — raw → standard disciplines
  │   ├── /timeseries                            — Curva S monthly series
  │   └── /changelog                             — snapshot change log
  │       └── /annotations                       — coordinator annotations
  └── /portfolio/changelog                       — change log of all projects

Error handling
--------------
  UpstreamError      → 503
  ApplicationError   → 422
  ValueError         → 422
  Unhandled          → 500 (FastAPI default)

Response envelope
-----------------
  Success  : { "data": <payload> }
  Error    : { "detail": "<message>" }

Running
-------
  uvicorn api:app --reload
"""

from __future__ import annotations

import dataclasses
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Path, Query, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi_mcp import FastApiMCP
from loguru import logger
from pydantic import BaseModel, EmailStr, Field, field_validator

from application import (
    # Exceptions
    ApplicationError,
    UpstreamError,
    # Use-case commands
    CalculateProgressCommand,
    GetPortfolioChangeLogCommand,
    GetProgressTimeSeriesCommand,
    SaveChangeAnnotationCommand,
    StoreDisciplineMappingsCommand,
    StoreSnapshotCommand,
    StoreTaskListCommand,
    UpdateDefaultWeightsCommand,
    UpdateProjectWeightsCommand,
    # Use-case classes
    CalculateProgressUseCase,
    GetChangeLogUseCase,
    GetDefaultWeightsUseCase,
    GetPortfolioChangeLogUseCase,
    GetProgressTimeSeriesUseCase,
    GetProjectWeightsUseCase,
    ResetProjectWeightsUseCase,
    SaveChangeAnnotationUseCase,
    StoreDisciplineMappingsUseCase,
    StoreSnapshotUseCase,
    StoreTaskListUseCase,
    UpdateDefaultWeightsUseCase,
    UpdateProjectWeightsUseCase,
    AbstractUnitOfWork,
)
from config import settings
from infrastructure import InMemoryUnitOfWork
from log import setup_logging
from model import ChangeType


# ---------------------------------------------------------------------------
# App bootstrap
# ---------------------------------------------------------------------------

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description=(
        "REST API for weighted project progress (Curva S): three-layer weight "
        "configuration, per-task weights, schedule performance index, monthly "
        "cumulative curves and the monthly snapshot change log."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    debug=settings.DEBUG,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def configure_logging():
    setup_logging()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} starting")


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------

@app.exception_handler(UpstreamError)
async def upstream_error_handler(request, exc: UpstreamError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ApplicationError)
async def application_error_handler(request, exc: ApplicationError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_uow() -> AbstractUnitOfWork:
    """Returns the in-memory Unit of Work (no database required)."""
    return InMemoryUnitOfWork()


# ---------------------------------------------------------------------------
# Envelope helper
# ---------------------------------------------------------------------------

def _ok(data: Any) -> Dict:
    """Wrap a DTO or list of DTOs in the standard success envelope."""
    if dataclasses.is_dataclass(data):
        return {"data": dataclasses.asdict(data)}
    if isinstance(data, list):
        return {
            "data": [
                dataclasses.asdict(item) if dataclasses.is_dataclass(item) else item
                for item in data
            ]
        }
    return {"data": data}


# ===========================================================================
# REQUEST BODY SCHEMAS  (Pydantic v2)
# ===========================================================================

# ---------------------------------------------------------------------------
# Weight schemas
# ---------------------------------------------------------------------------

class PhaseWeightRow(BaseModel):
    phase_name: str = Field(..., min_length=1, max_length=200)
    weight_percent: float = Field(..., ge=0, le=100)
    sort_order: Optional[int] = Field(default=None, ge=0)


class DisciplineWeightRow(BaseModel):
    discipline_name: str = Field(..., min_length=1, max_length=200)
    weight_factor: float = Field(..., ge=0)
    standard_discipline_id: Optional[str] = None


class ActivityWeightRow(BaseModel):
    activity_type: str = Field(..., min_length=1, max_length=100)
    weight_factor: float = Field(..., ge=0)


class UpdateDefaultWeightsRequest(BaseModel):
    phase_weights: Optional[List[PhaseWeightRow]] = None
    discipline_weights: Optional[List[DisciplineWeightRow]] = None
    activity_weights: Optional[List[ActivityWeightRow]] = None

    @field_validator("phase_weights", "discipline_weights", "activity_weights")
    @classmethod
    def layer_not_empty(cls, v):
        if v is not None and len(v) == 0:
            raise ValueError("A weight layer, when given, must contain at least one entry.")
        return v


class UpdateProjectWeightsRequest(BaseModel):
    phase_weights: Optional[Dict[str, float]] = Field(
        default=None, description="Phase name → percent (replaces the whole phase layer)."
    )
    discipline_weights: Optional[Dict[str, float]] = Field(
        default=None, description="Discipline name → factor (replaces the whole layer)."
    )
    activity_weights: Optional[Dict[str, float]] = Field(
        default=None, description="Activity type → factor (replaces the whole layer)."
    )

    @field_validator("phase_weights")
    @classmethod
    def percents_in_range(cls, v):
        if v and any(not (0 <= pct <= 100) for pct in v.values()):
            raise ValueError("Phase percentages must be between 0 and 100.")
        return v

    @field_validator("discipline_weights", "activity_weights")
    @classmethod
    def factors_non_negative(cls, v):
        if v and any(factor < 0 for factor in v.values()):
            raise ValueError("Weight factors must be >= 0.")
        return v


# ---------------------------------------------------------------------------
# Task data schemas
# ---------------------------------------------------------------------------

class StoreTasksRequest(BaseModel):
    tasks: List[Dict[str, Any]] = Field(
        ..., description="Level-5 task rows (NomeDaTarefa, Disciplina, Status, fase_nome ...)."
    )


class StandardDiscipline(BaseModel):
    discipline_name: Optional[str] = None
    short_name: Optional[str] = None


class DisciplineMappingRow(BaseModel):
    external_discipline_name: str = Field(..., min_length=1)
    standard_discipline: Optional[StandardDiscipline] = None


class StoreDisciplineMappingsRequest(BaseModel):
    mappings: List[DisciplineMappingRow]


# ---------------------------------------------------------------------------
# Annotation schemas
# ---------------------------------------------------------------------------

class SaveAnnotationRequest(BaseModel):
    from_snapshot_date: date
    to_snapshot_date: date
    change_type: ChangeType
    task_name: str = Field(..., min_length=1)
    disciplina: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    justification: Optional[str] = Field(default=None, max_length=5000)
    is_visible: bool = True
    user_email: Optional[EmailStr] = None

    @field_validator("to_snapshot_date")
    @classmethod
    def to_after_from(cls, v, info):
        from_date = info.data.get("from_snapshot_date")
        if from_date and v <= from_date:
            raise ValueError("to_snapshot_date must be after from_snapshot_date.")
        return v


# ===========================================================================
# ROUTERS
# ===========================================================================

api_v1 = APIRouter(prefix="/api/v1")


# ---------------------------------------------------------------------------
# Default weights
# ---------------------------------------------------------------------------

weights_router = APIRouter(prefix="/weights", tags=["Weights"])


@weights_router.get(
    "/defaults",
    summary="Get the global default weight configuration",
)
def get_default_weights(uow: AbstractUnitOfWork = Depends(get_uow)):
    result = GetDefaultWeightsUseCase().execute(uow)
    return _ok(result)


@weights_router.put(
    "/defaults",
    summary="Replace one or more default weight layers",
)
def update_default_weights(
    body: UpdateDefaultWeightsRequest,
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Layers left out of the body keep their current rows.  The combined
    configuration must validate (phase percentages summing to 100 %).
    """
    cmd = UpdateDefaultWeightsCommand(
        phase_weights=[r.model_dump() for r in body.phase_weights] if body.phase_weights else None,
        discipline_weights=(
            [r.model_dump() for r in body.discipline_weights] if body.discipline_weights else None
        ),
        activity_weights=(
            [r.model_dump() for r in body.activity_weights] if body.activity_weights else None
        ),
    )
    result = UpdateDefaultWeightsUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Project weights
# ---------------------------------------------------------------------------

project_weights_router = APIRouter(
    prefix="/projects/{project_code}/weights", tags=["Project Weights"]
)


@project_weights_router.get(
    "",
    summary="Get the effective weight configuration of a project",
)
def get_project_weights(
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetProjectWeightsUseCase().execute(project_code, uow)
    return _ok(result)


@project_weights_router.put(
    "",
    summary="Store weight overrides for a project",
)
def update_project_weights(
    body: UpdateProjectWeightsRequest,
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Every layer supplied replaces the corresponding default layer wholesale;
    per-key merging is not supported.
    """
    cmd = UpdateProjectWeightsCommand(
        project_code=project_code,
        phase_weights=body.phase_weights,
        discipline_weights=body.discipline_weights,
        activity_weights=body.activity_weights,
    )
    result = UpdateProjectWeightsUseCase().execute(cmd, uow)
    return _ok(result)


@project_weights_router.delete(
    "",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a project's overrides (fall back to defaults)",
)
def reset_project_weights(
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    ResetProjectWeightsUseCase().execute(project_code, uow)


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------

progress_router = APIRouter(prefix="/projects/{project_code}", tags=["Progress"])


@progress_router.get(
    "/progress",
    summary="Weighted progress, planned progress and IDP of a project",
)
def get_progress(
    project_code: str = Path(..., min_length=1),
    today: Optional[date] = Query(None, description="Reference date (defaults to today)."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Returns the per-task weights, the progress summary, the phase breakdown
    and the effective weight configuration.
    """
    result = CalculateProgressUseCase().execute(
        CalculateProgressCommand(project_code=project_code, today=today), uow
    )
    return _ok(result)


@progress_router.get(
    "/tasks",
    summary="Per-task weight breakdown, in source row order",
)
def get_task_breakdown(
    project_code: str = Path(..., min_length=1),
    today: Optional[date] = Query(None, description="Reference date (defaults to today)."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = CalculateProgressUseCase().execute(
        CalculateProgressCommand(project_code=project_code, today=today), uow
    )
    return _ok(result.tasks)


@progress_router.get(
    "/timeseries",
    summary="Monthly Curva S series (current curve plus one curve per snapshot)",
)
def get_timeseries(
    project_code: str = Path(..., min_length=1),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    today: Optional[date] = Query(None, description="Reference date (defaults to today)."),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    if start_date and end_date and end_date < start_date:
        raise ValueError("end_date must not be before start_date.")
    cmd = GetProgressTimeSeriesCommand(
        project_code=project_code,
        start_date=start_date,
        end_date=end_date,
        today=today,
    )
    result = GetProgressTimeSeriesUseCase().execute(cmd, uow)
    return _ok(result)


# ---------------------------------------------------------------------------
# Task data loading
# ---------------------------------------------------------------------------

task_data_router = APIRouter(prefix="/projects/{project_code}", tags=["Task Data"])


@task_data_router.put(
    "/tasks",
    summary="Store the current Level-5 task list of a project",
)
def store_tasks(
    body: StoreTasksRequest,
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    count = StoreTaskListUseCase().execute(
        StoreTaskListCommand(project_code=project_code, tasks=body.tasks), uow
    )
    return _ok({"project_code": project_code, "stored_tasks": count})


@task_data_router.put(
    "/snapshots/{snapshot_date}",
    summary="Store a monthly snapshot of a project's task list",
)
def store_snapshot(
    body: StoreTasksRequest,
    project_code: str = Path(..., min_length=1),
    snapshot_date: date = Path(...),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = StoreSnapshotCommand(
        project_code=project_code, snapshot_date=snapshot_date, tasks=body.tasks
    )
    count = StoreSnapshotUseCase().execute(cmd, uow)
    return _ok({
        "project_code": project_code,
        "snapshot_date": snapshot_date.isoformat(),
        "stored_tasks": count,
    })


@task_data_router.put(
    "/discipline-mappings",
    summary="Store the raw → standard discipline mapping of a project",
)
def store_discipline_mappings(
    body: StoreDisciplineMappingsRequest,
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = StoreDisciplineMappingsCommand(
        project_code=project_code,
        mappings=[m.model_dump() for m in body.mappings],
    )
    table = StoreDisciplineMappingsUseCase().execute(cmd, uow)
    return _ok(table)


# ---------------------------------------------------------------------------
# Change log
# ---------------------------------------------------------------------------

changelog_router = APIRouter(prefix="/projects/{project_code}/changelog", tags=["Change Log"])


@changelog_router.get(
    "",
    summary="Changes between consecutive monthly snapshots (most recent first)",
)
def get_changelog(
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    result = GetChangeLogUseCase().execute(project_code, uow)
    return _ok(result)


@changelog_router.put(
    "/annotations",
    summary="Create or update the annotation of a detected change",
)
def save_annotation(
    body: SaveAnnotationRequest,
    project_code: str = Path(..., min_length=1),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    """
    Annotations are matched to changes by (from date, to date, change type,
    task name); saving twice with the same key updates the existing one.
    """
    cmd = SaveChangeAnnotationCommand(
        project_code=project_code,
        from_snapshot_date=body.from_snapshot_date,
        to_snapshot_date=body.to_snapshot_date,
        change_type=body.change_type.value,
        task_name=body.task_name,
        disciplina=body.disciplina,
        description=body.description,
        justification=body.justification,
        is_visible=body.is_visible,
        user_email=str(body.user_email) if body.user_email else None,
    )
    result = SaveChangeAnnotationUseCase().execute(cmd, uow)
    return _ok(result)


portfolio_router = APIRouter(prefix="/portfolio", tags=["Portfolio"])


@portfolio_router.get(
    "/changelog",
    summary="Change log across all projects, most disrupted first",
)
def get_portfolio_changelog(
    project_code: Optional[List[str]] = Query(
        None, description="Restrict to these project codes (repeatable)."
    ),
    uow: AbstractUnitOfWork = Depends(get_uow),
):
    cmd = GetPortfolioChangeLogCommand(project_codes=project_code)
    result = GetPortfolioChangeLogUseCase().execute(cmd, uow)
    return _ok(result)


# ===========================================================================
# REGISTER ROUTERS
# ===========================================================================

api_v1.include_router(weights_router)
api_v1.include_router(project_weights_router)
api_v1.include_router(progress_router)
api_v1.include_router(task_data_router)
api_v1.include_router(changelog_router)
api_v1.include_router(portfolio_router)

app.include_router(api_v1)


# ===========================================================================
# HEALTH CHECK
# ===========================================================================

@app.get("/health", tags=["Health"], summary="Service health check")
def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# MCP Server — exposes all API routes as MCP tools
# Accessible at: http://localhost:8000/mcp
# ---------------------------------------------------------------------------
mcp = FastApiMCP(app)
mcp.mount()


# ===========================================================================
# OPENAPI CUSTOMISATION — tag order and descriptions
# ===========================================================================

tags_metadata = [
    {
        "name": "Health",
        "description": "Liveness probe.",
    },
    {
        "name": "Weights",
        "description": (
            "Global default weights: phase percentages (must total 100 %), "
            "discipline factors and activity-stage factors."
        ),
    },
    {
        "name": "Project Weights",
        "description": (
            "Per-project overrides.  A supplied layer replaces the whole default "
            "layer; layers not overridden keep the defaults."
        ),
    },
    {
        "name": "Progress",
        "description": (
            "Weighted progress of the Level-5 tasks, planned progress to date, "
            "IDP (actual ÷ planned) and the monthly Curva S series."
        ),
    },
    {
        "name": "Task Data",
        "description": "Load current task lists, monthly snapshots and discipline mappings.",
    },
    {
        "name": "Change Log",
        "description": (
            "Schedule deviations, added, removed and cancelled tasks between "
            "consecutive monthly snapshots, with coordinator annotations."
        ),
    },
    {
        "name": "Portfolio",
        "description": "Change log consolidated over every project of the portfolio.",
    },
]

app.openapi_tags = tags_metadata

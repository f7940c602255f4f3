"""
application.py

Application layer for the Progress Curve (Curva S) & Snapshot-Diff engine.

Overview
--------
The application layer sits between the presentation layer (API / MCP tools)
and the pure services.  It is responsible for:

  1. Defining output DTOs (dataclasses) whose field names are the JSON
     contract consumed by the dashboards (``peso_na_fase``, ``idp``,
     ``month_pairs`` ...).  No domain objects are leaked upward.
  2. Declaring abstract Repository / Source interfaces so the application
     layer stays persistence-agnostic (implementations live in
     infrastructure.py).
  3. Declaring the UnitOfWork abstraction grouping those interfaces.
  4. Implementing Use Case handlers, one class per user-facing operation,
     that fetch inputs (in parallel where they are independent), invoke the
     services and assemble the response.

Structure
---------
DTOs
    PhaseWeightDTO, DisciplineWeightDTO, ActivityWeightDTO, WeightConfigurationDTO
    TaskWeightDTO, ProgressDTO, PhaseBreakdownDTO, ProgressResultDTO
    TimeSeriesPointDTO, SnapshotCurveDTO, TimeSeriesDTO
    AnnotationDTO, ChangeDTO, PairSummaryDTO, MonthPairDTO, OverallSummaryDTO
    DisciplineScoreDTO, ChangeLogDTO
    ProjectChangeLogDTO, PortfolioSummaryDTO, PortfolioChangeLogDTO

Repository interfaces
    AbstractWeightRepository
    AbstractAnnotationRepository
    AbstractTaskSource
    AbstractDisciplineMappingSource

Unit of Work
    AbstractUnitOfWork

Use Cases
    --- Weights ---
    GetDefaultWeightsUseCase
    UpdateDefaultWeightsUseCase
    GetProjectWeightsUseCase
    UpdateProjectWeightsUseCase
    ResetProjectWeightsUseCase

    --- Progress ---
    CalculateProgressUseCase
    GetProgressTimeSeriesUseCase

    --- Change log ---
    GetChangeLogUseCase
    GetPortfolioChangeLogUseCase
    SaveChangeAnnotationUseCase

    --- Data loading ---
    StoreTaskListUseCase
    StoreSnapshotUseCase
    StoreDisciplineMappingsUseCase

Design notes
------------
- Each use case accepts a UnitOfWork as its sole dependency.
- Independent reads are issued concurrently on a thread pool; if any of
  them fails the whole operation fails with UpstreamError.  A missing
  discipline-mapping table is the one tolerated gap (treated as empty).
- Dates flowing out are ISO-8601 strings.
- Errors bubble up as ApplicationError (business) or ValueError (validation).
"""

from __future__ import annotations

import abc
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from config import settings
from model import (
    ActivityWeight,
    ChangeAnnotation,
    ChangeType,
    DetectedChange,
    DisciplineScore,
    DisciplineWeight,
    MonthPair,
    OverallSummary,
    PairSummary,
    PhaseBreakdown,
    PhaseWeight,
    ProgressSummary,
    SnapshotDiffResult,
    TaskWeightResult,
    TimeSeriesPoint,
    WeightConfiguration,
    as_task_records,
    parse_task_date,
)
from service import (
    AnnotationOverlayService,
    SnapshotDiffService,
    WeightCalculationService,
    month_label,
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ApplicationError(Exception):
    """Raised when a use case cannot complete due to a business rule violation."""


class UpstreamError(ApplicationError):
    """Raised when an external store could not be read."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fmt(dt: Optional[datetime]) -> Optional[str]:
    """Convert a datetime to an ISO-8601 UTC string, or None."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def _fmt_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


# ===========================================================================
# DTO DEFINITIONS
# ===========================================================================

# ---------------------------------------------------------------------------
# Weight DTOs
# ---------------------------------------------------------------------------

@dataclass
class PhaseWeightDTO:
    phase_name: str
    weight_percent: float
    sort_order: int


@dataclass
class DisciplineWeightDTO:
    discipline_name: str
    weight_factor: float
    standard_discipline_id: Optional[str]


@dataclass
class ActivityWeightDTO:
    activity_type: str
    weight_factor: float


@dataclass
class WeightConfigurationDTO:
    project_code: Optional[str]
    is_customized: bool
    phase_weights: List[PhaseWeightDTO]
    discipline_weights: List[DisciplineWeightDTO]
    activity_weights: List[ActivityWeightDTO]
    total_phase_percent: float
    is_valid: bool


# ---------------------------------------------------------------------------
# Progress DTOs
# ---------------------------------------------------------------------------

@dataclass
class TaskWeightDTO:
    rowNumber: int
    task_name: str
    fase: Optional[str]
    discipline_raw: str
    discipline_standard: str
    activity_type: Optional[str]
    status: Optional[str]
    is_complete: bool
    data_inicio: Optional[str]
    data_termino: Optional[str]
    peso_na_fase: float
    peso_no_projeto: float


@dataclass
class ProgressDTO:
    total_progress: float = 0.0
    planned_progress: float = 0.0
    idp: Optional[float] = None
    desvio: Optional[float] = None
    total_tasks: int = 0
    active_tasks: int = 0
    excluded_tasks: int = 0
    completed_tasks: int = 0


@dataclass
class PhaseBreakdownDTO:
    phase_name: str
    weight_percent: float
    total_tasks: int
    completed_tasks: int
    phase_progress: float
    phase_total_weight: float


@dataclass
class ProgressResultDTO:
    tasks: List[TaskWeightDTO] = field(default_factory=list)
    progress: ProgressDTO = field(default_factory=ProgressDTO)
    phase_breakdown: List[PhaseBreakdownDTO] = field(default_factory=list)
    weights: Optional[WeightConfigurationDTO] = None


# ---------------------------------------------------------------------------
# Time series DTOs
# ---------------------------------------------------------------------------

@dataclass
class TimeSeriesPointDTO:
    month: str
    year: int
    month_number: int
    cumulative_progress: float
    monthly_increment: float
    is_past: Optional[bool] = None


@dataclass
class SnapshotCurveDTO:
    snapshot_date: str
    label: str
    timeseries: List[TimeSeriesPointDTO]


@dataclass
class TimeSeriesDTO:
    timeseries: List[TimeSeriesPointDTO] = field(default_factory=list)
    snapshot_curves: List[SnapshotCurveDTO] = field(default_factory=list)
    progress: Optional[ProgressDTO] = None
    weights: Optional[WeightConfigurationDTO] = None


# ---------------------------------------------------------------------------
# Change log DTOs
# ---------------------------------------------------------------------------

@dataclass
class AnnotationDTO:
    id: str
    project_code: str
    from_snapshot_date: str
    to_snapshot_date: str
    change_type: str
    change_type_label: str
    task_name: str
    disciplina: Optional[str]
    description: Optional[str]
    justification: Optional[str]
    is_visible: bool
    created_by_email: Optional[str]
    updated_by_email: Optional[str]
    created_at: Optional[str]
    updated_at: Optional[str]


@dataclass
class ChangeDTO:
    type: str
    task_name: str
    disciplina: Optional[str]
    fase_nome: Optional[str]
    prev_data_termino: Optional[str]
    curr_data_termino: Optional[str]
    prev_duration: Optional[float]
    curr_duration: Optional[float]
    delta_days: Optional[float]
    prev_status: Optional[str]
    curr_status: Optional[str]
    annotation: Optional[AnnotationDTO] = None


@dataclass
class PairSummaryDTO:
    total: int
    desvios: int
    criadas: int
    deletadas: int
    nao_feitas: int
    annotated: int


@dataclass
class MonthPairDTO:
    from_snapshot: str
    to_snapshot: str
    from_label: str
    to_label: str
    changes: List[ChangeDTO]
    summary: PairSummaryDTO


@dataclass
class OverallSummaryDTO:
    total_changes: int = 0
    months_analyzed: int = 0
    total_desvios: int = 0
    total_criadas: int = 0
    total_deletadas: int = 0
    total_nao_feitas: int = 0
    total_annotated: int = 0


@dataclass
class DisciplineScoreDTO:
    disciplina: str
    total: int
    desvios: int
    criadas: int
    deletadas: int
    nao_feitas: int
    total_desvio_dias: float


@dataclass
class ChangeLogDTO:
    month_pairs: List[MonthPairDTO] = field(default_factory=list)
    overall_summary: OverallSummaryDTO = field(default_factory=OverallSummaryDTO)
    discipline_scores: List[DisciplineScoreDTO] = field(default_factory=list)


@dataclass
class ProjectChangeLogDTO:
    project_code: str
    month_pairs: List[MonthPairDTO]
    overall_summary: OverallSummaryDTO
    discipline_scores: List[DisciplineScoreDTO]


@dataclass
class PortfolioSummaryDTO:
    total_projects: int = 0
    total_changes: int = 0
    total_desvios: int = 0
    total_criadas: int = 0
    total_deletadas: int = 0
    total_nao_feitas: int = 0


@dataclass
class PortfolioChangeLogDTO:
    by_project: List[ProjectChangeLogDTO] = field(default_factory=list)
    summary: PortfolioSummaryDTO = field(default_factory=PortfolioSummaryDTO)
    aggregated_discipline_scores: List[DisciplineScoreDTO] = field(default_factory=list)


# ===========================================================================
# DTO ASSEMBLERS
# ===========================================================================

class _Assembler:
    """Converts domain results into DTOs."""

    @staticmethod
    def weights(config: WeightConfiguration) -> WeightConfigurationDTO:
        phases = sorted(config.phase_weights, key=lambda pw: pw.sort_order)
        disciplines = sorted(
            config.discipline_weights, key=lambda dw: (-dw.factor, dw.discipline_name)
        )
        return WeightConfigurationDTO(
            project_code=config.project_code,
            is_customized=config.is_customized,
            phase_weights=[
                PhaseWeightDTO(pw.phase_name, pw.percent, pw.sort_order) for pw in phases
            ],
            discipline_weights=[
                DisciplineWeightDTO(dw.discipline_name, dw.factor, dw.standard_discipline_id)
                for dw in disciplines
            ],
            activity_weights=[
                ActivityWeightDTO(aw.activity_type, aw.factor) for aw in config.activity_weights
            ],
            total_phase_percent=config.total_phase_percent,
            is_valid=config.is_phase_weight_valid,
        )

    @staticmethod
    def task(t: TaskWeightResult) -> TaskWeightDTO:
        return TaskWeightDTO(
            rowNumber=t.row_number,
            task_name=t.task_name,
            fase=t.phase,
            discipline_raw=t.discipline_raw,
            discipline_standard=t.discipline_standard,
            activity_type=t.activity_type,
            status=t.status,
            is_complete=t.is_complete,
            data_inicio=_fmt_date(t.start_date),
            data_termino=_fmt_date(t.end_date),
            peso_na_fase=t.weight_within_phase,
            peso_no_projeto=t.weight_within_project,
        )

    @staticmethod
    def progress(p: ProgressSummary) -> ProgressDTO:
        return ProgressDTO(
            total_progress=p.total_progress,
            planned_progress=p.planned_progress,
            idp=p.idp,
            desvio=p.desvio,
            total_tasks=p.total_tasks,
            active_tasks=p.active_tasks,
            excluded_tasks=p.excluded_tasks,
            completed_tasks=p.completed_tasks,
        )

    @staticmethod
    def phase_breakdown(pb: PhaseBreakdown) -> PhaseBreakdownDTO:
        return PhaseBreakdownDTO(
            phase_name=pb.phase_name,
            weight_percent=pb.weight_percent,
            total_tasks=pb.total_tasks,
            completed_tasks=pb.completed_tasks,
            phase_progress=pb.phase_progress,
            phase_total_weight=pb.phase_total_weight,
        )

    @staticmethod
    def point(p: TimeSeriesPoint) -> TimeSeriesPointDTO:
        return TimeSeriesPointDTO(
            month=p.month,
            year=p.year,
            month_number=p.month_number,
            cumulative_progress=p.cumulative_progress,
            monthly_increment=p.monthly_increment,
            is_past=p.is_past,
        )

    @staticmethod
    def annotation(a: ChangeAnnotation) -> AnnotationDTO:
        return AnnotationDTO(
            id=str(a.id),
            project_code=a.project_code,
            from_snapshot_date=a.from_snapshot_date.isoformat(),
            to_snapshot_date=a.to_snapshot_date.isoformat(),
            change_type=a.change_type.value,
            change_type_label=a.change_type.label,
            task_name=a.task_name,
            disciplina=a.disciplina,
            description=a.description,
            justification=a.justification,
            is_visible=a.is_visible,
            created_by_email=a.created_by_email,
            updated_by_email=a.updated_by_email,
            created_at=_fmt(a.created_at),
            updated_at=_fmt(a.updated_at),
        )

    @staticmethod
    def change(c: DetectedChange) -> ChangeDTO:
        return ChangeDTO(
            type=c.type.value,
            task_name=c.task_name,
            disciplina=c.disciplina,
            fase_nome=c.fase_nome,
            prev_data_termino=_fmt_date(c.prev_data_termino),
            curr_data_termino=_fmt_date(c.curr_data_termino),
            prev_duration=c.prev_duration,
            curr_duration=c.curr_duration,
            delta_days=c.delta_days,
            prev_status=c.prev_status,
            curr_status=c.curr_status,
            annotation=_Assembler.annotation(c.annotation) if c.annotation else None,
        )

    @staticmethod
    def pair_summary(s: PairSummary) -> PairSummaryDTO:
        return PairSummaryDTO(
            total=s.total,
            desvios=s.desvios,
            criadas=s.criadas,
            deletadas=s.deletadas,
            nao_feitas=s.nao_feitas,
            annotated=s.annotated,
        )

    @staticmethod
    def month_pair(mp: MonthPair) -> MonthPairDTO:
        return MonthPairDTO(
            from_snapshot=mp.from_snapshot,
            to_snapshot=mp.to_snapshot,
            from_label=mp.from_label,
            to_label=mp.to_label,
            changes=[_Assembler.change(c) for c in mp.changes],
            summary=_Assembler.pair_summary(mp.summary),
        )

    @staticmethod
    def overall_summary(s: OverallSummary) -> OverallSummaryDTO:
        return OverallSummaryDTO(
            total_changes=s.total_changes,
            months_analyzed=s.months_analyzed,
            total_desvios=s.total_desvios,
            total_criadas=s.total_criadas,
            total_deletadas=s.total_deletadas,
            total_nao_feitas=s.total_nao_feitas,
            total_annotated=s.total_annotated,
        )

    @staticmethod
    def discipline_score(s: DisciplineScore) -> DisciplineScoreDTO:
        return DisciplineScoreDTO(
            disciplina=s.disciplina,
            total=s.total,
            desvios=s.desvios,
            criadas=s.criadas,
            deletadas=s.deletadas,
            nao_feitas=s.nao_feitas,
            total_desvio_dias=s.total_desvio_dias,
        )

    @staticmethod
    def change_log(
        result: SnapshotDiffResult, scores: Iterable[DisciplineScore]
    ) -> ChangeLogDTO:
        return ChangeLogDTO(
            month_pairs=[_Assembler.month_pair(mp) for mp in result.month_pairs],
            overall_summary=_Assembler.overall_summary(result.overall_summary),
            discipline_scores=[_Assembler.discipline_score(s) for s in scores],
        )


# ===========================================================================
# REPOSITORY INTERFACES
# ===========================================================================

class AbstractWeightRepository(abc.ABC):
    """Global default weight layers (persistence rows) and per-project overrides."""
    @abc.abstractmethod
    def find_default_phase_weights(self) -> List[Dict[str, Any]]: ...
    @abc.abstractmethod
    def find_default_discipline_weights(self) -> List[Dict[str, Any]]: ...
    @abc.abstractmethod
    def find_default_activity_weights(self) -> List[Dict[str, Any]]: ...
    @abc.abstractmethod
    def save_default_phase_weights(self, rows: List[Dict[str, Any]]) -> None: ...
    @abc.abstractmethod
    def save_default_discipline_weights(self, rows: List[Dict[str, Any]]) -> None: ...
    @abc.abstractmethod
    def save_default_activity_weights(self, rows: List[Dict[str, Any]]) -> None: ...
    @abc.abstractmethod
    def find_project_overrides(self, project_code: str) -> Optional[Dict[str, Any]]: ...
    @abc.abstractmethod
    def save_project_overrides(self, project_code: str, overrides: Dict[str, Any]) -> None: ...
    @abc.abstractmethod
    def delete_project_overrides(self, project_code: str) -> bool: ...


class AbstractAnnotationRepository(abc.ABC):
    @abc.abstractmethod
    def list_for_project(self, project_code: str) -> List[ChangeAnnotation]: ...
    @abc.abstractmethod
    def find_by_key(self, project_code: str, matching_key: str) -> Optional[ChangeAnnotation]: ...
    @abc.abstractmethod
    def save(self, annotation: ChangeAnnotation) -> None: ...


class AbstractTaskSource(abc.ABC):
    """Level-5 task rows: the current schedule and its monthly snapshots."""
    @abc.abstractmethod
    def query_tasks(self, project_code: str) -> List[Dict[str, Any]]: ...
    @abc.abstractmethod
    def query_snapshots(self, project_code: str) -> Dict[date, List[Dict[str, Any]]]: ...
    @abc.abstractmethod
    def query_all_snapshots(self) -> Dict[str, Dict[date, List[Dict[str, Any]]]]: ...
    @abc.abstractmethod
    def save_tasks(self, project_code: str, tasks: List[Dict[str, Any]]) -> None: ...
    @abc.abstractmethod
    def save_snapshot(
        self, project_code: str, snapshot_date: date, tasks: List[Dict[str, Any]]
    ) -> None: ...


class AbstractDisciplineMappingSource(abc.ABC):
    @abc.abstractmethod
    def fetch_mappings(self, project_code: str) -> Optional[List[Dict[str, Any]]]: ...
    @abc.abstractmethod
    def save_mappings(self, project_code: str, rows: List[Dict[str, Any]]) -> None: ...


# ===========================================================================
# UNIT OF WORK
# ===========================================================================

class AbstractUnitOfWork(abc.ABC):
    """
    Groups all repositories under a single transactional boundary.
    Use as a context manager:

        with uow:
            uow.annotations.save(annotation)
            uow.commit()
    """
    weights: AbstractWeightRepository
    annotations: AbstractAnnotationRepository
    tasks: AbstractTaskSource
    discipline_mappings: AbstractDisciplineMappingSource

    def __enter__(self) -> "AbstractUnitOfWork":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            self.rollback()
        else:
            self.commit()

    @abc.abstractmethod
    def commit(self) -> None: ...

    @abc.abstractmethod
    def rollback(self) -> None: ...


# ===========================================================================
# SERVICE SINGLETONS (shared across use cases)
# ===========================================================================

_weight_svc = WeightCalculationService(settings.COMPLETED_STATUSES)
_diff_svc = SnapshotDiffService(settings.CANCELLED_STATUSES)
_overlay_svc = AnnotationOverlayService()


# ===========================================================================
# USE CASE HELPERS
# ===========================================================================

def _read_in_parallel(
    reads: Mapping[str, Callable[[], Any]], max_workers: Optional[int] = None
) -> Dict[str, Any]:
    """
    Run independent reads concurrently and wait for all of them.

    The first failure (in submission order) is raised as UpstreamError.
    """
    workers = max(1, min(max_workers or settings.READ_MAX_WORKERS, len(reads) or 1))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        futures = {name: pool.submit(read) for name, read in reads.items()}
        results: Dict[str, Any] = {}
        for name, future in futures.items():
            try:
                results[name] = future.result()
            except Exception as exc:
                logger.error(f"Read '{name}' failed: {exc}")
                raise UpstreamError(f"Could not read {name}: {exc}") from exc
    return results


def _weight_reads(uow: AbstractUnitOfWork, project_code: Optional[str] = None) -> Dict[str, Callable]:
    reads: Dict[str, Callable] = {
        "phase_weights": uow.weights.find_default_phase_weights,
        "discipline_weights": uow.weights.find_default_discipline_weights,
        "activity_weights": uow.weights.find_default_activity_weights,
    }
    if project_code is not None:
        reads["overrides"] = lambda: uow.weights.find_project_overrides(project_code)
    return reads


def _build_configuration(
    results: Mapping[str, Any], project_code: Optional[str] = None
) -> WeightConfiguration:
    defaults = WeightConfiguration.from_defaults(
        results.get("phase_weights"),
        results.get("discipline_weights"),
        results.get("activity_weights"),
    )
    if project_code is None:
        return defaults
    return WeightConfiguration.merge_with_overrides(
        defaults, results.get("overrides"), project_code
    )


def build_discipline_mapping_table(rows: Optional[Iterable[Mapping[str, Any]]]) -> Dict[str, str]:
    """
    Build the raw-name -> standard-name lookup from mapping rows of the form
    ``{"external_discipline_name": ..., "standard_discipline": {...}}``.
    """
    table: Dict[str, str] = {}
    for row in rows or ():
        external = row.get("external_discipline_name")
        standard = row.get("standard_discipline") or {}
        standard_name = standard.get("discipline_name") or standard.get("short_name")
        if external and standard_name:
            table[external] = standard_name
    return table


def _progress_reads(uow: AbstractUnitOfWork, project_code: str) -> Dict[str, Callable]:
    reads = {"tasks": lambda: uow.tasks.query_tasks(project_code)}
    reads.update(_weight_reads(uow, project_code))
    reads["discipline_mappings"] = lambda: uow.discipline_mappings.fetch_mappings(project_code)
    return reads


def _mapping_table(results: Mapping[str, Any], project_code: str) -> Dict[str, str]:
    rows = results.get("discipline_mappings")
    if rows is None:
        logger.warning(f"No discipline mappings for project {project_code}; using raw labels")
    return build_discipline_mapping_table(rows)


def _task_date_range(tasks: Iterable[Any]) -> Tuple[Optional[date], Optional[date]]:
    """Earliest start date and latest end date over a task list."""
    records = as_task_records(tasks)
    starts = [r.start_date for r in records if r.start_date is not None]
    ends = [r.end_date for r in records if r.end_date is not None]
    return (min(starts) if starts else None, max(ends) if ends else None)


def _validated(config: WeightConfiguration) -> WeightConfiguration:
    result = config.validate()
    if not result.valid:
        raise ApplicationError(f"Invalid weight configuration: {'; '.join(result.errors)}")
    return config


# ===========================================================================
# USE CASES — WEIGHTS
# ===========================================================================

class GetDefaultWeightsUseCase:
    def execute(self, uow: AbstractUnitOfWork) -> WeightConfigurationDTO:
        with uow:
            results = _read_in_parallel(_weight_reads(uow))
            return _Assembler.weights(_build_configuration(results))


@dataclass
class UpdateDefaultWeightsCommand:
    phase_weights: Optional[List[Dict[str, Any]]] = None
    discipline_weights: Optional[List[Dict[str, Any]]] = None
    activity_weights: Optional[List[Dict[str, Any]]] = None


class UpdateDefaultWeightsUseCase:
    """
    Replace one or more default layers.  Layers not supplied keep their
    stored rows; the resulting configuration must validate before anything
    is written.
    """

    def execute(
        self, cmd: UpdateDefaultWeightsCommand, uow: AbstractUnitOfWork
    ) -> WeightConfigurationDTO:
        with uow:
            current = _read_in_parallel(_weight_reads(uow))

            phase_rows = current["phase_weights"]
            if cmd.phase_weights is not None:
                phase_rows = [
                    {
                        "phase_name": row.get("phase_name"),
                        "weight_percent": row.get("weight_percent"),
                        "sort_order": row.get("sort_order") or index,
                    }
                    for index, row in enumerate(cmd.phase_weights, start=1)
                ]
            discipline_rows = current["discipline_weights"]
            if cmd.discipline_weights is not None:
                discipline_rows = [
                    {
                        "discipline_name": row.get("discipline_name"),
                        "weight_factor": row.get("weight_factor"),
                        "standard_discipline_id": row.get("standard_discipline_id") or None,
                    }
                    for row in cmd.discipline_weights
                ]
            activity_rows = current["activity_weights"]
            if cmd.activity_weights is not None:
                activity_rows = [
                    {
                        "activity_type": row.get("activity_type"),
                        "weight_factor": row.get("weight_factor"),
                    }
                    for row in cmd.activity_weights
                ]

            config = _validated(
                WeightConfiguration.from_defaults(phase_rows, discipline_rows, activity_rows)
            )

            if cmd.phase_weights is not None:
                uow.weights.save_default_phase_weights(
                    [pw.to_persistence() for pw in config.phase_weights]
                )
            if cmd.discipline_weights is not None:
                uow.weights.save_default_discipline_weights(
                    [dw.to_persistence() for dw in config.discipline_weights]
                )
            if cmd.activity_weights is not None:
                uow.weights.save_default_activity_weights(
                    [aw.to_persistence() for aw in config.activity_weights]
                )
            uow.commit()
            logger.info(
                f"Default weights updated: {len(config.phase_weights)} phases, "
                f"{len(config.discipline_weights)} disciplines, "
                f"{len(config.activity_weights)} activities"
            )
            return _Assembler.weights(config)


class GetProjectWeightsUseCase:
    def execute(self, project_code: str, uow: AbstractUnitOfWork) -> WeightConfigurationDTO:
        with uow:
            results = _read_in_parallel(_weight_reads(uow, project_code))
            return _Assembler.weights(_build_configuration(results, project_code))


@dataclass
class UpdateProjectWeightsCommand:
    project_code: str
    phase_weights: Optional[Dict[str, float]] = None
    discipline_weights: Optional[Dict[str, float]] = None
    activity_weights: Optional[Dict[str, float]] = None


class UpdateProjectWeightsUseCase:
    """
    Store a project's override maps.  Each supplied map replaces the whole
    corresponding default layer; omitted layers are filled from the defaults
    only to validate the combined configuration.
    """

    def execute(
        self, cmd: UpdateProjectWeightsCommand, uow: AbstractUnitOfWork
    ) -> WeightConfigurationDTO:
        if not cmd.project_code or not cmd.project_code.strip():
            raise ValueError("Project code is required.")

        # Layers left empty render as {} and keep the defaults on merge
        requested = WeightConfiguration(project_code=cmd.project_code, is_customized=True)
        if cmd.phase_weights:
            requested = requested.with_phase_weights(
                PhaseWeight(name, percent, sort_order)
                for sort_order, (name, percent) in enumerate(cmd.phase_weights.items(), start=1)
            )
        if cmd.discipline_weights:
            requested = requested.with_discipline_weights(
                DisciplineWeight(name, factor) for name, factor in cmd.discipline_weights.items()
            )
        if cmd.activity_weights:
            requested = requested.with_activity_weights(
                ActivityWeight(activity, factor) for activity, factor in cmd.activity_weights.items()
            )
        overrides = requested.to_override_persistence()

        with uow:
            defaults = _build_configuration(_read_in_parallel(_weight_reads(uow)))
            config = _validated(
                WeightConfiguration.merge_with_overrides(defaults, overrides, cmd.project_code)
            )
            uow.weights.save_project_overrides(cmd.project_code, overrides)
            uow.commit()
            logger.info(f"Weight overrides saved for project {cmd.project_code}")
            return _Assembler.weights(config)


class ResetProjectWeightsUseCase:
    """
    Drop a project's overrides so it falls back to the defaults.  Resetting
    a project that already uses the defaults is a no-op.
    """

    def execute(self, project_code: str, uow: AbstractUnitOfWork) -> None:
        with uow:
            removed = uow.weights.delete_project_overrides(project_code)
            uow.commit()
            if removed:
                logger.info(f"Weight overrides removed for project {project_code}")
            else:
                logger.info(f"Project {project_code} had no weight overrides; nothing to reset")


# ===========================================================================
# USE CASES — PROGRESS
# ===========================================================================

@dataclass
class CalculateProgressCommand:
    project_code: str
    today: Optional[date] = None


class CalculateProgressUseCase:
    def execute(self, cmd: CalculateProgressCommand, uow: AbstractUnitOfWork) -> ProgressResultDTO:
        with uow:
            results = _read_in_parallel(_progress_reads(uow, cmd.project_code))

        tasks = results["tasks"] or []
        if not tasks:
            logger.info(f"Project {cmd.project_code} has no tasks; returning empty progress")
            return ProgressResultDTO()

        config = _build_configuration(results, cmd.project_code)
        calc = _weight_svc.calculate(
            tasks, config, _mapping_table(results, cmd.project_code), today=cmd.today
        )
        logger.info(
            f"Progress calculated for {cmd.project_code}: {calc.progress.total_tasks} tasks, "
            f"total={calc.progress.total_progress}, planned={calc.progress.planned_progress}"
        )
        return ProgressResultDTO(
            tasks=[_Assembler.task(t) for t in calc.tasks],
            progress=_Assembler.progress(calc.progress),
            phase_breakdown=[_Assembler.phase_breakdown(pb) for pb in calc.phase_breakdown],
            weights=_Assembler.weights(config),
        )


@dataclass
class GetProgressTimeSeriesCommand:
    project_code: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    today: Optional[date] = None


class GetProgressTimeSeriesUseCase:
    """
    Current curve (actual + projection) plus one planned curve per monthly
    snapshot, all on the same month axis.

    The axis runs from the earliest task start to the latest task end unless
    explicit bounds are given, and is widened to cover every snapshot.
    """

    def execute(self, cmd: GetProgressTimeSeriesCommand, uow: AbstractUnitOfWork) -> TimeSeriesDTO:
        with uow:
            reads = _progress_reads(uow, cmd.project_code)
            reads["snapshots"] = lambda: uow.tasks.query_snapshots(cmd.project_code)
            results = _read_in_parallel(reads)

        tasks = results["tasks"] or []
        if not tasks:
            return TimeSeriesDTO()

        config = _build_configuration(results, cmd.project_code)
        mappings = _mapping_table(results, cmd.project_code)
        calc = _weight_svc.calculate(tasks, config, mappings, today=cmd.today)

        derived_start, derived_end = _task_date_range(tasks)
        start = cmd.start_date or derived_start
        end = cmd.end_date or derived_end

        snapshots: Dict[date, List[Any]] = {}
        for key, snapshot_tasks in (results.get("snapshots") or {}).items():
            snapshot_date = parse_task_date(key)
            if snapshot_date is not None:
                snapshots[snapshot_date] = snapshot_tasks or []

        for snapshot_tasks in snapshots.values():
            snap_start, snap_end = _task_date_range(snapshot_tasks)
            if snap_start and (start is None or snap_start < start):
                start = snap_start
            if snap_end and (end is None or snap_end > end):
                end = snap_end

        timeseries = _weight_svc.calculate_time_series(calc.tasks, start, end, today=cmd.today)

        curves: List[SnapshotCurveDTO] = []
        for snapshot_date in sorted(snapshots):
            snap_calc = _weight_svc.calculate(
                snapshots[snapshot_date], config, mappings, today=cmd.today
            )
            planned = _weight_svc.calculate_planned_time_series(snap_calc.tasks, start, end)
            curves.append(SnapshotCurveDTO(
                snapshot_date=snapshot_date.isoformat(),
                label=month_label(snapshot_date),
                timeseries=[_Assembler.point(p) for p in planned],
            ))

        logger.info(
            f"Time series for {cmd.project_code}: {len(timeseries)} months, "
            f"{len(curves)} snapshot curves"
        )
        return TimeSeriesDTO(
            timeseries=[_Assembler.point(p) for p in timeseries],
            snapshot_curves=curves,
            progress=_Assembler.progress(calc.progress),
            weights=_Assembler.weights(config),
        )


# ===========================================================================
# USE CASES — CHANGE LOG
# ===========================================================================

class GetChangeLogUseCase:
    """
    Diff the project's monthly snapshots, overlay the coordinator's
    annotations and rank disciplines by disruption.
    """

    def execute(self, project_code: str, uow: AbstractUnitOfWork) -> ChangeLogDTO:
        if not project_code or not project_code.strip():
            raise ValueError("Project code is required.")

        with uow:
            snapshots = _read_in_parallel(
                {"snapshots": lambda: uow.tasks.query_snapshots(project_code)}
            )["snapshots"]
            if not snapshots:
                return ChangeLogDTO()

            diff = _diff_svc.diff_all_snapshots(snapshots)

            try:
                annotations = uow.annotations.list_for_project(project_code)
            except Exception as exc:
                logger.warning(f"Could not load annotations for {project_code}: {exc}")
                annotations = []

        merged = _overlay_svc.merge(diff, annotations)
        scores = _diff_svc.score_disciplines(merged)
        logger.info(
            f"Change log for {project_code}: {merged.overall_summary.months_analyzed} month pairs, "
            f"{merged.overall_summary.total_changes} changes"
        )
        return _Assembler.change_log(merged, scores)


@dataclass
class GetPortfolioChangeLogCommand:
    project_codes: Optional[List[str]] = None


class GetPortfolioChangeLogUseCase:
    """
    Change logs of every project with at least two snapshots, diffed
    concurrently.  Projects without changes are left out; the rest are
    ordered by total changes, most disrupted first.
    """

    def execute(
        self, cmd: GetPortfolioChangeLogCommand, uow: AbstractUnitOfWork
    ) -> PortfolioChangeLogDTO:
        with uow:
            all_snapshots = _read_in_parallel(
                {"snapshots": uow.tasks.query_all_snapshots}
            )["snapshots"] or {}

        wanted = set(cmd.project_codes) if cmd.project_codes else None
        candidates = [
            (code, snapshots)
            for code, snapshots in all_snapshots.items()
            if (wanted is None or code in wanted) and len(snapshots or {}) >= 2
        ]
        if not candidates:
            return PortfolioChangeLogDTO()

        with ThreadPoolExecutor(max_workers=settings.PORTFOLIO_MAX_WORKERS) as pool:
            diffs = list(pool.map(lambda item: _diff_svc.diff_all_snapshots(item[1]), candidates))

        by_project: List[Tuple[str, SnapshotDiffResult, List[DisciplineScore]]] = []
        for (code, _), diff in zip(candidates, diffs):
            if diff.overall_summary.total_changes == 0:
                continue
            by_project.append((code, diff, _diff_svc.score_disciplines(diff)))
        by_project.sort(key=lambda item: item[1].overall_summary.total_changes, reverse=True)

        summary = PortfolioSummaryDTO(
            total_projects=len(by_project),
            total_changes=sum(d.overall_summary.total_changes for _, d, _ in by_project),
            total_desvios=sum(d.overall_summary.total_desvios for _, d, _ in by_project),
            total_criadas=sum(d.overall_summary.total_criadas for _, d, _ in by_project),
            total_deletadas=sum(d.overall_summary.total_deletadas for _, d, _ in by_project),
            total_nao_feitas=sum(d.overall_summary.total_nao_feitas for _, d, _ in by_project),
        )
        aggregated = _diff_svc.aggregate_discipline_scores(scores for _, _, scores in by_project)

        logger.info(
            f"Portfolio change log: {summary.total_projects} of {len(candidates)} projects "
            f"with changes, {summary.total_changes} changes"
        )
        return PortfolioChangeLogDTO(
            by_project=[
                ProjectChangeLogDTO(
                    project_code=code,
                    month_pairs=[_Assembler.month_pair(mp) for mp in diff.month_pairs],
                    overall_summary=_Assembler.overall_summary(diff.overall_summary),
                    discipline_scores=[_Assembler.discipline_score(s) for s in scores],
                )
                for code, diff, scores in by_project
            ],
            summary=summary,
            aggregated_discipline_scores=[_Assembler.discipline_score(s) for s in aggregated],
        )


@dataclass
class SaveChangeAnnotationCommand:
    project_code: str
    from_snapshot_date: date
    to_snapshot_date: date
    change_type: str
    task_name: str
    disciplina: Optional[str] = None
    description: Optional[str] = None
    justification: Optional[str] = None
    is_visible: bool = True
    user_email: Optional[str] = None


class SaveChangeAnnotationUseCase:
    """Create or update the annotation of one detected change (upsert by key)."""

    def execute(self, cmd: SaveChangeAnnotationCommand, uow: AbstractUnitOfWork) -> AnnotationDTO:
        candidate = ChangeAnnotation(
            project_code=cmd.project_code,
            from_snapshot_date=cmd.from_snapshot_date,
            to_snapshot_date=cmd.to_snapshot_date,
            change_type=ChangeType(cmd.change_type),
            task_name=cmd.task_name,
            disciplina=cmd.disciplina,
            description=cmd.description,
            justification=cmd.justification,
            is_visible=cmd.is_visible,
            created_by_email=cmd.user_email,
            updated_by_email=cmd.user_email,
        )

        with uow:
            existing = uow.annotations.find_by_key(candidate.project_code, candidate.matching_key)
            if existing is None:
                annotation = candidate
            else:
                annotation = existing
                annotation.annotate(cmd.description, cmd.justification, cmd.user_email)
                annotation.set_visibility(cmd.is_visible, cmd.user_email)
                if candidate.disciplina:
                    annotation.disciplina = candidate.disciplina
            uow.annotations.save(annotation)
            uow.commit()
            logger.info(
                f"Annotation {'created' if existing is None else 'updated'} for "
                f"{annotation.project_code}: {annotation.matching_key}"
            )
            return _Assembler.annotation(annotation)


# ===========================================================================
# USE CASES — DATA LOADING
# ===========================================================================

@dataclass
class StoreTaskListCommand:
    project_code: str
    tasks: List[Dict[str, Any]]


class StoreTaskListUseCase:
    def execute(self, cmd: StoreTaskListCommand, uow: AbstractUnitOfWork) -> int:
        with uow:
            uow.tasks.save_tasks(cmd.project_code, list(cmd.tasks))
            uow.commit()
            logger.info(f"Stored {len(cmd.tasks)} tasks for project {cmd.project_code}")
            return len(cmd.tasks)


@dataclass
class StoreSnapshotCommand:
    project_code: str
    snapshot_date: date
    tasks: List[Dict[str, Any]]


class StoreSnapshotUseCase:
    def execute(self, cmd: StoreSnapshotCommand, uow: AbstractUnitOfWork) -> int:
        with uow:
            uow.tasks.save_snapshot(cmd.project_code, cmd.snapshot_date, list(cmd.tasks))
            uow.commit()
            logger.info(
                f"Stored snapshot {cmd.snapshot_date.isoformat()} for project "
                f"{cmd.project_code} ({len(cmd.tasks)} tasks)"
            )
            return len(cmd.tasks)


@dataclass
class StoreDisciplineMappingsCommand:
    project_code: str
    mappings: List[Dict[str, Any]]


class StoreDisciplineMappingsUseCase:
    def execute(self, cmd: StoreDisciplineMappingsCommand, uow: AbstractUnitOfWork) -> Dict[str, str]:
        with uow:
            uow.discipline_mappings.save_mappings(cmd.project_code, list(cmd.mappings))
            uow.commit()
            table = build_discipline_mapping_table(cmd.mappings)
            logger.info(
                f"Stored {len(table)} discipline mappings for project {cmd.project_code}"
            )
            return table

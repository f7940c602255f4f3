"""
model.py

Domain models for the Progress Curve (Curva S) & Snapshot-Diff engine.

Value objects
-------------
- PhaseWeight
- DisciplineWeight
- ActivityWeight
- ActivityType
- ChangeType

Aggregates / entities
---------------------
- WeightConfiguration   (aggregate root for the three weight layers)
- ChangeAnnotation      (coordinator overlay on a detected change)

Input contract
--------------
- TaskRecord            (normalised view over a Level-5 task row)

Derived records (computed, never stored)
----------------------------------------
- TaskWeightResult, ProgressSummary, PhaseBreakdown, CalculationResult
- TimeSeriesPoint, MonthlyPeriod
- DetectedChange, PairSummary, MonthPair, OverallSummary, SnapshotDiffResult
- DisciplineScore

Value objects and derived records are frozen dataclasses; the only mutable
model is ChangeAnnotation, and it changes only through its behaviours.
Timestamps are always stored in UTC.
"""

from __future__ import annotations

import math
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Status vocabularies (matched case-insensitively after trimming)
# ---------------------------------------------------------------------------

DEFAULT_COMPLETED_STATUSES: Tuple[str, ...] = (
    "concluída", "concluida", "completa", "complete", "done",
    "100%", "finalizado", "finalizada", "entregue", "feito",
)

DEFAULT_CANCELLED_STATUSES: Tuple[str, ...] = (
    "cancelada", "cancelado", "cancelled",
    "não será feita", "nao sera feita",
    "descartada", "descartado",
    "suspensa", "suspenso",
    "n/a", "não aplicável", "nao aplicavel",
)


# ---------------------------------------------------------------------------
# Normalisation helpers
# ---------------------------------------------------------------------------

def parse_task_date(value: Any) -> Optional[date]:
    """
    Normalise a task date to a ``date``.

    Accepts ``date``/``datetime`` instances, ISO strings (date or datetime)
    and the wrapped ``{"value": "..."}`` form produced by warehouse exports.
    Anything unparseable yields None.
    """
    if value is None:
        return None
    if isinstance(value, Mapping):
        return parse_task_date(value.get("value"))
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if len(text) < 10:
            return None
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    return None


def parse_number(value: Any) -> Optional[Union[int, float]]:
    """Coerce a duration-like value; blank, non-numeric or non-finite input yields None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def _coerce_factor(value: Any, label: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be a number >= 0. Received: {value!r}")
    if number != number or number < 0:
        raise ValueError(f"{label} must be a number >= 0. Received: {value!r}")
    return number


def _required_text(value: Any, message: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(message)
    return value.strip()


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_present(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in row and row[key] is not None:
            return row[key]
    return None


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ActivityType(str, Enum):
    """
    Work-stage marker parsed from a Level-5 task name.

    Tasks whose name carries no recognised marker have no ActivityType and
    weigh zero (tracked, but excluded from the weighted total).
    """
    LANCAMENTO = "Lançamento"
    AJUSTE = "Ajuste"

    @classmethod
    def parse(cls, task_name: Optional[str]) -> Optional["ActivityType"]:
        """Return the first marker found in the task name, or None."""
        if not task_name or not isinstance(task_name, str):
            return None
        for pattern, activity_type in _ACTIVITY_PATTERNS:
            if pattern.search(task_name):
                return activity_type
        return None


# Priority order matters: first match wins.
_ACTIVITY_PATTERNS: Tuple[Tuple[re.Pattern, ActivityType], ...] = (
    (re.compile(r"lan[cç]amento", re.IGNORECASE), ActivityType.LANCAMENTO),
    (re.compile(r"ajuste", re.IGNORECASE), ActivityType.AJUSTE),
)


class ChangeType(str, Enum):
    """
    Classification of a change detected between two monthly snapshots.

    DESVIO_PRAZO     : planned duration of the task changed.
    TAREFA_CRIADA    : task appears only in the later snapshot.
    TAREFA_DELETADA  : task appears only in the earlier snapshot.
    TAREFA_NAO_FEITA : status moved into the "will not be done" vocabulary.
    """
    DESVIO_PRAZO = "DESVIO_PRAZO"
    TAREFA_CRIADA = "TAREFA_CRIADA"
    TAREFA_DELETADA = "TAREFA_DELETADA"
    TAREFA_NAO_FEITA = "TAREFA_NAO_FEITA"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls:
                if member.value == normalized:
                    return member
        return None

    @property
    def label(self) -> str:
        return _CHANGE_TYPE_LABELS[self]

    @property
    def color(self) -> str:
        return _CHANGE_TYPE_COLORS[self]

    @property
    def is_scope(self) -> bool:
        return self in (ChangeType.TAREFA_CRIADA, ChangeType.TAREFA_DELETADA)

    @property
    def is_schedule(self) -> bool:
        return self is ChangeType.DESVIO_PRAZO

    @classmethod
    def is_valid(cls, value: Any) -> bool:
        try:
            cls(value)
        except ValueError:
            return False
        return True


_CHANGE_TYPE_LABELS: Dict[ChangeType, str] = {
    ChangeType.DESVIO_PRAZO: "Desvio de Prazo",
    ChangeType.TAREFA_CRIADA: "Tarefa Adicionada",
    ChangeType.TAREFA_DELETADA: "Tarefa Removida",
    ChangeType.TAREFA_NAO_FEITA: "Não Feita",
}

_CHANGE_TYPE_COLORS: Dict[ChangeType, str] = {
    ChangeType.DESVIO_PRAZO: "#EF4444",
    ChangeType.TAREFA_CRIADA: "#3B82F6",
    ChangeType.TAREFA_DELETADA: "#F97316",
    ChangeType.TAREFA_NAO_FEITA: "#8B5CF6",
}


# ---------------------------------------------------------------------------
# Weight value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseWeight:
    """Share (0 to 100 %) of the whole project allotted to one construction phase."""
    phase_name: str
    percent: float
    sort_order: int = 0

    def __post_init__(self) -> None:
        name = _required_text(self.phase_name, "Phase name is required.")
        try:
            percent = float(self.percent)
        except (TypeError, ValueError):
            percent = float("nan")
        if percent != percent or not (0.0 <= percent <= 100.0):
            raise ValueError(
                f"Phase weight must be between 0 and 100. Received: {self.percent!r}"
            )
        try:
            sort_order = int(self.sort_order or 0)
        except (TypeError, ValueError):
            sort_order = 0
        object.__setattr__(self, "phase_name", name)
        object.__setattr__(self, "percent", percent)
        object.__setattr__(self, "sort_order", sort_order)

    @classmethod
    def from_persistence(cls, row: Mapping[str, Any]) -> "PhaseWeight":
        return cls(row.get("phase_name"), row.get("weight_percent"), row.get("sort_order") or 0)

    def to_persistence(self) -> Dict[str, Any]:
        return {
            "phase_name": self.phase_name,
            "weight_percent": self.percent,
            "sort_order": self.sort_order,
        }


@dataclass(frozen=True)
class DisciplineWeight:
    """Relative factor of an engineering discipline inside a phase."""
    discipline_name: str
    factor: float
    standard_discipline_id: Optional[str] = None

    def __post_init__(self) -> None:
        name = _required_text(self.discipline_name, "Discipline name is required.")
        object.__setattr__(self, "discipline_name", name)
        object.__setattr__(self, "factor", _coerce_factor(self.factor, "Weight factor"))

    @classmethod
    def from_persistence(cls, row: Mapping[str, Any]) -> "DisciplineWeight":
        return cls(
            row.get("discipline_name"),
            row.get("weight_factor"),
            row.get("standard_discipline_id") or None,
        )

    def to_persistence(self) -> Dict[str, Any]:
        return {
            "discipline_name": self.discipline_name,
            "weight_factor": self.factor,
            "standard_discipline_id": self.standard_discipline_id,
        }


@dataclass(frozen=True)
class ActivityWeight:
    """Relative factor of a work stage (see ActivityType)."""
    activity_type: str
    factor: float

    def __post_init__(self) -> None:
        if isinstance(self.activity_type, ActivityType):
            object.__setattr__(self, "activity_type", self.activity_type.value)
        name = _required_text(self.activity_type, "Activity type is required.")
        object.__setattr__(self, "activity_type", name)
        object.__setattr__(self, "factor", _coerce_factor(self.factor, "Weight factor"))

    @classmethod
    def from_persistence(cls, row: Mapping[str, Any]) -> "ActivityWeight":
        return cls(row.get("activity_type"), row.get("weight_factor"))

    def to_persistence(self) -> Dict[str, Any]:
        return {"activity_type": self.activity_type, "weight_factor": self.factor}


# ---------------------------------------------------------------------------
# WeightConfiguration (aggregate root)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: Tuple[str, ...] = ()


def _as_phase(item: Any) -> PhaseWeight:
    return item if isinstance(item, PhaseWeight) else PhaseWeight.from_persistence(item)


def _as_discipline(item: Any) -> DisciplineWeight:
    return item if isinstance(item, DisciplineWeight) else DisciplineWeight.from_persistence(item)


def _as_activity(item: Any) -> ActivityWeight:
    return item if isinstance(item, ActivityWeight) else ActivityWeight.from_persistence(item)


@dataclass(frozen=True)
class WeightConfiguration:
    """
    Complete weight configuration for the progress curve.

    Three independent layers are combined multiplicatively per task and
    renormalised per phase by the calculation service:
      phase %  ×  discipline factor  ×  activity factor.

    Every layer accepts value objects or raw persistence rows; the
    configuration is frozen once built, and the ``with_*`` methods return a
    new, customized configuration.
    """
    phase_weights: Tuple[PhaseWeight, ...] = ()
    discipline_weights: Tuple[DisciplineWeight, ...] = ()
    activity_weights: Tuple[ActivityWeight, ...] = ()
    project_code: Optional[str] = None
    is_customized: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "phase_weights", tuple(_as_phase(pw) for pw in self.phase_weights or ())
        )
        object.__setattr__(
            self,
            "discipline_weights",
            tuple(_as_discipline(dw) for dw in self.discipline_weights or ()),
        )
        object.__setattr__(
            self,
            "activity_weights",
            tuple(_as_activity(aw) for aw in self.activity_weights or ()),
        )

    # --- Derived -----------------------------------------------------------

    @property
    def total_phase_percent(self) -> float:
        return sum(pw.percent for pw in self.phase_weights)

    @property
    def is_phase_weight_valid(self) -> bool:
        return abs(self.total_phase_percent - 100.0) < 0.01

    # --- Lookups -----------------------------------------------------------

    def get_phase_weight(self, phase_name: Optional[str]) -> Optional[PhaseWeight]:
        return next((pw for pw in self.phase_weights if pw.phase_name == phase_name), None)

    def get_discipline_factor(self, discipline_name: Optional[str]) -> float:
        """Factor of a discipline; unmapped disciplines are not penalised (1)."""
        dw = next(
            (dw for dw in self.discipline_weights if dw.discipline_name == discipline_name),
            None,
        )
        return dw.factor if dw else 1.0

    def get_activity_factor(self, activity_type: Union[ActivityType, str, None]) -> float:
        """Factor of a work stage; missing or unmapped stages weigh 0."""
        if not activity_type:
            return 0.0
        key = activity_type.value if isinstance(activity_type, ActivityType) else activity_type
        aw = next((aw for aw in self.activity_weights if aw.activity_type == key), None)
        return aw.factor if aw else 0.0

    # --- Validation --------------------------------------------------------

    def validate(self) -> ValidationResult:
        """
        Soft check used to gate a save: returns the list of problems rather
        than raising.
        """
        errors: List[str] = []
        if not self.phase_weights:
            errors.append("At least one phase weight is required.")
        if not self.is_phase_weight_valid:
            errors.append(
                f"Phase weights must sum to 100%. Current sum: {self.total_phase_percent:.2f}%"
            )
        if not self.discipline_weights:
            errors.append("At least one discipline weight is required.")
        if not self.activity_weights:
            errors.append("At least one activity weight is required.")
        return ValidationResult(valid=not errors, errors=tuple(errors))

    # --- Copy-on-write updates --------------------------------------------

    def with_phase_weights(self, phase_weights: Iterable[Any]) -> "WeightConfiguration":
        return replace(self, phase_weights=tuple(phase_weights), is_customized=True)

    def with_discipline_weights(self, discipline_weights: Iterable[Any]) -> "WeightConfiguration":
        return replace(self, discipline_weights=tuple(discipline_weights), is_customized=True)

    def with_activity_weights(self, activity_weights: Iterable[Any]) -> "WeightConfiguration":
        return replace(self, activity_weights=tuple(activity_weights), is_customized=True)

    # --- Serialisation -----------------------------------------------------

    def to_override_persistence(self) -> Dict[str, Any]:
        """Render the configuration as a project override payload."""
        return {
            "project_code": self.project_code,
            "phase_weights": {pw.phase_name: pw.percent for pw in self.phase_weights},
            "discipline_weights": {dw.discipline_name: dw.factor for dw in self.discipline_weights},
            "activity_weights": {aw.activity_type: aw.factor for aw in self.activity_weights},
            "is_customized": True,
        }

    # --- Factories ---------------------------------------------------------

    @classmethod
    def from_defaults(
        cls,
        phases: Optional[Iterable[Any]] = None,
        disciplines: Optional[Iterable[Any]] = None,
        activities: Optional[Iterable[Any]] = None,
    ) -> "WeightConfiguration":
        return cls(
            phase_weights=tuple(phases or ()),
            discipline_weights=tuple(disciplines or ()),
            activity_weights=tuple(activities or ()),
            project_code=None,
            is_customized=False,
        )

    @classmethod
    def merge_with_overrides(
        cls,
        defaults: "WeightConfiguration",
        overrides: Optional[Mapping[str, Any]],
        project_code: Optional[str],
    ) -> "WeightConfiguration":
        """
        Combine global defaults with a project's override payload.

        Each layer is replaced wholesale when the payload carries a non-empty
        map for it; per-key merging is not supported. Layers without an
        override keep the defaults. Payloads not marked ``is_customized`` are
        ignored.
        """
        if not overrides or not overrides.get("is_customized"):
            return cls(
                phase_weights=defaults.phase_weights,
                discipline_weights=defaults.discipline_weights,
                activity_weights=defaults.activity_weights,
                project_code=project_code,
                is_customized=False,
            )

        phase_weights: Tuple[PhaseWeight, ...] = defaults.phase_weights
        phase_map = overrides.get("phase_weights") or {}
        if phase_map:
            phase_weights = tuple(
                PhaseWeight(name, percent, sort_order)
                for sort_order, (name, percent) in enumerate(phase_map.items(), start=1)
            )

        discipline_weights: Tuple[DisciplineWeight, ...] = defaults.discipline_weights
        discipline_map = overrides.get("discipline_weights") or {}
        if discipline_map:
            discipline_weights = tuple(
                DisciplineWeight(name, factor) for name, factor in discipline_map.items()
            )

        activity_weights: Tuple[ActivityWeight, ...] = defaults.activity_weights
        activity_map = overrides.get("activity_weights") or {}
        if activity_map:
            activity_weights = tuple(
                ActivityWeight(activity_type, factor)
                for activity_type, factor in activity_map.items()
            )

        return cls(
            phase_weights=phase_weights,
            discipline_weights=discipline_weights,
            activity_weights=activity_weights,
            project_code=project_code,
            is_customized=True,
        )


# ---------------------------------------------------------------------------
# Task input contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskRecord:
    """
    A single Level-5 task row from the schedule export.

    Rows arrive with no fixed schema; ``from_mapping`` probes the known
    spellings of each field and falls back to a documented default.
    """
    row_number: int
    name: str = ""
    discipline: str = ""
    status: Optional[str] = None
    phase: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    duration: Optional[Union[int, float]] = None

    @classmethod
    def from_mapping(cls, row: Mapping[str, Any], position: int = 1) -> "TaskRecord":
        row_number = parse_number(_first_present(row, "rowNumber", "row_number"))
        name = _first_present(row, "NomeDaTarefa", "nome_tarefa", "task_name")
        discipline = _first_present(row, "Disciplina", "disciplina")
        status = _first_present(row, "Status", "status")
        phase = _first_present(row, "fase_nome", "fase")
        return cls(
            row_number=int(row_number) if row_number is not None else position,
            name=str(name) if name is not None else "",
            discipline=str(discipline).strip() if discipline is not None else "",
            status=str(status) if status is not None else None,
            phase=str(phase) if phase is not None else None,
            start_date=parse_task_date(_first_present(row, "DataDeInicio", "data_inicio")),
            end_date=parse_task_date(_first_present(row, "DataDeTermino", "data_termino")),
            duration=parse_number(_first_present(row, "Duracao", "duracao")),
        )

    @property
    def match_key(self) -> str:
        """Identity of a task across snapshots: name plus discipline."""
        return f"{self.name.strip().lower()}||{self.discipline.strip().lower()}"


TaskInput = Union[TaskRecord, Mapping[str, Any]]


def as_task_records(tasks: Optional[Iterable[TaskInput]]) -> List[TaskRecord]:
    """Normalise a mixed list of records/mappings, numbering rows by position."""
    records: List[TaskRecord] = []
    for position, task in enumerate(tasks or (), start=1):
        if isinstance(task, TaskRecord):
            records.append(task)
        else:
            records.append(TaskRecord.from_mapping(task, position))
    return records


# ---------------------------------------------------------------------------
# Progress calculation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskWeightResult:
    """Weight assigned to one task. ``weight_within_project`` is in % points."""
    row_number: int
    task_name: str
    phase: Optional[str]
    discipline_raw: str
    discipline_standard: str
    activity_type: Optional[str]
    status: Optional[str]
    is_complete: bool
    start_date: Optional[date]
    end_date: Optional[date]
    weight_within_phase: float = 0.0
    weight_within_project: float = 0.0


@dataclass(frozen=True)
class ProgressSummary:
    total_progress: float = 0.0
    planned_progress: float = 0.0
    idp: Optional[float] = None
    desvio: Optional[float] = None
    total_tasks: int = 0
    active_tasks: int = 0
    excluded_tasks: int = 0
    completed_tasks: int = 0


@dataclass(frozen=True)
class PhaseBreakdown:
    phase_name: str
    weight_percent: float
    total_tasks: int
    completed_tasks: int
    phase_progress: float
    phase_total_weight: float


@dataclass(frozen=True)
class CalculationResult:
    tasks: Tuple[TaskWeightResult, ...] = ()
    progress: ProgressSummary = field(default_factory=ProgressSummary)
    phase_breakdown: Tuple[PhaseBreakdown, ...] = ()


@dataclass(frozen=True)
class MonthlyPeriod:
    year: int
    month_number: int
    label: str
    end_of_month: date


@dataclass(frozen=True)
class TimeSeriesPoint:
    month: str
    year: int
    month_number: int
    cumulative_progress: float
    monthly_increment: float
    is_past: Optional[bool] = None   # None on planned-only series


# ---------------------------------------------------------------------------
# Snapshot diff results
# ---------------------------------------------------------------------------


@dataclass
class ChangeAnnotation:
    """
    Coordinator commentary attached to a change detected between snapshots.

    Matched to a change by the composite key
    (from date, to date, change type, task name), never by id, because the
    changes themselves are recomputed on every request.
    """
    project_code: str
    from_snapshot_date: date
    to_snapshot_date: date
    change_type: ChangeType
    task_name: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    disciplina: Optional[str] = None
    description: Optional[str] = None
    justification: Optional[str] = None
    is_visible: bool = True
    created_by_email: Optional[str] = None
    updated_by_email: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.project_code = _required_text(self.project_code, "Project code is required.")
        from_date = parse_task_date(self.from_snapshot_date)
        if from_date is None:
            raise ValueError("Previous snapshot date is required.")
        to_date = parse_task_date(self.to_snapshot_date)
        if to_date is None:
            raise ValueError("Current snapshot date is required.")
        self.from_snapshot_date = from_date
        self.to_snapshot_date = to_date
        self.change_type = ChangeType(self.change_type)
        self.task_name = _required_text(self.task_name, "Task name is required.")
        self.disciplina = _optional_text(self.disciplina)
        self.description = _optional_text(self.description)
        self.justification = _optional_text(self.justification)
        self.is_visible = bool(self.is_visible)

    # --- Behaviours --------------------------------------------------------

    def annotate(
        self,
        description: Any = ...,
        justification: Any = ...,
        updated_by_email: Optional[str] = None,
    ) -> None:
        """Edit the commentary. Omitted arguments leave the field untouched."""
        if description is not ...:
            self.description = _optional_text(description)
        if justification is not ...:
            self.justification = _optional_text(justification)
        if updated_by_email:
            self.updated_by_email = updated_by_email
        self.updated_at = _utcnow()

    def set_visibility(self, is_visible: bool, updated_by_email: Optional[str] = None) -> None:
        self.is_visible = bool(is_visible)
        if updated_by_email:
            self.updated_by_email = updated_by_email
        self.updated_at = _utcnow()

    def toggle_visibility(self, updated_by_email: Optional[str] = None) -> None:
        self.set_visibility(not self.is_visible, updated_by_email)

    @property
    def matching_key(self) -> str:
        return change_matching_key(
            self.from_snapshot_date.isoformat(),
            self.to_snapshot_date.isoformat(),
            self.change_type,
            self.task_name,
        )

    # --- Persistence -------------------------------------------------------

    def to_persistence(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "project_code": self.project_code,
            "from_snapshot_date": self.from_snapshot_date.isoformat(),
            "to_snapshot_date": self.to_snapshot_date.isoformat(),
            "change_type": self.change_type.value,
            "task_name": self.task_name,
            "disciplina": self.disciplina,
            "description": self.description,
            "justification": self.justification,
            "is_visible": self.is_visible,
            "created_by_email": self.created_by_email,
            "updated_by_email": self.updated_by_email,
        }

    @classmethod
    def from_persistence(cls, row: Mapping[str, Any]) -> "ChangeAnnotation":
        kwargs: Dict[str, Any] = {
            "project_code": row.get("project_code"),
            "from_snapshot_date": row.get("from_snapshot_date"),
            "to_snapshot_date": row.get("to_snapshot_date"),
            "change_type": row.get("change_type"),
            "task_name": row.get("task_name"),
            "disciplina": row.get("disciplina"),
            "description": row.get("description"),
            "justification": row.get("justification"),
            "is_visible": row.get("is_visible", True),
            "created_by_email": row.get("created_by_email"),
            "updated_by_email": row.get("updated_by_email"),
        }
        if row.get("id"):
            kwargs["id"] = uuid.UUID(str(row["id"]))
        for stamp in ("created_at", "updated_at"):
            if row.get(stamp):
                kwargs[stamp] = row[stamp]
        return cls(**kwargs)


def change_matching_key(
    from_snapshot: str, to_snapshot: str, change_type: Union[ChangeType, str], task_name: str
) -> str:
    """Composite key shared by detected changes and stored annotations."""
    type_value = change_type.value if isinstance(change_type, ChangeType) else str(change_type)
    return f"{from_snapshot}|{to_snapshot}|{type_value}|{task_name}"


@dataclass(frozen=True)
class DetectedChange:
    """One change found between two snapshots. Unused fields stay None."""
    type: ChangeType
    task_name: str
    disciplina: Optional[str] = None
    fase_nome: Optional[str] = None
    prev_data_termino: Optional[date] = None
    curr_data_termino: Optional[date] = None
    prev_duration: Optional[Union[int, float]] = None
    curr_duration: Optional[Union[int, float]] = None
    delta_days: Optional[Union[int, float]] = None
    prev_status: Optional[str] = None
    curr_status: Optional[str] = None
    annotation: Optional[ChangeAnnotation] = None


@dataclass(frozen=True)
class PairSummary:
    total: int = 0
    desvios: int = 0
    criadas: int = 0
    deletadas: int = 0
    nao_feitas: int = 0
    annotated: int = 0

    @classmethod
    def of(cls, changes: Iterable[DetectedChange]) -> "PairSummary":
        changes = list(changes)
        return cls(
            total=len(changes),
            desvios=sum(1 for c in changes if c.type is ChangeType.DESVIO_PRAZO),
            criadas=sum(1 for c in changes if c.type is ChangeType.TAREFA_CRIADA),
            deletadas=sum(1 for c in changes if c.type is ChangeType.TAREFA_DELETADA),
            nao_feitas=sum(1 for c in changes if c.type is ChangeType.TAREFA_NAO_FEITA),
            annotated=sum(1 for c in changes if c.annotation is not None),
        )


@dataclass(frozen=True)
class MonthPair:
    from_snapshot: str
    to_snapshot: str
    from_label: str
    to_label: str
    changes: Tuple[DetectedChange, ...] = ()
    summary: PairSummary = field(default_factory=PairSummary)


@dataclass(frozen=True)
class OverallSummary:
    total_changes: int = 0
    months_analyzed: int = 0
    total_desvios: int = 0
    total_criadas: int = 0
    total_deletadas: int = 0
    total_nao_feitas: int = 0
    total_annotated: int = 0

    @classmethod
    def of(cls, month_pairs: Iterable[MonthPair]) -> "OverallSummary":
        pairs = list(month_pairs)
        return cls(
            total_changes=sum(p.summary.total for p in pairs),
            months_analyzed=len(pairs),
            total_desvios=sum(p.summary.desvios for p in pairs),
            total_criadas=sum(p.summary.criadas for p in pairs),
            total_deletadas=sum(p.summary.deletadas for p in pairs),
            total_nao_feitas=sum(p.summary.nao_feitas for p in pairs),
            total_annotated=sum(p.summary.annotated for p in pairs),
        )


@dataclass(frozen=True)
class SnapshotDiffResult:
    month_pairs: Tuple[MonthPair, ...] = ()
    overall_summary: OverallSummary = field(default_factory=OverallSummary)


@dataclass(frozen=True)
class DisciplineScore:
    disciplina: str
    total: int = 0
    desvios: int = 0
    criadas: int = 0
    deletadas: int = 0
    nao_feitas: int = 0
    total_desvio_dias: Union[int, float] = 0

"""
service.py

Service layer for the Progress Curve (Curva S) & Snapshot-Diff engine.

Responsibilities
----------------
Each service class is a pure computation over in-memory values: it receives
domain models (from model.py) and returns new derived records. Nothing here
performs I/O or keeps mutable state, so one instance can be shared by every
in-flight request.

Services
--------
- WeightCalculationService  – per-task weights, progress, IDP, monthly curves
- SnapshotDiffService       – consecutive snapshot diffing, discipline scoring
- AnnotationOverlayService  – overlay stored annotations on detected changes

Design notes
------------
- Status vocabularies are injected at construction time as immutable sets,
  so locales can be added through configuration.
- "Today" is a parameter on every time-dependent operation (defaults to the
  current date) to keep results reproducible.
- Missing data never raises: unparseable dates become None, unmapped
  disciplines keep their raw label, unmapped phases weigh 0 %.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from model import (
    DEFAULT_CANCELLED_STATUSES,
    DEFAULT_COMPLETED_STATUSES,
    ActivityType,
    CalculationResult,
    ChangeAnnotation,
    ChangeType,
    DetectedChange,
    DisciplineScore,
    MonthPair,
    MonthlyPeriod,
    OverallSummary,
    PairSummary,
    PhaseBreakdown,
    ProgressSummary,
    SnapshotDiffResult,
    TaskInput,
    TaskRecord,
    TaskWeightResult,
    TimeSeriesPoint,
    WeightConfiguration,
    as_task_records,
    change_matching_key,
    parse_task_date,
)


NO_DISCIPLINE_LABEL = "Sem disciplina"

_MONTH_ABBREVIATIONS = (
    "Jan", "Fev", "Mar", "Abr", "Mai", "Jun",
    "Jul", "Ago", "Set", "Out", "Nov", "Dez",
)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _vocabulary(statuses: Iterable[str]) -> frozenset:
    return frozenset(s.strip().lower() for s in statuses if s and s.strip())


def _matches(status: Optional[str], vocabulary: frozenset) -> bool:
    if not status:
        return False
    return status.strip().lower() in vocabulary


def month_label(value: date) -> str:
    """``date(2025, 3, 15)`` -> ``"Mar/25"``."""
    return f"{_MONTH_ABBREVIATIONS[value.month - 1]}/{value.year % 100:02d}"


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


@dataclass
class _Group:
    phase: Optional[str]
    discipline: str
    activity_type: str
    members: List[int]
    combined_factor: float = 0.0


# ---------------------------------------------------------------------------
# WeightCalculationService
# ---------------------------------------------------------------------------

class WeightCalculationService:
    """
    Turns a three-layer weight configuration into per-task weights and
    project progress.

    Formula, per group of tasks sharing (phase, standard discipline, stage):

        combined       = discipline factor × activity factor
        peso_na_fase   = combined / Σ combined in the phase × 100
        group budget   = phase % × peso_na_fase / 100
        peso_no_projeto (per task) = group budget / tasks in group
    """

    def __init__(self, completed_statuses: Iterable[str] = DEFAULT_COMPLETED_STATUSES) -> None:
        self._completed = _vocabulary(completed_statuses)

    @property
    def completed_statuses(self) -> frozenset:
        return self._completed

    def is_task_complete(self, status: Optional[str]) -> bool:
        return _matches(status, self._completed)

    # --- Calculation -------------------------------------------------------

    def calculate(
        self,
        tasks: Iterable[TaskInput],
        weight_config: WeightConfiguration,
        discipline_mappings: Optional[Mapping[str, str]] = None,
        today: Optional[date] = None,
    ) -> CalculationResult:
        """Weigh every task and summarise progress against ``today``."""
        today = today or date.today()
        mappings = discipline_mappings or {}
        records = as_task_records(tasks)

        activity_types: List[Optional[ActivityType]] = []
        standard_disciplines: List[str] = []
        completion: List[bool] = []
        for record in records:
            activity_types.append(ActivityType.parse(record.name))
            raw = record.discipline.strip()
            standard_disciplines.append(mappings.get(raw) or raw)
            completion.append(self.is_task_complete(record.status))

        # Group active tasks by (phase, standard discipline, activity type)
        groups: Dict[Tuple[Optional[str], str, str], _Group] = {}
        for index, activity_type in enumerate(activity_types):
            if activity_type is None:
                continue
            key = (records[index].phase, standard_disciplines[index], activity_type.value)
            group = groups.get(key)
            if group is None:
                group = groups[key] = _Group(key[0], key[1], key[2], [])
            group.members.append(index)

        phase_totals: Dict[Optional[str], float] = {}
        for group in groups.values():
            group.combined_factor = (
                weight_config.get_discipline_factor(group.discipline)
                * weight_config.get_activity_factor(group.activity_type)
            )
            phase_totals[group.phase] = phase_totals.get(group.phase, 0.0) + group.combined_factor

        within_phase: Dict[int, float] = {}
        per_task: Dict[int, float] = {}
        for group in groups.values():
            phase_weight = weight_config.get_phase_weight(group.phase)
            phase_percent = phase_weight.percent if phase_weight else 0.0
            phase_total = phase_totals.get(group.phase, 0.0)
            peso_na_fase = group.combined_factor / phase_total * 100 if phase_total > 0 else 0.0
            group_budget = phase_percent * peso_na_fase / 100
            share = group_budget / len(group.members)
            for index in group.members:
                within_phase[index] = peso_na_fase
                per_task[index] = share

        results: List[Tuple[int, int, TaskWeightResult]] = []
        for index, record in enumerate(records):
            activity_type = activity_types[index]
            results.append((
                record.row_number,
                index,
                TaskWeightResult(
                    row_number=record.row_number,
                    task_name=record.name,
                    phase=record.phase,
                    discipline_raw=record.discipline,
                    discipline_standard=standard_disciplines[index],
                    activity_type=activity_type.value if activity_type else None,
                    status=record.status,
                    is_complete=completion[index],
                    start_date=record.start_date,
                    end_date=record.end_date,
                    weight_within_phase=round(within_phase.get(index, 0.0), 2),
                    weight_within_project=round(per_task.get(index, 0.0), 4),
                ),
            ))
        results.sort(key=lambda item: (item[0], item[1]))
        task_results = tuple(item[2] for item in results)

        total_progress = 0.0
        planned_progress = 0.0
        for index, weight in per_task.items():
            if completion[index]:
                total_progress += weight
            end_date = records[index].end_date
            if weight > 0 and end_date is not None and end_date <= today:
                planned_progress += weight

        total_progress = round(total_progress, 2)
        planned_progress = round(planned_progress, 2)
        if planned_progress > 0:
            idp: Optional[float] = round(total_progress / planned_progress, 2)
            desvio: Optional[float] = round(total_progress - planned_progress, 2)
        else:
            idp = desvio = None

        active_count = len(per_task)
        progress = ProgressSummary(
            total_progress=total_progress,
            planned_progress=planned_progress,
            idp=idp,
            desvio=desvio,
            total_tasks=len(records),
            active_tasks=active_count,
            excluded_tasks=len(records) - active_count,
            completed_tasks=sum(1 for index in per_task if completion[index]),
        )

        return CalculationResult(
            tasks=task_results,
            progress=progress,
            phase_breakdown=self._phase_breakdown(task_results, weight_config),
        )

    def _phase_breakdown(
        self, task_results: Sequence[TaskWeightResult], weight_config: WeightConfiguration
    ) -> Tuple[PhaseBreakdown, ...]:
        breakdown = []
        for pw in weight_config.phase_weights:
            phase_tasks = [
                t for t in task_results
                if t.phase == pw.phase_name and t.weight_within_project > 0
            ]
            completed = [t for t in phase_tasks if t.is_complete]
            breakdown.append(PhaseBreakdown(
                phase_name=pw.phase_name,
                weight_percent=pw.percent,
                total_tasks=len(phase_tasks),
                completed_tasks=len(completed),
                phase_progress=round(sum(t.weight_within_project for t in completed), 4),
                phase_total_weight=round(sum(t.weight_within_project for t in phase_tasks), 4),
            ))
        return tuple(breakdown)

    # --- Time series -------------------------------------------------------

    @staticmethod
    def generate_monthly_range(start, end) -> List[MonthlyPeriod]:
        """One period per calendar month from ``start`` to ``end`` inclusive."""
        start_date = parse_task_date(start)
        end_date = parse_task_date(end)
        if start_date is None or end_date is None:
            return []

        periods: List[MonthlyPeriod] = []
        year, month = start_date.year, start_date.month
        while (year, month) <= (end_date.year, end_date.month):
            first = date(year, month, 1)
            periods.append(MonthlyPeriod(
                year=year,
                month_number=month,
                label=month_label(first),
                end_of_month=_month_end(year, month),
            ))
            year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        return periods

    def calculate_time_series(
        self,
        task_results: Sequence[TaskWeightResult],
        start,
        end,
        today: Optional[date] = None,
    ) -> List[TimeSeriesPoint]:
        """
        Actual-vs-projected curve.

        Months already closed count only completed tasks finishing by the
        month end; later months count every weighted task finishing by then,
        assuming the remaining schedule is met.
        """
        today = today or date.today()
        weighted = [t for t in task_results if t.weight_within_project > 0]

        points: List[TimeSeriesPoint] = []
        previous = 0.0
        for period in self.generate_monthly_range(start, end):
            is_past = period.end_of_month <= today
            cumulative = sum(
                t.weight_within_project
                for t in weighted
                if t.end_date is not None
                and t.end_date <= period.end_of_month
                and (t.is_complete or not is_past)
            )
            points.append(TimeSeriesPoint(
                month=period.label,
                year=period.year,
                month_number=period.month_number,
                cumulative_progress=round(cumulative, 2),
                monthly_increment=round(cumulative - previous, 2),
                is_past=is_past,
            ))
            previous = cumulative
        return points

    def calculate_planned_time_series(
        self, task_results: Sequence[TaskWeightResult], start, end
    ) -> List[TimeSeriesPoint]:
        """Baseline curve: status is ignored, only the end date matters."""
        weighted = [t for t in task_results if t.weight_within_project > 0]

        points: List[TimeSeriesPoint] = []
        previous = 0.0
        for period in self.generate_monthly_range(start, end):
            cumulative = sum(
                t.weight_within_project
                for t in weighted
                if t.end_date is not None and t.end_date <= period.end_of_month
            )
            points.append(TimeSeriesPoint(
                month=period.label,
                year=period.year,
                month_number=period.month_number,
                cumulative_progress=round(cumulative, 2),
                monthly_increment=round(cumulative - previous, 2),
            ))
            previous = cumulative
        return points


# ---------------------------------------------------------------------------
# SnapshotDiffService
# ---------------------------------------------------------------------------

class SnapshotDiffService:
    """
    Compares consecutive monthly snapshots of a project's task list.

    Tasks are matched across snapshots by name + discipline (case and
    surrounding whitespace ignored). A matched task may yield both a
    DESVIO_PRAZO and a TAREFA_NAO_FEITA change in the same pass.
    """

    def __init__(self, cancelled_statuses: Iterable[str] = DEFAULT_CANCELLED_STATUSES) -> None:
        self._cancelled = _vocabulary(cancelled_statuses)

    @property
    def cancelled_statuses(self) -> frozenset:
        return self._cancelled

    def is_cancelled_status(self, status: Optional[str]) -> bool:
        return _matches(status, self._cancelled)

    @staticmethod
    def _index(tasks: Iterable[TaskInput]) -> Dict[str, TaskRecord]:
        index: Dict[str, TaskRecord] = {}
        for record in as_task_records(tasks):
            index[record.match_key] = record
        return index

    def diff_pair(
        self, prev_tasks: Iterable[TaskInput], curr_tasks: Iterable[TaskInput]
    ) -> List[DetectedChange]:
        prev_map = self._index(prev_tasks)
        curr_map = self._index(curr_tasks)
        changes: List[DetectedChange] = []

        for key, task in curr_map.items():
            if key not in prev_map:
                changes.append(DetectedChange(
                    type=ChangeType.TAREFA_CRIADA,
                    task_name=task.name,
                    disciplina=task.discipline or None,
                    fase_nome=task.phase or None,
                    curr_data_termino=task.end_date,
                    curr_status=task.status or None,
                ))

        for key, task in prev_map.items():
            if key not in curr_map:
                changes.append(DetectedChange(
                    type=ChangeType.TAREFA_DELETADA,
                    task_name=task.name,
                    disciplina=task.discipline or None,
                    fase_nome=task.phase or None,
                    prev_data_termino=task.end_date,
                    prev_status=task.status or None,
                ))

        for key, prev in prev_map.items():
            curr = curr_map.get(key)
            if curr is None:
                continue
            common = dict(
                task_name=curr.name,
                disciplina=curr.discipline or None,
                fase_nome=curr.phase or None,
                prev_data_termino=prev.end_date,
                curr_data_termino=curr.end_date,
                prev_status=prev.status or "",
                curr_status=curr.status or "",
            )

            if (
                prev.duration is not None
                and curr.duration is not None
                and prev.duration != curr.duration
            ):
                changes.append(DetectedChange(
                    type=ChangeType.DESVIO_PRAZO,
                    prev_duration=prev.duration,
                    curr_duration=curr.duration,
                    delta_days=curr.duration - prev.duration,
                    **common,
                ))

            if not self.is_cancelled_status(prev.status) and self.is_cancelled_status(curr.status):
                changes.append(DetectedChange(type=ChangeType.TAREFA_NAO_FEITA, **common))

        return changes

    def diff_all_snapshots(
        self, snapshots_by_date: Mapping[object, Iterable[TaskInput]]
    ) -> SnapshotDiffResult:
        """
        Diff every consecutive pair of snapshots.

        Pairs are computed oldest first and returned most recent first.
        """
        dated: Dict[date, List[TaskInput]] = {}
        for key, tasks in snapshots_by_date.items():
            snapshot_date = parse_task_date(key)
            if snapshot_date is not None:
                dated[snapshot_date] = list(tasks or ())
        ordered = sorted(dated)

        month_pairs: List[MonthPair] = []
        for from_date, to_date in zip(ordered, ordered[1:]):
            prev_tasks, curr_tasks = dated[from_date], dated[to_date]
            if not prev_tasks and not curr_tasks:
                continue
            changes = tuple(self.diff_pair(prev_tasks, curr_tasks))
            month_pairs.append(MonthPair(
                from_snapshot=from_date.isoformat(),
                to_snapshot=to_date.isoformat(),
                from_label=month_label(from_date),
                to_label=month_label(to_date),
                changes=changes,
                summary=PairSummary.of(changes),
            ))

        month_pairs.reverse()
        return SnapshotDiffResult(
            month_pairs=tuple(month_pairs),
            overall_summary=OverallSummary.of(month_pairs),
        )

    @staticmethod
    def score_disciplines(diff_result: SnapshotDiffResult) -> List[DisciplineScore]:
        """Rank disciplines by how many changes they account for."""
        stats: Dict[str, Dict[str, float]] = {}
        for pair in diff_result.month_pairs:
            for change in pair.changes:
                name = change.disciplina or NO_DISCIPLINE_LABEL
                row = stats.setdefault(name, _empty_score_row())
                row["total"] += 1
                if change.type is ChangeType.DESVIO_PRAZO:
                    row["desvios"] += 1
                    row["total_desvio_dias"] += abs(change.delta_days or 0)
                elif change.type is ChangeType.TAREFA_CRIADA:
                    row["criadas"] += 1
                elif change.type is ChangeType.TAREFA_DELETADA:
                    row["deletadas"] += 1
                elif change.type is ChangeType.TAREFA_NAO_FEITA:
                    row["nao_feitas"] += 1
        return _ranked_scores(stats)

    @staticmethod
    def aggregate_discipline_scores(
        score_lists: Iterable[Iterable[DisciplineScore]],
    ) -> List[DisciplineScore]:
        """Sum discipline scores of several projects (portfolio view)."""
        stats: Dict[str, Dict[str, float]] = {}
        for scores in score_lists:
            for score in scores:
                row = stats.setdefault(score.disciplina, _empty_score_row())
                row["total"] += score.total
                row["desvios"] += score.desvios
                row["criadas"] += score.criadas
                row["deletadas"] += score.deletadas
                row["nao_feitas"] += score.nao_feitas
                row["total_desvio_dias"] += score.total_desvio_dias
        return _ranked_scores(stats)


def _empty_score_row() -> Dict[str, float]:
    return {
        "total": 0, "desvios": 0, "criadas": 0,
        "deletadas": 0, "nao_feitas": 0, "total_desvio_dias": 0,
    }


def _ranked_scores(stats: Mapping[str, Mapping[str, float]]) -> List[DisciplineScore]:
    scores = [DisciplineScore(disciplina=name, **row) for name, row in stats.items()]
    scores.sort(key=lambda s: s.total, reverse=True)
    return scores


# ---------------------------------------------------------------------------
# AnnotationOverlayService
# ---------------------------------------------------------------------------

class AnnotationOverlayService:
    """
    Attaches stored annotations to freshly computed changes.

    Annotations are matched on from date, to date, change type and task
    name. Annotations that match nothing refer to changes no longer
    detectable and are ignored.
    """

    @staticmethod
    def merge(
        diff_result: SnapshotDiffResult, annotations: Iterable[ChangeAnnotation]
    ) -> SnapshotDiffResult:
        by_key: Dict[str, ChangeAnnotation] = {a.matching_key: a for a in annotations or ()}
        if not by_key:
            return diff_result

        month_pairs = []
        for pair in diff_result.month_pairs:
            changes = tuple(
                replace(
                    change,
                    annotation=by_key.get(
                        change_matching_key(
                            pair.from_snapshot, pair.to_snapshot, change.type, change.task_name
                        ),
                        change.annotation,
                    ),
                )
                for change in pair.changes
            )
            month_pairs.append(replace(pair, changes=changes, summary=PairSummary.of(changes)))

        return SnapshotDiffResult(
            month_pairs=tuple(month_pairs),
            overall_summary=OverallSummary.of(month_pairs),
        )

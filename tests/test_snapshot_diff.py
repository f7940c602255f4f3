"""SnapshotDiffService: pairwise diffs, full history and discipline scoring."""

from datetime import date

import pytest

from conftest import make_task
from model import ChangeType, DisciplineScore
from service import SnapshotDiffService


@pytest.fixture
def svc():
    return SnapshotDiffService()


class TestDiffPair:

    def test_identical_snapshots_have_no_changes(self, svc):
        tasks = [make_task("Lançamento A"), make_task("Ajuste B", status="Cancelada")]
        assert svc.diff_pair(tasks, tasks) == []

    def test_duration_change_is_a_deviation(self, svc):
        prev = [make_task("Lançamento A", duration=10, end="2025-01-31")]
        curr = [make_task("Lançamento A", duration=15, end="2025-02-07")]
        changes = svc.diff_pair(prev, curr)
        assert len(changes) == 1
        change = changes[0]
        assert change.type is ChangeType.DESVIO_PRAZO
        assert change.delta_days == 5
        assert (change.prev_duration, change.curr_duration) == (10, 15)
        assert change.prev_data_termino == date(2025, 1, 31)
        assert change.curr_data_termino == date(2025, 2, 7)
        assert change.disciplina == "Civil"
        assert change.fase_nome == "F01"

    def test_shortened_duration_gives_negative_delta(self, svc):
        changes = svc.diff_pair(
            [make_task("Lançamento A", duration=12)], [make_task("Lançamento A", duration=9)]
        )
        assert changes[0].delta_days == -3

    def test_missing_duration_is_not_a_deviation(self, svc):
        prev = [make_task("Lançamento A", duration=None)]
        curr = [make_task("Lançamento A", duration=15)]
        assert svc.diff_pair(prev, curr) == []

    @pytest.mark.parametrize("duration", ["inf", "-Infinity"])
    def test_non_finite_duration_is_not_a_deviation(self, svc, duration):
        prev = [make_task("Lançamento A", duration=10)]
        curr = [make_task("Lançamento A", duration=duration)]
        assert svc.diff_pair(prev, curr) == []

    def test_calendar_shift_without_duration_change_is_ignored(self, svc):
        prev = [make_task("Lançamento A", end="2025-01-31")]
        curr = [make_task("Lançamento A", end="2025-03-31")]
        assert svc.diff_pair(prev, curr) == []

    def test_created_then_deleted(self, svc):
        prev = [make_task("Lançamento A"), make_task("Ajuste velho")]
        curr = [make_task("Lançamento A"), make_task("Ajuste novo", status="Em andamento")]
        changes = svc.diff_pair(prev, curr)
        assert [(c.type, c.task_name) for c in changes] == [
            (ChangeType.TAREFA_CRIADA, "Ajuste novo"),
            (ChangeType.TAREFA_DELETADA, "Ajuste velho"),
        ]
        created, deleted = changes
        assert created.curr_status == "Em andamento"
        assert created.prev_data_termino is None
        assert deleted.prev_data_termino == date(2025, 1, 31)
        assert deleted.curr_status is None

    def test_match_key_is_case_insensitive(self, svc):
        prev = [make_task(" LANÇAMENTO A", discipline="CIVIL ")]
        curr = [make_task("lançamento a", discipline="civil")]
        assert svc.diff_pair(prev, curr) == []

    def test_same_name_other_discipline_is_a_different_task(self, svc):
        prev = [make_task("Lançamento A", discipline="Civil")]
        curr = [make_task("Lançamento A", discipline="Elétrica")]
        types = [c.type for c in svc.diff_pair(prev, curr)]
        assert types == [ChangeType.TAREFA_CRIADA, ChangeType.TAREFA_DELETADA]

    def test_cancellation(self, svc):
        prev = [make_task("Lançamento A", status="Em andamento")]
        curr = [make_task("Lançamento A", status="Não será feita")]
        changes = svc.diff_pair(prev, curr)
        assert [c.type for c in changes] == [ChangeType.TAREFA_NAO_FEITA]
        assert changes[0].prev_status == "Em andamento"
        assert changes[0].delta_days is None

    def test_already_cancelled_is_not_reported_again(self, svc):
        prev = [make_task("Lançamento A", status="Cancelada")]
        curr = [make_task("Lançamento A", status="cancelado")]
        assert svc.diff_pair(prev, curr) == []

    def test_deviation_and_cancellation_together(self, svc):
        prev = [make_task("Lançamento A", status="Em andamento", duration=10)]
        curr = [make_task("Lançamento A", status="Suspensa", duration=20)]
        types = [c.type for c in svc.diff_pair(prev, curr)]
        assert types == [ChangeType.DESVIO_PRAZO, ChangeType.TAREFA_NAO_FEITA]

    def test_cancelled_vocabulary_is_injectable(self):
        svc = SnapshotDiffService(["Abandonada"])
        prev = [make_task("Lançamento A", status="Em andamento")]
        assert svc.diff_pair(prev, [make_task("Lançamento A", status="abandonada")])
        assert not svc.diff_pair(prev, [make_task("Lançamento A", status="Cancelada")])


class TestDiffAllSnapshots:

    def test_consecutive_pairs_most_recent_first(self, svc):
        snapshots = {
            "2025-03-31": [make_task("Lançamento A", duration=15), make_task("Ajuste B")],
            "2025-01-31": [make_task("Lançamento A", duration=10)],
            "2025-02-28": [make_task("Lançamento A", duration=12)],
        }
        result = svc.diff_all_snapshots(snapshots)
        assert [(p.from_snapshot, p.to_snapshot) for p in result.month_pairs] == [
            ("2025-02-28", "2025-03-31"),
            ("2025-01-31", "2025-02-28"),
        ]
        latest = result.month_pairs[0]
        assert (latest.from_label, latest.to_label) == ("Fev/25", "Mar/25")
        assert latest.summary.total == 2
        assert latest.summary.desvios == 1
        assert latest.summary.criadas == 1

        overall = result.overall_summary
        assert overall.months_analyzed == 2
        assert overall.total_changes == 3
        assert overall.total_desvios == 2
        assert overall.total_criadas == 1
        assert overall.total_annotated == 0

    def test_skips_pairs_with_both_sides_empty(self, svc):
        snapshots = {
            date(2025, 1, 31): [],
            date(2025, 2, 28): [],
            date(2025, 3, 31): [make_task("Lançamento A")],
        }
        result = svc.diff_all_snapshots(snapshots)
        assert len(result.month_pairs) == 1
        assert result.month_pairs[0].summary.criadas == 1

    def test_single_or_no_snapshot(self, svc):
        assert svc.diff_all_snapshots({}).month_pairs == ()
        single = svc.diff_all_snapshots({"2025-01-31": [make_task("Lançamento A")]})
        assert single.overall_summary.months_analyzed == 0

    def test_unparseable_keys_are_skipped(self, svc):
        snapshots = {
            "latest": [make_task("X")],
            "2025-01-31": [make_task("Lançamento A")],
            "2025-02-28": [make_task("Lançamento A")],
        }
        result = svc.diff_all_snapshots(snapshots)
        assert len(result.month_pairs) == 1
        assert result.overall_summary.total_changes == 0


class TestScoreDisciplines:

    def test_ranks_disciplines(self, svc):
        snapshots = {
            "2025-01-31": [
                make_task("Lançamento A", discipline="Civil", duration=10),
                make_task("Lançamento B", discipline="Civil", duration=10),
                make_task("Ajuste C", discipline="Elétrica"),
            ],
            "2025-02-28": [
                make_task("Lançamento A", discipline="Civil", duration=7),
                make_task("Lançamento B", discipline="Civil", duration=15),
                make_task("Novo", discipline=""),
            ],
        }
        scores = svc.score_disciplines(svc.diff_all_snapshots(snapshots))
        # ties keep first-seen order: created, deleted, then matched changes
        assert [s.disciplina for s in scores] == ["Civil", "Sem disciplina", "Elétrica"]
        civil = scores[0]
        assert civil.total == 2
        assert civil.desvios == 2
        assert civil.total_desvio_dias == 8
        assert scores[1].criadas == 1
        assert scores[2].deletadas == 1

    def test_empty_result(self, svc):
        assert svc.score_disciplines(svc.diff_all_snapshots({})) == []

    def test_aggregate_across_projects(self, svc):
        project_a = [
            DisciplineScore("Civil", total=2, desvios=2, total_desvio_dias=8),
            DisciplineScore("Elétrica", total=1, criadas=1),
        ]
        project_b = [DisciplineScore("Elétrica", total=3, deletadas=3)]
        aggregated = svc.aggregate_discipline_scores([project_a, project_b])
        assert [(s.disciplina, s.total) for s in aggregated] == [("Elétrica", 4), ("Civil", 2)]
        assert aggregated[0].criadas == 1
        assert aggregated[0].deletadas == 3
        assert aggregated[1].total_desvio_dias == 8

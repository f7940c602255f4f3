"""Value objects, WeightConfiguration, TaskRecord and ChangeAnnotation."""

from datetime import date

import pytest

from model import (
    ActivityType,
    ActivityWeight,
    ChangeAnnotation,
    ChangeType,
    DisciplineWeight,
    PhaseWeight,
    TaskRecord,
    WeightConfiguration,
    parse_number,
    parse_task_date,
)


class TestWeightValueObjects:
    """PhaseWeight / DisciplineWeight / ActivityWeight validation"""

    def test_phase_weight_normalises_fields(self):
        pw = PhaseWeight("  F01 ", "40", None)
        assert pw.phase_name == "F01"
        assert pw.percent == 40.0
        assert pw.sort_order == 0

    @pytest.mark.parametrize("percent", [-1, 100.5, "abc", None])
    def test_phase_weight_out_of_range(self, percent):
        with pytest.raises(ValueError):
            PhaseWeight("F01", percent)

    def test_phase_weight_requires_name(self):
        with pytest.raises(ValueError, match="Phase name"):
            PhaseWeight("   ", 10)

    def test_discipline_factor_must_be_non_negative(self):
        with pytest.raises(ValueError):
            DisciplineWeight("Civil", -0.1)

    def test_activity_weight_requires_type(self):
        with pytest.raises(ValueError):
            ActivityWeight("", 1)

    def test_persistence_round_trip_uses_column_names(self):
        row = {"discipline_name": "Civil", "weight_factor": 2, "standard_discipline_id": "d-1"}
        dw = DisciplineWeight.from_persistence(row)
        assert dw.factor == 2.0
        assert dw.to_persistence() == {
            "discipline_name": "Civil",
            "weight_factor": 2.0,
            "standard_discipline_id": "d-1",
        }

    def test_value_objects_are_frozen(self):
        pw = PhaseWeight("F01", 40)
        with pytest.raises(Exception):
            pw.percent = 50


class TestActivityType:

    @pytest.mark.parametrize("name, expected", [
        ("Lançamento da estrutura", ActivityType.LANCAMENTO),
        ("LANCAMENTO de cabos", ActivityType.LANCAMENTO),
        ("Ajuste final", ActivityType.AJUSTE),
        ("Lançamento e ajuste", ActivityType.LANCAMENTO),
        ("Revisão de projeto", None),
        ("", None),
        (None, None),
    ])
    def test_parse(self, name, expected):
        assert ActivityType.parse(name) is expected

    def test_explicit_construction_rejects_unknown(self):
        with pytest.raises(ValueError):
            ActivityType("Montagem")


class TestChangeType:

    def test_normalises_case_and_whitespace(self):
        assert ChangeType(" desvio_prazo ") is ChangeType.DESVIO_PRAZO

    def test_rejects_unknown_value(self):
        with pytest.raises(ValueError):
            ChangeType("TAREFA_MOVIDA")
        assert not ChangeType.is_valid("TAREFA_MOVIDA")

    def test_labels_and_colors(self):
        assert ChangeType.TAREFA_CRIADA.label == "Tarefa Adicionada"
        assert ChangeType.DESVIO_PRAZO.color == "#EF4444"
        assert ChangeType.TAREFA_DELETADA.is_scope
        assert ChangeType.DESVIO_PRAZO.is_schedule


class TestWeightConfiguration:

    def test_unmapped_discipline_factor_is_one(self, simple_config):
        assert simple_config.get_discipline_factor("Mecânica") == 1.0
        assert simple_config.get_discipline_factor(None) == 1.0

    def test_unmapped_activity_factor_is_zero(self, simple_config):
        assert simple_config.get_activity_factor(None) == 0.0
        assert simple_config.get_activity_factor("Montagem") == 0.0
        assert simple_config.get_activity_factor(ActivityType.LANCAMENTO) == 1.0

    def test_phase_lookup(self, simple_config):
        assert simple_config.get_phase_weight("F02").percent == 60.0
        assert simple_config.get_phase_weight("F99") is None

    def test_validate_valid_configuration(self, simple_config):
        result = simple_config.validate()
        assert result.valid
        assert result.errors == ()

    def test_validate_reports_every_problem(self):
        result = WeightConfiguration().validate()
        assert not result.valid
        assert len(result.errors) == 4

    def test_validate_phase_sum_tolerance(self):
        within = WeightConfiguration.from_defaults(
            [PhaseWeight("A", 50), PhaseWeight("B", 49.995)],
            [DisciplineWeight("Civil", 1)],
            [ActivityWeight("Ajuste", 1)],
        )
        outside = WeightConfiguration.from_defaults(
            [PhaseWeight("A", 50), PhaseWeight("B", 49.9)],
            [DisciplineWeight("Civil", 1)],
            [ActivityWeight("Ajuste", 1)],
        )
        assert within.validate().valid
        errors = outside.validate().errors
        assert len(errors) == 1
        assert "99.90%" in errors[0]

    def test_with_methods_return_customized_copy(self, simple_config):
        updated = simple_config.with_phase_weights([PhaseWeight("F01", 100, 1)])
        assert updated.is_customized
        assert len(updated.phase_weights) == 1
        assert len(simple_config.phase_weights) == 2
        assert not simple_config.is_customized

    def test_override_persistence_round_trips_through_merge(self, simple_config):
        requested = WeightConfiguration(project_code="P-1").with_phase_weights(
            [PhaseWeight("F03", 70, 1), PhaseWeight("F01", 30, 2)]
        )
        payload = requested.to_override_persistence()
        assert payload == {
            "project_code": "P-1",
            "phase_weights": {"F03": 70.0, "F01": 30.0},
            "discipline_weights": {},
            "activity_weights": {},
            "is_customized": True,
        }
        merged = WeightConfiguration.merge_with_overrides(simple_config, payload, "P-1")
        assert [pw.phase_name for pw in merged.phase_weights] == ["F03", "F01"]
        assert merged.discipline_weights == simple_config.discipline_weights


class TestMergeWithOverrides:

    def test_missing_overrides_keep_defaults(self, simple_config):
        merged = WeightConfiguration.merge_with_overrides(simple_config, None, "P-1")
        assert merged.project_code == "P-1"
        assert not merged.is_customized
        assert merged.phase_weights == simple_config.phase_weights

    def test_non_customized_payload_is_ignored(self, simple_config):
        overrides = {"phase_weights": {"F01": 100}, "is_customized": False}
        merged = WeightConfiguration.merge_with_overrides(simple_config, overrides, "P-1")
        assert not merged.is_customized
        assert [pw.phase_name for pw in merged.phase_weights] == ["F01", "F02"]

    def test_overridden_layer_is_replaced_wholesale(self, simple_config):
        overrides = {
            "phase_weights": {"F03": 70, "F01": 30},
            "discipline_weights": {},
            "is_customized": True,
        }
        merged = WeightConfiguration.merge_with_overrides(simple_config, overrides, "P-1")
        assert merged.is_customized
        assert [(pw.phase_name, pw.percent, pw.sort_order) for pw in merged.phase_weights] == [
            ("F03", 70.0, 1),
            ("F01", 30.0, 2),
        ]
        assert merged.get_phase_weight("F02") is None
        assert merged.discipline_weights == simple_config.discipline_weights
        assert merged.activity_weights == simple_config.activity_weights


class TestTaskRecord:

    def test_from_mapping_with_export_keys(self):
        record = TaskRecord.from_mapping({
            "rowNumber": 7,
            "NomeDaTarefa": "Lançamento A",
            "Disciplina": " Civil ",
            "Status": "Concluída",
            "fase_nome": "F01",
            "DataDeInicio": {"value": "2025-01-02T00:00:00"},
            "DataDeTermino": "2025-01-31",
            "Duracao": "10",
        })
        assert record.row_number == 7
        assert record.discipline == "Civil"
        assert record.start_date == date(2025, 1, 2)
        assert record.end_date == date(2025, 1, 31)
        assert record.duration == 10

    def test_from_mapping_with_fallback_keys_and_defaults(self):
        record = TaskRecord.from_mapping(
            {"nome_tarefa": "Ajuste B", "disciplina": "Elétrica", "data_termino": "bad"},
            position=3,
        )
        assert record.row_number == 3
        assert record.name == "Ajuste B"
        assert record.end_date is None
        assert record.status is None
        assert record.duration is None

    def test_match_key_ignores_case_and_padding(self):
        a = TaskRecord(1, "  Lançamento A ", "CIVIL")
        b = TaskRecord(2, "lançamento a", "civil ")
        assert a.match_key == b.match_key


class TestParsing:

    @pytest.mark.parametrize("value, expected", [
        ("2025-03-15", date(2025, 3, 15)),
        ("2025-03-15T10:20:00Z", date(2025, 3, 15)),
        ({"value": "2025-03-15"}, date(2025, 3, 15)),
        (date(2025, 3, 15), date(2025, 3, 15)),
        ("15/03/2025", None),
        ("", None),
        (None, None),
    ])
    def test_parse_task_date(self, value, expected):
        assert parse_task_date(value) == expected

    @pytest.mark.parametrize("value, expected", [
        (10, 10), ("12", 12), ("2.5", 2.5), (3.0, 3), ("", None), (None, None), ("x", None),
        ("inf", None), ("-Infinity", None), (float("inf"), None), ("NaN", None),
    ])
    def test_parse_number(self, value, expected):
        assert parse_number(value) == expected


class TestChangeAnnotation:

    def _annotation(self, **overrides):
        fields = dict(
            project_code="P-1",
            from_snapshot_date="2025-01-31",
            to_snapshot_date="2025-02-28",
            change_type="DESVIO_PRAZO",
            task_name="Lançamento A",
        )
        fields.update(overrides)
        return ChangeAnnotation(**fields)

    def test_normalises_inputs(self):
        annotation = self._annotation(description="  ")
        assert annotation.from_snapshot_date == date(2025, 1, 31)
        assert annotation.change_type is ChangeType.DESVIO_PRAZO
        assert annotation.description is None
        assert annotation.is_visible

    @pytest.mark.parametrize("field_name, value", [
        ("project_code", ""),
        ("task_name", " "),
        ("change_type", "UNKNOWN"),
        ("from_snapshot_date", None),
        ("to_snapshot_date", "not a date"),
    ])
    def test_rejects_missing_identifiers(self, field_name, value):
        with pytest.raises(ValueError):
            self._annotation(**{field_name: value})

    def test_matching_key(self):
        assert self._annotation().matching_key == (
            "2025-01-31|2025-02-28|DESVIO_PRAZO|Lançamento A"
        )

    def test_annotate_leaves_omitted_fields(self):
        annotation = self._annotation(description="Atraso", justification="Chuva")
        annotation.annotate(description="Atraso de fornecedor", updated_by_email="a@b.com")
        assert annotation.description == "Atraso de fornecedor"
        assert annotation.justification == "Chuva"
        assert annotation.updated_by_email == "a@b.com"

    def test_visibility(self):
        annotation = self._annotation()
        annotation.toggle_visibility()
        assert not annotation.is_visible
        annotation.set_visibility(True)
        assert annotation.is_visible

    def test_persistence_round_trip(self):
        annotation = self._annotation(disciplina="Civil")
        restored = ChangeAnnotation.from_persistence(annotation.to_persistence())
        assert restored.id == annotation.id
        assert restored.matching_key == annotation.matching_key
        assert restored.disciplina == "Civil"

"""Shared fixtures: isolated in-memory databases, units of work and an API client."""

from datetime import date

import pytest
from fastapi.testclient import TestClient

from api import app, get_uow
from infrastructure import InMemoryDatabase, InMemoryUnitOfWork
from model import WeightConfiguration


PHASE_ROWS = [
    {"phase_name": "F01", "weight_percent": 40, "sort_order": 1},
    {"phase_name": "F02", "weight_percent": 60, "sort_order": 2},
]
DISCIPLINE_ROWS = [
    {"discipline_name": "Civil", "weight_factor": 1, "standard_discipline_id": None},
    {"discipline_name": "Elétrica", "weight_factor": 3, "standard_discipline_id": None},
]
ACTIVITY_ROWS = [
    {"activity_type": "Lançamento", "weight_factor": 1},
    {"activity_type": "Ajuste", "weight_factor": 0.5},
]


def make_task(name, phase="F01", discipline="Civil", status="Em andamento",
              end="2025-01-31", start="2025-01-02", duration=10, row=None):
    task = {
        "NomeDaTarefa": name,
        "Disciplina": discipline,
        "Status": status,
        "fase_nome": phase,
        "DataDeInicio": start,
        "DataDeTermino": end,
        "Duracao": duration,
    }
    if row is not None:
        task["rowNumber"] = row
    return task


@pytest.fixture
def simple_config():
    """F01:40 / F02:60, one discipline and one activity, all factors 1."""
    return WeightConfiguration.from_defaults(
        phases=[PHASE_ROWS[0], PHASE_ROWS[1]],
        disciplines=[{"discipline_name": "Civil", "weight_factor": 1}],
        activities=[{"activity_type": "Lançamento", "weight_factor": 1}],
    )


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def uow(db):
    return InMemoryUnitOfWork(db)


@pytest.fixture
def seeded_uow(uow):
    """Unit of work whose store already holds the default weight layers."""
    uow.weights.save_default_phase_weights(PHASE_ROWS)
    uow.weights.save_default_discipline_weights(DISCIPLINE_ROWS)
    uow.weights.save_default_activity_weights(ACTIVITY_ROWS)
    return uow


@pytest.fixture
def client(db):
    app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork(db)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def today():
    return date(2025, 6, 30)

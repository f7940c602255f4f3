"""
main.py

Entry point for the Curva S Progress API.

Wires the in-memory infrastructure into the FastAPI app and starts uvicorn.

Usage
-----
    # Option 1 — run directly (host/port from SERVER_HOST / SERVER_PORT)
    python main.py

    # Option 2 — run via uvicorn CLI (recommended for development)
    uvicorn main:app --reload --port 8000

Once running, open your browser at:
    http://localhost:8000/docs      ← Swagger UI
    http://localhost:8000/health    ← liveness check
    http://localhost:8000/mcp       ← MCP endpoint

Quick-start walkthrough (use Swagger UI or curl)
-------------------------------------------------
1.  PUT /api/v1/weights/defaults                     — phase %, discipline and activity factors
2.  PUT /api/v1/projects/{code}/tasks                — load the current Level-5 task list
3.  GET /api/v1/projects/{code}/progress             — weighted progress, planned progress, IDP
4.  PUT /api/v1/projects/{code}/snapshots/{date}     — load monthly snapshots (two or more)
5.  GET /api/v1/projects/{code}/timeseries           — Curva S with one curve per snapshot
6.  GET /api/v1/projects/{code}/changelog            — changes between consecutive snapshots
7.  PUT /api/v1/projects/{code}/changelog/annotations — annotate a detected change
"""

import uvicorn

from api import app, get_uow
from config import settings
from infrastructure import InMemoryUnitOfWork


# ---------------------------------------------------------------------------
# Wire the concrete Unit of Work into the FastAPI dependency system.
# To use real stores, replace InMemoryUnitOfWork with your implementation.
# ---------------------------------------------------------------------------

app.dependency_overrides[get_uow] = lambda: InMemoryUnitOfWork()


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )

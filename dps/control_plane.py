"""Development control plane.

Implements the `/register` contract the shim talks to, backed by an
in-memory table. It is enough to run the shim locally or in tests; it does
not configure any edge proxy.
"""
from __future__ import annotations

import logging
from dataclasses import asdict

from fastapi import FastAPI

from .api_models import Action, RegistrarRequest, RegistrarResponse
from .runtime import RegistrationTable

log = logging.getLogger(__name__)


def create_app(table: RegistrationTable | None = None) -> FastAPI:
    table = table if table is not None else RegistrationTable()
    app = FastAPI(title="DPS development control plane")
    app.state.table = table

    @app.get("/health")
    def health() -> dict:
        return {"status": "healthy"}

    @app.post("/register", response_model=RegistrarResponse)
    def register(req: RegistrarRequest) -> RegistrarResponse:
        changed = table.apply(req)
        verb = "registered" if req.action is Action.REGISTER else "deregistered"
        msg = f"{req.service_name}/{req.environment_name} {verb}"
        if not changed:
            msg += " (already in that state)"
        log.info("%s %s:%s -> %s:%s", msg, req.frontend_addr, req.frontend_port, req.backend_addr, req.backend_port)
        return RegistrarResponse(status_code=200, message=msg)

    @app.get("/registrations")
    def registrations() -> list[dict]:
        return [asdict(r) for r in table.list_registrations()]

    return app


app = create_app()

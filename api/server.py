"""
Recordflow — API Server

FastAPI application serving:
  POST /v1/batches/dry-run        — validate a batch, nothing is sent
  POST /v1/batches                — run a batch through approval gating
  GET  /v1/policies               — list workflow policies
  PUT  /v1/policies/{id}          — change a policy's approval level
  POST /v1/policies/reset         — every policy back to manual
  GET  /health                    — liveness

Manual-level operations are never approved over HTTP; they come back in
``pending`` for an operator to handle.

Usage:
    uvicorn --factory api.server:create_app --host 0.0.0.0 --port 8080

    # Config file other than ./recordflow.yaml
    RF_CONFIG=/etc/recordflow.yaml uvicorn --factory api.server:create_app

Requires: pip install fastapi uvicorn
"""

import logging
import os
import threading
import time
from typing import Any

logger = logging.getLogger("recordflow.api")


def create_app(settings: Any = None, store: Any = None, engine: Any = None) -> Any:
    """
    Create and configure the FastAPI application.

    Args:
        settings: recordflow.config.Settings; loaded from RF_CONFIG when None.
        store: Record-store collaborator; a TableAPIClient is built on first use when None.
        engine: PolicyEngine; built over a PolicyStore at settings.db_path when None.
    """
    from fastapi import FastAPI, HTTPException, Request
    from fastapi.concurrency import run_in_threadpool
    from fastapi.responses import JSONResponse

    from api.models import BatchResponse, BatchSubmission, PolicyUpdate
    from automation.policy import PolicyEngine
    from automation.runner import GatedRunner
    from automation.store import PolicyStore
    from recordflow.collaborator import TableAPIClient
    from recordflow.config import Settings, load_config
    from recordflow.logging import RunLogger
    from recordflow.validate import dry_run

    if settings is None:
        settings = Settings.from_config(
            load_config(base_path=os.environ.get("RF_CONFIG", "recordflow.yaml"))
        )

    app = FastAPI(
        title="Recordflow API",
        version="0.1.0",
        description="Multi-entity record orchestration",
    )

    # ── State ────────────────────────────────────────────────

    _store = store
    _engine = engine
    _owned: list[Any] = []
    # One gated run at a time; the engine has a single countdown
    _run_lock = threading.Lock()

    def get_engine() -> PolicyEngine:
        nonlocal _engine
        if _engine is None:
            policy_store = PolicyStore(settings.db_path)
            _owned.append(policy_store)
            _engine = PolicyEngine(
                store=policy_store,
                countdown_seconds=settings.countdown_seconds,
                bulk_threshold=settings.bulk_threshold,
            )
        return _engine

    def get_store():
        nonlocal _store
        if _store is None:
            if not settings.instance_url:
                raise HTTPException(status_code=503, detail="Record store is not configured")
            _store = TableAPIClient(
                settings.instance_url, settings.api_key, settings.timeout_seconds,
            )
            _owned.append(_store)
        return _store

    async def read_submission(request: Request) -> BatchSubmission:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=422, detail="Body must be JSON")
        return BatchSubmission.from_body(body)

    # ── Lifecycle ─────────────────────────────────────────────

    @app.on_event("shutdown")
    async def shutdown():
        for resource in _owned:
            resource.close()

    # ── Batches ───────────────────────────────────────────────

    @app.post("/v1/batches/dry-run")
    async def dry_run_batch(request: Request):
        submission = await read_submission(request)
        errors = submission.validate()
        if errors:
            return JSONResponse(status_code=422, content={"errors": errors})

        report = dry_run(submission.to_operations())
        return JSONResponse(content=report.to_dict())

    @app.post("/v1/batches")
    async def run_batch(request: Request):
        submission = await read_submission(request)
        errors = submission.validate()
        if errors:
            return JSONResponse(status_code=422, content={"errors": errors})

        operations = submission.to_operations()
        run_logger = RunLogger(source="api")
        runner = GatedRunner(get_engine(), get_store(), run_logger=run_logger)

        def _run():
            with _run_lock:
                return runner.run(
                    operations,
                    stop_on_error=submission.stop_on_error or settings.stop_on_error,
                    is_bulk=submission.is_bulk,
                )

        outcome = await run_in_threadpool(_run)
        body = outcome.to_dict()
        response = BatchResponse(
            run_id=run_logger.run_id,
            plan=body["plan"],
            validation=body["validation"],
            results=body["results"],
            report=body["report"],
            pending=body["pending"],
            operations=[op.to_dict() for op in operations],
        )
        return JSONResponse(content=response.to_dict())

    # ── Policies ──────────────────────────────────────────────

    @app.get("/v1/policies")
    async def list_policies():
        eng = get_engine()
        policies = eng.list_policies()
        return JSONResponse(content={
            "count": len(policies),
            "policies": [p.to_dict() for p in policies],
            "stats": eng.stats(),
        })

    @app.put("/v1/policies/{policy_id}")
    async def update_policy(policy_id: str, request: Request):
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=422, detail="Body must be JSON")
        update = PolicyUpdate(
            approval_level=body.get("approval_level", "") if isinstance(body, dict) else "",
        )
        errors = update.validate()
        if errors:
            return JSONResponse(status_code=422, content={"errors": errors})

        eng = get_engine()
        if eng.get_policy_by_id(policy_id) is None:
            raise HTTPException(status_code=404, detail="Policy not found")

        policy = eng.set_approval_level(policy_id, update.approval_level)
        return JSONResponse(content=policy.to_dict())

    @app.post("/v1/policies/reset")
    async def reset_policies():
        changed = get_engine().reset_all_to_manual()
        return JSONResponse(content={"changed": changed})

    # ── Health ────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return JSONResponse(content={
            "status": "ok",
            "timestamp": time.time(),
        })

    return app

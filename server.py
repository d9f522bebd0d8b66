"""HTTP server exposing weekly nutrition blueprint generation as a REST API."""

from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from blueprint_pipeline import WeeklyBlueprintPipeline, build_default_pipeline
from pipeline_errors import BlueprintError
from schemas import BlueprintAsyncRequest, BlueprintGenerateRequest, GeneratedPlan
from week_calendar import parse_week_key, week_key

load_dotenv()

app = FastAPI(
    title="Weekly Nutrition Blueprint",
    description="Generates validated seven-day meal plans with consolidated shopping lists",
)

HTTP_STATUS_BY_CODE: Dict[str, int] = {
    "failed-precondition": 412,
    "permission-denied": 403,
    "resource-exhausted": 429,
    "deadline-exceeded": 504,
    "aborted": 409,
    "internal": 500,
}

# Simple in-memory job tracking for async generation
# Key: job_id, Value: {"status": str, "started_at": str, "result": Optional[dict]}
_blueprint_jobs: Dict[str, Dict[str, Any]] = {}

# Built on first use so importing the app never touches configuration
_pipeline: Optional[WeeklyBlueprintPipeline] = None


def get_pipeline() -> WeeklyBlueprintPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = build_default_pipeline()
    return _pipeline


def _error_payload(exc: BlueprintError) -> Dict[str, Any]:
    return exc.to_dict()


@app.exception_handler(BlueprintError)
async def blueprint_error_handler(request: Request, exc: BlueprintError) -> JSONResponse:
    status = HTTP_STATUS_BY_CODE.get(exc.code, 500)
    print(f"\n❌ {exc.code} ({status}): {exc.message}\n", file=sys.stderr)
    return JSONResponse(status_code=status, content=_error_payload(exc))


def _plan_response(plan: GeneratedPlan) -> Dict[str, Any]:
    return plan.to_document()


@app.get("/health")
async def healthcheck() -> Dict[str, str]:
    """Readiness check."""
    return {"status": "ok"}


@app.post("/blueprints")
async def generate_blueprint(
    request_body: BlueprintGenerateRequest,
    background_tasks: BackgroundTasks,
    pipeline: WeeklyBlueprintPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """
    Generate this week's (or the given week's) blueprint synchronously.

    Macro recalculation is queued as a background task and runs after the
    response is sent.
    """

    def _queue_recalculation(user_id: str, week: str) -> None:
        if pipeline.recalculator is not None:
            background_tasks.add_task(pipeline.recalculator.recalculate, user_id, week)

    print(
        f"\n🍽️  Blueprint request: user={request_body.user_id}, week={request_body.week_start_date or 'current'}\n",
        file=sys.stderr,
    )

    loop = asyncio.get_event_loop()
    plan = await loop.run_in_executor(
        None,
        lambda: pipeline.generate_blueprint(
            request_body.user_id,
            request_body.week_start_date,
            schedule_recalculation=_queue_recalculation,
        ),
    )
    return JSONResponse(content=_plan_response(plan))


async def _run_blueprint_and_callback(
    pipeline: WeeklyBlueprintPipeline,
    job_id: str,
    user_id: str,
    week_start_date: Optional[str],
    callback_url: str,
) -> None:
    """Background task: generate the blueprint and POST the result to callback_url."""
    print(f"\n🚀 [Job {job_id}] Starting async blueprint generation...\n", file=sys.stderr)
    _blueprint_jobs[job_id]["status"] = "running"

    try:
        loop = asyncio.get_event_loop()
        plan = await loop.run_in_executor(
            None,
            lambda: pipeline.generate_blueprint(user_id, week_start_date),
        )
        result: Dict[str, Any] = {"job_id": job_id, "status": "completed", "plan": _plan_response(plan)}
        _blueprint_jobs[job_id]["status"] = "completed"
        print(f"\n✅ [Job {job_id}] Blueprint completed. Sending callback...\n", file=sys.stderr)
    except BlueprintError as exc:
        print(f"\n❌ [Job {job_id}] {exc.code}: {exc.message}\n", file=sys.stderr)
        result = {"job_id": job_id, "status": "failed", **_error_payload(exc)}
        _blueprint_jobs[job_id]["status"] = "failed"
    except Exception as exc:  # noqa: BLE001
        print(f"\n❌ [Job {job_id}] Error: {exc}\n", file=sys.stderr)
        import traceback

        traceback.print_exc(file=sys.stderr)
        result = {"job_id": job_id, "status": "failed", "error": str(exc), "code": "internal"}
        _blueprint_jobs[job_id]["status"] = "failed"

    _blueprint_jobs[job_id]["result"] = result

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(
                callback_url,
                json=result,
                headers={"Content-Type": "application/json"},
            )
            print(
                f"\n📤 [Job {job_id}] Callback sent to {callback_url}: HTTP {response.status_code}\n",
                file=sys.stderr,
            )
    except httpx.HTTPError as callback_exc:
        print(f"\n❌ [Job {job_id}] Failed to send callback: {callback_exc}\n", file=sys.stderr)


@app.post("/blueprints-async")
async def generate_blueprint_async(
    request_body: BlueprintAsyncRequest,
    background_tasks: BackgroundTasks,
    pipeline: WeeklyBlueprintPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """
    Start blueprint generation and return immediately with a job ID.

    The result (plan or error) is POSTed to callback_url when complete.
    """
    job_id = str(uuid.uuid4())[:8]
    _blueprint_jobs[job_id] = {
        "status": "pending",
        "started_at": datetime.now().isoformat(),
        "user_id": request_body.user_id,
        "week_start_date": request_body.week_start_date,
        "callback_url": request_body.callback_url,
        "result": None,
    }

    print(
        f"\n🍽️  [Job {job_id}] Queued async blueprint: user={request_body.user_id}\n"
        f"   Callback URL: {request_body.callback_url}\n",
        file=sys.stderr,
    )

    background_tasks.add_task(
        _run_blueprint_and_callback,
        pipeline,
        job_id,
        request_body.user_id,
        request_body.week_start_date,
        request_body.callback_url,
    )

    return JSONResponse(
        status_code=202,
        content={
            "job_id": job_id,
            "status": "accepted",
            "user_id": request_body.user_id,
            "message": "Blueprint generation started. Result will be sent to callback URL.",
        },
    )


@app.get("/blueprints-status/{job_id}")
async def get_blueprint_status(job_id: str) -> JSONResponse:
    """Status of an async blueprint job."""
    if job_id not in _blueprint_jobs:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    job = _blueprint_jobs[job_id]
    return JSONResponse(
        content={
            "job_id": job_id,
            "status": job["status"],
            "started_at": job["started_at"],
            "user_id": job.get("user_id"),
            "has_result": job["result"] is not None,
        }
    )


@app.get("/blueprints/{user_id}/{week_start_date}")
async def get_blueprint(
    user_id: str,
    week_start_date: str,
    pipeline: WeeklyBlueprintPipeline = Depends(get_pipeline),
) -> JSONResponse:
    """Fetch a stored blueprint (any date in the week is accepted)."""
    try:
        week = week_key(parse_week_key(week_start_date))
    except ValueError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid date format. Expected YYYY-MM-DD, got: {week_start_date}",
        ) from exc

    plan = pipeline.store.get_plan(user_id, week)
    if plan is None:
        raise HTTPException(status_code=404, detail=f"No blueprint for {user_id} week {week}")
    return JSONResponse(content=plan)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)

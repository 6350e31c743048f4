"""QA runner API: executes test cases and streams batch progress over SSE."""

import asyncio
import json
import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import BackgroundTasks, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from qarunner.config import clamp_concurrency, load_settings
from qarunner.core.batch import CancellationToken, execute_all
from qarunner.core.test_runner import execute_test_case

logger = logging.getLogger(__name__)

app = FastAPI(title="QA Runner API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

batches: dict[str, dict] = {}
# Per-batch event queues for SSE streaming
_event_queues: dict[str, list[asyncio.Queue]] = {}


class TestCasePayload(BaseModel):
    """Loose shape of a stored test case; unknown fields are passed through."""

    model_config = {"extra": "allow"}

    testId: str | None = None
    title: str | None = None
    pageUrl: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ExecuteAllRequest(BaseModel):
    testCases: list[TestCasePayload]
    concurrency: int | None = None


class BatchResponse(BaseModel):
    batch_id: str
    status: str
    total: int
    concurrency: int


@app.get("/health")
def health():
    return {"status": "ok", "service": "qarunner-api", "version": "0.1.0"}


@app.post("/api/v1/tests/execute")
async def execute_one(test_case: TestCasePayload):
    result = await execute_test_case(test_case.model_dump(exclude_none=True))
    return {"success": True, "testId": test_case.testId, "executionResult": result.to_dict()}


@app.post("/api/v1/tests/execute-all", response_model=BatchResponse)
async def start_batch(req: ExecuteAllRequest, background_tasks: BackgroundTasks):
    settings = load_settings()
    concurrency = clamp_concurrency(req.concurrency, settings.concurrency)
    batch_id = str(uuid.uuid4())[:8]
    token = CancellationToken()

    batches[batch_id] = {
        "batch_id": batch_id,
        "status": "running",
        "started_at": datetime.now().isoformat(),
        "total": len(req.testCases),
        "concurrency": concurrency,
        "summary": None,
        "results": {},
        "error": None,
        "token": token,
    }
    _event_queues[batch_id] = []

    cases = [tc.model_dump(exclude_none=True) for tc in req.testCases]
    background_tasks.add_task(run_batch, batch_id, cases, concurrency, token)

    return BatchResponse(batch_id=batch_id, status="running", total=len(cases), concurrency=concurrency)


@app.get("/api/v1/batches/{batch_id}")
async def get_batch(batch_id: str):
    batch = _get_batch(batch_id)
    return {
        "batch_id": batch_id,
        "status": batch["status"],
        "started_at": batch["started_at"],
        "total": batch["total"],
        "concurrency": batch["concurrency"],
        "summary": batch["summary"],
        "results": batch["results"],
        "error": batch["error"],
    }


@app.post("/api/v1/batches/{batch_id}/cancel")
async def cancel_batch(batch_id: str):
    batch = _get_batch(batch_id)
    if batch["status"] == "running":
        batch["token"].cancel("cancelled via API")
    return {"batch_id": batch_id, "status": batch["status"], "cancel_requested": True}


@app.get("/api/v1/batches/{batch_id}/stream")
async def batch_stream(batch_id: str, request: Request):
    """SSE endpoint that streams per-test progress events during a batch."""
    _get_batch(batch_id)

    queue: asyncio.Queue = asyncio.Queue()
    _event_queues.setdefault(batch_id, []).append(queue)

    async def event_generator():
        try:
            while True:
                if await request.is_disconnected():
                    break

                try:
                    event = await asyncio.wait_for(queue.get(), timeout=30.0)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue

                if event is None:
                    break

                event_type = event.get("type", "update")
                yield f"event: {event_type}\ndata: {json.dumps(event)}\n\n"

                if event_type == "batch_complete":
                    break
        finally:
            if batch_id in _event_queues and queue in _event_queues[batch_id]:
                _event_queues[batch_id].remove(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


def _get_batch(batch_id: str) -> dict:
    if batch_id not in batches:
        raise HTTPException(status_code=404, detail="Batch not found")
    return batches[batch_id]


def _broadcast_event(batch_id: str, event_type: str, data: dict):
    """Push an SSE event to all connected clients for this batch."""
    event = {"type": event_type, **data}
    for q in _event_queues.get(batch_id, []):
        try:
            q.put_nowait(event)
        except asyncio.QueueFull:
            pass


async def run_batch(batch_id: str, cases: list[dict], concurrency: int, token: CancellationToken):
    batch = batches[batch_id]

    def on_result(raw: dict, result):
        key = str(raw.get("testId") or len(batch["results"]))
        batch["results"][key] = result.to_dict()

    try:
        summary = await execute_all(
            cases,
            concurrency,
            on_result=on_result,
            token=token,
            on_progress=lambda event_type, data: _broadcast_event(batch_id, event_type, data),
        )
        batch["summary"] = summary
        batch["status"] = "cancelled" if summary["cancelled"] else "completed"
    except Exception as e:
        logger.exception("Batch %s failed", batch_id)
        batch["status"] = "failed"
        batch["error"] = str(e)[:500]
        _broadcast_event(batch_id, "batch_failed", {"error": str(e)[:500]})

    # Signal end to all SSE listeners
    for q in _event_queues.get(batch_id, []):
        try:
            q.put_nowait(None)
        except asyncio.QueueFull:
            pass

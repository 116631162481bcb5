from __future__ import annotations

from typing import Any, Dict, List

from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel, Field
import uvicorn

from .. import lifecycle
from ..errors import BridgeError
from ..runtime import get_default_bridge
from ..scheduler.queue import ActionStatus


app = FastAPI()


class TaskRequest(BaseModel):
    """Schema for scheduling a task on the polling scheduler."""

    hook: str
    args: List[Any] = Field(default_factory=list)
    timestamp: int | None = None
    schedule: str | None = None


class TaskResponse(BaseModel):
    hook: str
    args: List[Any]
    timestamp: int
    schedule: str | None = None
    interval: int | None = None
    source: str


def _jsonable(result: Any) -> Any:
    if hasattr(result, "as_dict"):
        return result.as_dict()
    return result


@app.get("/tasks", response_model=List[TaskResponse])
def list_tasks():
    """Return every task in the polling scheduler's manifest."""
    bridge = get_default_bridge()
    return [task.as_dict() for task in bridge.polling.list_tasks()]


@app.post("/tasks")
def schedule_task(request: TaskRequest):
    """Schedule a one-shot task, or a recurring one when ``schedule`` is set."""
    bridge = get_default_bridge()
    timestamp = request.timestamp
    if timestamp is None:
        timestamp = bridge.polling.now()
    try:
        with lifecycle.request_cycle():
            if request.schedule:
                result = bridge.polling.schedule_recurring(
                    timestamp, request.schedule, request.hook, request.args
                )
            else:
                result = bridge.polling.schedule_single(
                    timestamp, request.hook, request.args
                )
    except BridgeError as exc:
        raise HTTPException(400, detail=str(exc)) from exc
    return {"status": "scheduled" if result else "rejected", "result": _jsonable(result)}


@app.delete("/tasks/{hook}")
def unschedule_task(hook: str):
    """Remove every occurrence of ``hook``."""
    bridge = get_default_bridge()
    with lifecycle.request_cycle():
        removed = bridge.polling.unschedule_hook(hook)
    return {"hook": hook, "removed": _jsonable(removed)}


@app.get("/schedules")
def list_schedules() -> Dict[str, Dict[str, Any]]:
    """Return the interval catalog."""
    bridge = get_default_bridge()
    return {name: entry.to_dict() for name, entry in bridge.polling.list_catalog().items()}


@app.get("/actions")
def list_actions(
    hook: str | None = None,
    status: str | None = Query(ActionStatus.PENDING.value),
):
    """Return queued actions, pending ones by default."""
    bridge = get_default_bridge()
    try:
        wanted = ActionStatus(status) if status else None
    except ValueError as exc:
        raise HTTPException(400, detail=f"Unknown status: {status}") from exc
    actions = bridge.queue.query_pending_actions(hook, status=wanted)
    return [action.as_dict() for action in actions]


@app.post("/cron")
def run_cron():
    """Run every due polling-scheduler task."""
    bridge = get_default_bridge()
    with lifecycle.request_cycle():
        ran = bridge.polling.run_due()
    return {"ran": ran}


def start_server(host: str = "0.0.0.0", port: int = 8000):
    """Start the FastAPI server."""
    uvicorn.run(app, host=host, port=port)

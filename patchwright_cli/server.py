"""FastAPI server exposing the pipeline over HTTP with server-sent progress events."""
from __future__ import annotations

import asyncio
import json
import os
from functools import lru_cache
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from core.config_manager import config
from core.logging_utils import log_json
from core.orchestrator import PipelineOrchestrator
from core.types import ChangeRequest


def require_auth(authorization: str | None = Header(default=None)):
    """Simple bearer-token auth; disabled if PATCHWRIGHT_API_TOKEN is unset."""
    token = os.getenv("PATCHWRIGHT_API_TOKEN")
    if not token:
        return
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    if authorization != f"Bearer {token}":
        raise HTTPException(status_code=403, detail="Invalid token")


@lru_cache(maxsize=1)
def get_orchestrator() -> PipelineOrchestrator:
    from core.model_adapter import ModelAdapter
    return PipelineOrchestrator(ModelAdapter(config), config)


class RunRequest(BaseModel):
    message: str = Field(..., min_length=1, description="The change request")
    files: Dict[str, str] = Field(default_factory=dict, description="Existing files keyed by path")
    options: Dict[str, Any] = Field(default_factory=dict)
    stream: bool = True


app = FastAPI(title="patchwright API", version="0.1.0")


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def stream_run(orchestrator: PipelineOrchestrator, request: ChangeRequest) -> AsyncIterator[str]:
    """Yield the run's progress as SSE frames; closing the stream cancels the run."""
    queue: asyncio.Queue[dict] = asyncio.Queue()
    task = asyncio.create_task(orchestrator.run(request, on_update=lambda e: queue.put_nowait(e.to_dict())))
    try:
        yield _sse({"type": "start"})
        while not task.done() or not queue.empty():
            try:
                item = await asyncio.wait_for(queue.get(), timeout=0.1)
                yield _sse({"type": "event", "event": item})
            except asyncio.TimeoutError:
                pass
        result = task.result()
        yield _sse({"type": "result", "result": result.to_dict()})
    finally:
        if not task.done():
            task.cancel()
            log_json("WARN", "api_run_cancelled", goal=request.message)


@app.get("/health")
async def health(auth=Depends(require_auth)):
    return {
        "status": "ok",
        "providers": {
            "openai": bool(config.get("openai_api_key")),
            "openrouter": bool(config.get("api_key")),
        },
        "test_mode": config.get("test_mode"),
    }


@app.post("/run")
async def run(req: RunRequest, auth=Depends(require_auth),
              orchestrator: PipelineOrchestrator = Depends(get_orchestrator)):
    request = ChangeRequest(req.message, dict(req.files), dict(req.options))
    log_json("INFO", "api_run_requested", details={"files": len(req.files), "stream": req.stream})

    if not req.stream:
        result = await orchestrator.run(request)
        return result.to_dict()

    return StreamingResponse(stream_run(orchestrator, request), media_type="text/event-stream")

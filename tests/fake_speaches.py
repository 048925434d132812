"""
In-process fake of the speaches HTTP API.

Serves the endpoints used during provisioning from mutable state so tests
can script registry contents, loaded models and failures, and count calls.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse


@dataclass
class FakeSpeachesState:
    """Scriptable state behind the fake service."""
    registry: Dict[str, List[str]] = field(default_factory=dict)  # task -> model ids
    loaded: List[str] = field(default_factory=list)
    registry_status: int = 200
    registry_body: Optional[str] = None
    models_status: int = 200
    load_status: int = 200
    load_body: str = '{"detail": "Model not found"}'
    # When False, a successful load request never shows up in the listing
    load_makes_listed: bool = True
    load_calls: List[str] = field(default_factory=list)
    registry_calls: List[str] = field(default_factory=list)
    list_calls: int = 0
    authorization: List[Optional[str]] = field(default_factory=list)


def create_fake_app(state: FakeSpeachesState) -> FastAPI:
    """Create the fake service application backed by ``state``."""
    app = FastAPI(title="Fake speaches")
    router = APIRouter(prefix="/v1")

    @app.get("/health")
    async def health():
        return {"message": "OK"}

    @router.get("/registry")
    async def registry(request: Request, task: str):
        state.registry_calls.append(task)
        state.authorization.append(request.headers.get("authorization"))
        if state.registry_status != 200:
            return JSONResponse(status_code=state.registry_status, content={"detail": "registry unavailable"})
        if state.registry_body is not None:
            return PlainTextResponse(state.registry_body)
        return [
            {
                "id": model_id,
                "task": task,
                "voices": [{"id": "af_heart", "name": "af_heart"}],
            }
            for model_id in state.registry.get(task, [])
        ]

    @router.get("/models")
    async def list_models(request: Request):
        state.list_calls += 1
        state.authorization.append(request.headers.get("authorization"))
        if state.models_status != 200:
            return JSONResponse(status_code=state.models_status, content={"detail": "unavailable"})
        return {
            "object": "list",
            "data": [{"id": model_id, "object": "model"} for model_id in state.loaded],
        }

    @router.post("/models/{model_id:path}")
    async def load_model(request: Request, model_id: str):
        state.load_calls.append(model_id)
        state.authorization.append(request.headers.get("authorization"))
        if state.load_status >= 300:
            return PlainTextResponse(state.load_body, status_code=state.load_status)
        if state.load_makes_listed and model_id not in state.loaded:
            state.loaded.append(model_id)
        return JSONResponse(status_code=state.load_status, content={"message": f"Model {model_id} loaded"})

    app.include_router(router)
    return app

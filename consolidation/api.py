import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field
import uvicorn

from .configs.default_config import build_default_config
from .core.errors import InvalidBatchError
from .core.logging import configure_stderr
from .core.models import CandidateItem, ExistingItem, GroupingContext, MergeInput
from .core.orchestrator import ConsolidationOrchestrator
from .core.validator import validate_models
from .steps.scoring import quick_score

load_dotenv(os.getenv("CONSOLIDATION_ENV_FILE", ".env"), override=False)


# --- REQUEST BODIES ---
class ConsolidateRequest(BaseModel):
    candidates: List[CandidateItem] = Field(default_factory=list)
    existing: List[ExistingItem] = Field(default_factory=list)
    context: Optional[GroupingContext] = None


class DuplicateCheckRequest(BaseModel):
    candidate: CandidateItem
    existing: List[ExistingItem] = Field(default_factory=list)
    threshold: Optional[int] = Field(default=None, ge=0, le=100)


class MergeRequest(BaseModel):
    a: MergeInput
    b: MergeInput


class QuickScoreRequest(BaseModel):
    text_a: str
    text_b: str


def get_config() -> Dict[str, Any]:
    return build_default_config()


def build_orchestrator() -> ConsolidationOrchestrator:
    # One orchestrator per request: no state shared between calls
    return ConsolidationOrchestrator(app.state.config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_stderr(os.getenv("CONSOLIDATION_LOG_LEVEL", "INFO"))
    app.state.config = get_config()
    logger.info(f"Consolidation service starting (model: {app.state.config.get('model')})")
    if app.state.config.get("validate_models"):
        validate_models(app.state.config)
    yield
    logger.info("Consolidation service shutting down")


app = FastAPI(title="Story Consolidation Service", lifespan=lifespan)


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


@app.exception_handler(InvalidBatchError)
async def invalid_batch_handler(request: Request, exc: InvalidBatchError):
    return _error(400, str(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return _error(400, f"Invalid request body: {exc.errors()}")


@app.get("/health")
def health_check():
    return {"status": "running", "model": app.state.config.get("model")}


@app.post("/consolidate")
def consolidate_endpoint(body: ConsolidateRequest):
    try:
        result = build_orchestrator().consolidate(body.candidates, body.existing, body.context)
    except InvalidBatchError:
        raise
    except Exception as e:
        logger.exception(f"[API] Error consolidating stories: {e}")
        return _error(500, "Failed to consolidate stories")

    return {
        "success": True,
        "data": result.model_dump(mode="json"),
        "metadata": {
            "grouping_name": body.context.name if body.context else None,
            "existing_count": len(body.existing),
            "candidate_count": len(body.candidates),
        },
    }


@app.get("/consolidate")
def consolidate_description():
    return {
        "endpoint": "/consolidate",
        "method": "POST",
        "description": "Analyzes generated stories against existing ones for duplicates and overlap",
        "body": {
            "candidates": "array - Stories from generation to analyze",
            "existing": "array - Stories already in the grouping",
            "context": "object - {name, description?} of the grouping",
        },
        "response": {
            "to_create": "New stories to create",
            "to_merge": "Stories that should be merged with existing ones",
            "to_skip": "Duplicate stories to skip",
            "summary": "Consolidation statistics",
        },
    }


@app.post("/check-duplicates")
def check_duplicates_endpoint(body: DuplicateCheckRequest):
    result = build_orchestrator().check_duplicates(body.candidate, body.existing, body.threshold)
    return {"success": True, "data": result.model_dump(mode="json")}


@app.post("/merge")
def merge_endpoint(body: MergeRequest):
    merged = build_orchestrator().merge_narratives(body.a, body.b)
    return {"success": True, "data": merged.model_dump(mode="json")}


@app.post("/quick-score")
def quick_score_endpoint(body: QuickScoreRequest):
    return {"score": quick_score(body.text_a, body.text_b)}


if __name__ == "__main__":
    uvicorn.run(
        "consolidation.api:app",
        host=os.getenv("CONSOLIDATION_HOST", "127.0.0.1"),
        port=int(os.getenv("CONSOLIDATION_PORT", "8090")),
    )

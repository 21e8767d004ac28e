"""
MockPrep — FastAPI Server

================================================================================
Architecture:
  • The interview itself runs client-side (SessionOrchestrator + transport);
    this server is the feedback back end it talks to.
  • FeedbackGenerator turns a transcript into a structured assessment via the
    Vision Agents Gemini LLM and stores it through FeedbackRepository.
  • The recovery façade accepts a saved transcript from an interrupted
    interview and generates feedback without reopening the call.
================================================================================

Endpoints:
  POST /api/interview/recover             — feedback from a saved transcript
  GET  /api/interview/recover             — liveness
  POST /api/feedback                      — feedback for a finished interview
  GET  /api/feedback/{feedback_id}        — one feedback report
  GET  /api/interview/{id}/feedback       — report for interview + ?userId=
  GET  /health                            — server health
  GET  /token?user_id=                    — Stream call token for the client

Request body (both POST endpoints):
  { messages: [{role, content}, ...], interviewId, userId, feedbackId? }

Responses:
  200 { success: true, feedbackId, message }
  400 { success: false, error }            → malformed request
  500 { success: false, error }            → generation failed
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .core.config import feedback_cfg, sdk_cfg, server_cfg, storage_cfg
from .core.errors import FeedbackServiceError
from .core.models import FeedbackRequest, TranscriptEntry
from .core.schemas import FeedbackCreate, FeedbackOut, TranscriptMessage
from .services.feedback_service import FeedbackGenerator
from .services.feedback_store import FeedbackRepository

import jwt

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("mockprep")
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

_repository: Optional[FeedbackRepository] = None
_generator: Optional[FeedbackGenerator] = None


def get_repository() -> FeedbackRepository:
    global _repository
    if _repository is None:
        _repository = FeedbackRepository(storage_cfg.feedback_db_url)
        _repository.create_tables()
    return _repository


def get_generator(repository: FeedbackRepository = Depends(get_repository)) -> FeedbackGenerator:
    global _generator
    if _generator is None:
        _generator = FeedbackGenerator(repository)
    return _generator


# ---------------------------------------------------------------------------
# FastAPI Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 MockPrep Backend starting...")
    logger.info(f"   Stream keys configured: {sdk_cfg.has_all_keys}")
    logger.info(f"   Feedback store: {storage_cfg.feedback_db_url}")
    yield
    logger.info("🛑 MockPrep Backend stopped")


# ---------------------------------------------------------------------------
# FastAPI App
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MockPrep — Interview Feedback API",
    version="1.0.0",
    description=(
        "Generates structured feedback for voice mock interviews and recovers "
        "feedback for interviews that were interrupted mid-session."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(server_cfg.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


async def _generate(
    generator: FeedbackGenerator,
    interview_id: str,
    user_id: str,
    messages: List[TranscriptMessage],
    feedback_id: Optional[str],
) -> str:
    request = FeedbackRequest(
        session_id=interview_id,
        user_id=user_id,
        transcript=[TranscriptEntry(role=m.role, content=m.content) for m in messages],
        feedback_id=feedback_id,
    )
    result = await generator.create_feedback(request)
    if not result.success or not result.feedback_id:
        raise FeedbackServiceError("Feedback generator returned no id")
    return result.feedback_id


# ---------------------------------------------------------------------------
# REST Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "version": "1.0.0",
        "sdk_keys_configured": sdk_cfg.has_all_keys,
    }


@app.get("/token")
async def token(user_id: str):
    if not sdk_cfg.stream_api_key or not sdk_cfg.stream_api_secret:
        return {"error": "Stream API keys not configured"}

    now = int(time.time())
    payload = {
        "user_id": user_id,
        "iat": now,
        "exp": now + feedback_cfg.token_ttl_seconds,
    }
    stream_token = jwt.encode(payload, sdk_cfg.stream_api_secret, algorithm="HS256")

    return {
        "api_key": sdk_cfg.stream_api_key,
        "token": stream_token,
        "user_id": user_id,
    }


@app.get("/api/interview/recover")
async def recover_status():
    return {"success": True, "message": "Interview recovery API is running"}


@app.post("/api/interview/recover")
async def recover_interview(request: Request, generator: FeedbackGenerator = Depends(get_generator)):
    """
    Generate feedback from the saved progress of an interrupted interview.
    Validation is done by hand so every failure keeps the {success, error} shape.
    """
    try:
        body: Any = await request.json()
    except ValueError:
        return _error(400, "Invalid or missing interview messages")
    if not isinstance(body, dict):
        return _error(400, "Invalid or missing interview messages")

    raw_messages = body.get("messages")
    if not isinstance(raw_messages, list):
        return _error(400, "Invalid or missing interview messages")
    try:
        messages = [TranscriptMessage.model_validate(m) for m in raw_messages]
    except ValidationError:
        return _error(400, "Invalid or missing interview messages")

    interview_id = body.get("interviewId")
    user_id = body.get("userId")
    if not interview_id or not user_id:
        return _error(400, "Missing interview or user information")

    logger.info(f"[{interview_id}] Recovery requested ({len(messages)} messages)")
    try:
        feedback_id = await _generate(
            generator, str(interview_id), str(user_id), messages, body.get("feedbackId")
        )
    except FeedbackServiceError as e:
        logger.error(f"[{interview_id}] Recovery failed: {e}")
        return _error(500, str(e) or "Failed to generate feedback from recovered interview")

    logger.info(f"[{interview_id}] Recovery successful — feedback {feedback_id}")
    return {
        "success": True,
        "feedbackId": feedback_id,
        "message": "Interview recovered and feedback generated successfully",
    }


@app.post("/api/feedback")
async def create_feedback(body: FeedbackCreate, generator: FeedbackGenerator = Depends(get_generator)):
    try:
        feedback_id = await _generate(
            generator, body.interview_id, body.user_id, body.messages, body.feedback_id
        )
    except FeedbackServiceError as e:
        logger.error(f"[{body.interview_id}] Feedback generation failed: {e}")
        return _error(500, str(e))

    return {"success": True, "feedbackId": feedback_id, "message": "Feedback generated"}


@app.get("/api/feedback/{feedback_id}", response_model=FeedbackOut)
async def get_feedback(feedback_id: str, repository: FeedbackRepository = Depends(get_repository)):
    record = repository.get(feedback_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return record.to_dict()


@app.get("/api/interview/{interview_id}/feedback", response_model=FeedbackOut)
async def get_interview_feedback(
    interview_id: str,
    userId: str,
    repository: FeedbackRepository = Depends(get_repository),
) -> Dict[str, Any]:
    record = repository.get_by_interview(interview_id, userId)
    if record is None:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return record.to_dict()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "mockprep.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        reload=True,
        log_level="info",
    )

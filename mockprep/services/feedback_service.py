"""
MockPrep — Feedback Service

Two sides of the same contract (FeedbackService protocol):

  HttpFeedbackService — client used by the orchestrator. Posts the
      transcript to the feedback API (normal finalize) or to the recovery
      endpoint (post-crash path) and returns {success, feedbackId}.

  FeedbackGenerator — server side. Formats the transcript, asks the LLM
      for a structured assessment, validates it, persists it. Raises
      FeedbackServiceError on any failure.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Optional

import httpx
from pydantic import ValidationError

from ..core.config import feedback_cfg
from ..core.errors import FeedbackServiceError
from ..core.models import FeedbackRequest, FeedbackResult, TranscriptEntry
from ..core.schemas import Assessment, CATEGORY_NAMES
from .feedback_store import FeedbackRepository

logger = logging.getLogger("mockprep.feedback")

FEEDBACK_PATH = "/api/feedback"
RECOVER_PATH = "/api/interview/recover"

SYSTEM_PROMPT = (
    "You are a professional interviewer analyzing mock interviews for ALL job types. "
    "Your task is to evaluate candidates based on universal professional categories."
)

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def format_transcript(transcript: List[TranscriptEntry]) -> str:
    return "".join(f"- {e.role}: {e.content}\n" for e in transcript)


def build_prompt(transcript: List[TranscriptEntry]) -> str:
    categories = "\n".join(f"        - {name}" for name in CATEGORY_NAMES)
    return f"""{SYSTEM_PROMPT}

        You are an AI interviewer analyzing a mock interview for ANY job field. Evaluate the
        candidate based on structured categories. Be thorough and detailed. Don't be lenient
        with the candidate. If there are mistakes or areas for improvement, point them out.

        Transcript:
{format_transcript(transcript)}
        Score the candidate from 0 to 100 in exactly these categories, in this order:
{categories}

        Respond with a single JSON object and nothing else:
        {{"totalScore": number,
          "categoryScores": [{{"name": string, "score": number, "comment": string}}, ...],
          "strengths": [string, ...],
          "areasForImprovement": [string, ...],
          "finalAssessment": string}}
        """


def parse_assessment(text: str) -> Assessment:
    """Validate the LLM reply. Tolerates markdown code fences and surrounding prose."""
    cleaned = _FENCE.sub("", (text or "").strip())
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start < 0 or end <= start:
        raise FeedbackServiceError("LLM reply contained no JSON object")
    try:
        return Assessment.model_validate_json(cleaned[start:end + 1])
    except ValidationError as e:
        raise FeedbackServiceError(f"LLM reply failed validation: {e.error_count()} error(s)") from e


# ═══════════════════════════════════════════════════════════════════════════
# HTTP client (orchestrator side)
# ═══════════════════════════════════════════════════════════════════════════

class HttpFeedbackService:
    """Calls the feedback API over HTTP. One instance per endpoint path."""

    def __init__(
        self,
        base_url: str = feedback_cfg.service_url,
        path: str = FEEDBACK_PATH,
        timeout: float = feedback_cfg.timeout_seconds,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._path = path
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def recovery(cls, base_url: str = feedback_cfg.service_url, **kwargs: Any) -> "HttpFeedbackService":
        return cls(base_url=base_url, path=RECOVER_PATH, **kwargs)

    async def create_feedback(self, request: FeedbackRequest) -> FeedbackResult:
        url = f"{self._base_url}{self._path}"
        logger.info(
            f"[{request.session_id}] POST {self._path} "
            f"({len(request.transcript)} messages)"
        )
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(url, json=request.to_payload())
        except httpx.HTTPError as e:
            raise FeedbackServiceError(f"Feedback request failed: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            error = data.get("error") if isinstance(data, dict) else None
            raise FeedbackServiceError(
                error or f"Feedback service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise FeedbackServiceError(
                "Feedback service returned an unexpected body",
                status_code=response.status_code,
            )

        return FeedbackResult(
            success=bool(data.get("success")),
            feedback_id=data.get("feedbackId"),
        )


# ═══════════════════════════════════════════════════════════════════════════
# Generator (server side)
# ═══════════════════════════════════════════════════════════════════════════

class FeedbackGenerator:
    """
    Transcript → LLM assessment → repository.

    `llm` is anything with `async simple_response(text)` returning an object
    with a `.text` attribute (the Vision Agents LLM interface). When omitted
    the Gemini LLM plugin is created on first use.
    """

    def __init__(
        self,
        repository: FeedbackRepository,
        llm: Any = None,
        model: str = feedback_cfg.llm_model,
        timeout: float = feedback_cfg.timeout_seconds,
    ) -> None:
        self._repository = repository
        self._llm = llm
        self._model = model
        self._timeout = timeout

    def _get_llm(self) -> Any:
        if self._llm is None:
            try:
                from vision_agents.plugins import gemini
            except ImportError as e:
                raise FeedbackServiceError(f"Feedback LLM unavailable: {e}") from e
            self._llm = gemini.LLM(self._model)
            logger.info(f"Feedback LLM initialized ({self._model})")
        return self._llm

    async def create_feedback(self, request: FeedbackRequest) -> FeedbackResult:
        sid = request.session_id
        if not request.transcript:
            raise FeedbackServiceError("Cannot generate feedback from an empty transcript")

        logger.info(f"[{sid}] Generating feedback for {len(request.transcript)} messages")
        llm = self._get_llm()

        try:
            response = await asyncio.wait_for(
                llm.simple_response(build_prompt(request.transcript)),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise FeedbackServiceError(f"Feedback generation timed out ({self._timeout}s)") from e
        except Exception as e:
            raise FeedbackServiceError(f"Feedback generation failed: {e}") from e

        text = getattr(response, "text", None)
        assessment = parse_assessment(text if text is not None else str(response))

        loop = asyncio.get_running_loop()
        try:
            feedback_id = await loop.run_in_executor(
                None,
                lambda: self._repository.save(
                    interview_id=sid,
                    user_id=request.user_id,
                    assessment=assessment,
                    feedback_id=request.feedback_id,
                ),
            )
        except Exception as e:
            raise FeedbackServiceError(f"Could not save feedback: {e}") from e

        logger.info(f"[{sid}] Feedback saved ({feedback_id}, total={assessment.total_score})")
        return FeedbackResult(success=True, feedback_id=feedback_id)

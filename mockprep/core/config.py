"""
MockPrep — Configuration

Centralised settings from environment variables.
All tuneable constants live here — zero magic numbers in other files.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv
import certifi

os.environ.setdefault("SSL_CERT_FILE", certifi.where())
os.environ.setdefault("REQUESTS_CA_BUNDLE", certifi.where())

load_dotenv()

# ── Bridge env-var naming: Gemini SDK reads GOOGLE_API_KEY ──────────────
_gemini_key = os.getenv("GEMINI_API_KEY", "")
if _gemini_key and not os.getenv("GOOGLE_API_KEY"):
    os.environ["GOOGLE_API_KEY"] = _gemini_key


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


# ---------------------------------------------------------------------------
# Server
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ServerConfig:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))
    cors_origins: tuple[str, ...] = (
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    )


# ---------------------------------------------------------------------------
# Stream + SDK keys
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SDKConfig:
    """API keys for the voice transport and the feedback LLM."""
    stream_api_key: str = os.getenv("STREAM_API_KEY", "")
    stream_api_secret: str = os.getenv("STREAM_API_SECRET", "")
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    elevenlabs_api_key: str = os.getenv("ELEVENLABS_API_KEY", "")

    @property
    def has_all_keys(self) -> bool:
        return all([
            self.stream_api_key,
            self.stream_api_secret,
            self.gemini_api_key,
            self.elevenlabs_api_key,
        ])


# ---------------------------------------------------------------------------
# Voice transport (interviewer agent)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TransportConfig:
    call_type: str = "default"
    agent_name: str = "Professional Interviewer"
    tts_model_id: str = os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5")
    # Agent must have joined the call within this many seconds
    join_timeout_seconds: float = _env_float("AGENT_JOIN_TIMEOUT_SECONDS", 15.0)
    agent_idle_timeout_seconds: float = 300.0
    # Pace of the scripted (no-keys) interviewer
    scripted_turn_seconds: float = _env_float("SCRIPTED_TURN_SECONDS", 4.0)


# ---------------------------------------------------------------------------
# Session policy (orchestrator)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionConfig:
    # Hard interview budget (countdown seconds)
    duration_seconds: int = _env_int("INTERVIEW_DURATION_SECONDS", 600)
    # Warning is shown this many countdown seconds before the hard timeout
    warning_lead_seconds: int = _env_int("INTERVIEW_WARNING_SECONDS", 120)
    # Wall-clock length of one countdown second
    tick_seconds: float = 1.0
    # Connection retries after the first attempt
    max_retries: int = 2
    retry_backoff_seconds: float = 2.0
    # Pause between stopping the transport and reconnecting
    reconnect_grace_seconds: float = 1.0
    # Health monitor cadence and silence thresholds
    health_poll_seconds: float = 10.0
    health_fair_after_seconds: float = 25.0
    health_poor_after_seconds: float = 45.0
    # Autosave: debounce after an assistant entry + unconditional interval
    autosave_debounce_seconds: float = 2.0
    autosave_interval_seconds: float = 90.0
    # Snapshots older than this are never offered for recovery
    recovery_max_age_seconds: float = 30 * 60.0
    # Hard timeout for the recovery request
    recovery_timeout_seconds: float = _env_float("RECOVERY_TIMEOUT_SECONDS", 30.0)
    # Used for "question N of M" when the interview has no question plan
    default_total_questions: int = 10


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StorageConfig:
    progress_dir: str = os.getenv("PROGRESS_DIR", ".mockprep/progress")
    feedback_db_url: str = os.getenv("FEEDBACK_DB_URL", "sqlite:///.mockprep/feedback.db")


# ---------------------------------------------------------------------------
# Feedback generation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FeedbackConfig:
    # Base URL of the feedback API (recovery endpoint lives under it)
    service_url: str = os.getenv("FEEDBACK_SERVICE_URL", "http://localhost:8080")
    llm_model: str = os.getenv("FEEDBACK_LLM_MODEL", "gemini-2.0-flash-001")
    # Hard timeout for one feedback generation (LLM + persistence)
    timeout_seconds: float = _env_float("FEEDBACK_TIMEOUT_SECONDS", 60.0)
    # Lifetime of transport tokens issued by /token
    token_ttl_seconds: int = 3600


# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

server_cfg = ServerConfig()
sdk_cfg = SDKConfig()
transport_cfg = TransportConfig()
session_cfg = SessionConfig()
storage_cfg = StorageConfig()
feedback_cfg = FeedbackConfig()

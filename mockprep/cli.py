"""
MockPrep — Console Runner

Runs one interview from the terminal: offers recovery of an interrupted
attempt, then starts the call and prints notices until feedback is ready.

    python -m mockprep.cli --interview-id abc --user-id u1 --user-name Ada \\
        -q "Tell me about yourself." -q "Describe a hard bug you fixed."
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from .core.config import feedback_cfg, storage_cfg
from .core.models import FeedbackHandoff, Notice
from .services.feedback_service import HttpFeedbackService
from .services.orchestrator import SessionOrchestrator
from .services.progress_store import JsonFileProgressStore
from .services.transport import create_transport

logger = logging.getLogger("mockprep.cli")


def _print_notice(notice: Notice) -> None:
    print(f"[{notice.level.upper():7}] {notice.message}")


def _print_handoff(handoff: FeedbackHandoff) -> None:
    print(f"Feedback ready: {feedback_cfg.service_url}/api/feedback/{handoff.feedback_id}")


async def run_interview(
    interview_id: str,
    user_id: str,
    user_name: str = "",
    questions: Optional[List[str]] = None,
    recover: str = "accept",
    scripted: Optional[bool] = None,
) -> Optional[str]:
    """Returns the feedback id, or None when no feedback was produced."""
    orchestrator = SessionOrchestrator(
        session_id=interview_id,
        user_id=user_id,
        transport=create_transport(scripted),
        feedback_service=HttpFeedbackService(),
        recovery_service=HttpFeedbackService.recovery(),
        progress_store=JsonFileProgressStore(storage_cfg.progress_dir),
        user_name=user_name,
        questions=questions,
        on_notice=_print_notice,
        on_feedback_ready=_print_handoff,
    )

    async with orchestrator:
        offer = orchestrator.check_for_recovery()
        if offer is not None:
            print(offer.prompt)
            if recover == "accept":
                handoff = await orchestrator.accept_recovery()
                if handoff is not None:
                    return handoff.feedback_id
                return None
            orchestrator.decline_recovery()

        if not await orchestrator.start_session():
            return None

        # Ctrl+C leaves the autosaved snapshot behind for the next run
        await orchestrator.wait_finished()
        return orchestrator.feedback_id


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="mockprep", description="Run a voice mock interview.")
    parser.add_argument("--interview-id", required=True)
    parser.add_argument("--user-id", required=True)
    parser.add_argument("--user-name", default="")
    parser.add_argument("-q", "--question", action="append", dest="questions", default=[])
    parser.add_argument("--recover", choices=("accept", "decline"), default="accept",
                        help="what to do with an interrupted interview")
    parser.add_argument("--scripted", action="store_true",
                        help="use the scripted interviewer even when SDK keys are set")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    feedback_id = asyncio.run(run_interview(
        args.interview_id,
        args.user_id,
        user_name=args.user_name,
        questions=args.questions,
        recover=args.recover,
        scripted=True if args.scripted else None,
    ))
    return 0 if feedback_id else 1


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""Drive one reference session end to end against the bundled template.

Usage:
    python scripts/run_demo.py --candidate "Sam Lee" --verbose
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

SRC_DIR = Path(__file__).resolve().parents[1] / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from refcheck.core.models import AnswerType  # noqa: E402
from refcheck.features.session import QuestionPayload, SessionManager  # noqa: E402
from refcheck.web.app import _load_templates  # noqa: E402

CANNED_ANSWERS = {
    "relationship": "I managed them for two years on the payments team.",
    "overall_performance": "Consistently strong; they shipped on time and raised the bar for reviews.",
    "key_strengths": "Clear writing, calm incident handling, patient mentoring.",
    "improvement_areas": "Could delegate earlier on large projects.",
    "rehire": "Yes, without hesitation.",
}


def respond(question: QuestionPayload, attempt: int) -> str:
    if question.type is AnswerType.SCALE:
        # First attempt is deliberately out of range to show a clarification.
        return "7" if attempt == 1 else "4 out of 5"
    return CANNED_ANSWERS.get(question.key, "Nothing to add beyond the above.")


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a scripted reference session.")
    parser.add_argument("--template", default="standard-reference", help="Template id to run")
    parser.add_argument("--candidate", default="Sam Lee", help="Candidate name passed as context")
    parser.add_argument("--verbose", action="store_true", help="Print the conversation log")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    manager = SessionManager(_load_templates())
    token = manager.issue_token(args.template, {"candidate_name": args.candidate})
    view = manager.drive_session(token, respond)
    print(f"session {view.session_id}: {view.status.value} ({view.progress.percent}% answered)")

    review = manager.review(view.session_id)
    for item in review.review_items:
        print(f"- {item.question_key}: {item.raw_answer or '(unanswered)'}")
        if args.verbose:
            for turn in item.conversation_turns:
                print(f"    [{turn.sequence}] {turn.kind.value}: {turn.content}")

    done = manager.complete(view.session_id)
    check = manager.verify_seal(view.session_id)
    print(f"sealed {done.seal.algorithm}:{done.seal.digest} valid={check.valid}")


if __name__ == "__main__":
    main()

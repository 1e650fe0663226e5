#!/usr/bin/env python3
"""
Main entry point for the media plan pipeline.

Loads a client intake and a research document, generates the media plan
and writes it as JSON.
"""

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from business_logic.media_plan_controller import MediaPlanController
from data.manager import DocumentManager
from data.parsers import DocumentParseError
from models.data_models import SectionEvent, SectionStatus

# Load environment variables from .env file
load_dotenv()

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def print_progress(message: str, percent: int):
    print(f"[{percent:3d}%] {message}")


def print_event(event: SectionEvent):
    if event.status == SectionStatus.START:
        print(f"       ... {event.label}")
    elif event.status == SectionStatus.COMPLETE and event.phase.value != "validation":
        print(f"       done {event.label}")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a validated paid media plan.")
    parser.add_argument("intake", help="Path to the client intake JSON file")
    parser.add_argument("research", help="Path to the research document JSON file")
    parser.add_argument("-o", "--output", default="media_plan.json", help="Where to write the plan JSON")
    parser.add_argument("--year", type=int, default=None, help="Year stamped into campaign names")
    parser.add_argument("--stagger", type=float, default=None, help="Seconds between staggered calls")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    documents = DocumentManager()
    try:
        intake = documents.load_client_intake(args.intake)
        research = documents.load_research_document(args.research)
    except (DocumentParseError, ValueError, OSError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    controller = MediaPlanController(stagger_delay=args.stagger, generation_year=args.year)
    result = asyncio.run(controller.generate_media_plan(
        intake, research, on_event=print_event, on_progress=print_progress
    ))

    if not result.success:
        print(f"❌ Generation failed in {result.failed_phase}: {result.error} ({result.error_code})",
              file=sys.stderr)
        print(f"   Spent ${result.total_cost:.4f} before failing", file=sys.stderr)
        return 1

    with open(args.output, "w", encoding="utf-8") as f:
        json.dump(result.media_plan.model_dump(mode="json"), f, indent=2)

    print(f"✅ Media plan written to {args.output}")
    print(f"   Cost ${result.total_cost:.4f}, {result.total_time_ms / 1000:.1f}s, "
          f"{len(result.adjustments)} correction(s), {len(result.warnings)} warning(s)")
    for warning in result.warnings:
        print(f"   ⚠️  {warning}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

#!/usr/bin/env python3
"""
Command-line interface for Form 34 Results Capture.

Drives a station (34A) or constituency (34B) results draft from the
terminal: edit votes, merge a photographed form through OCR, save and
submit. Drafts and submission guards live in DRAFT_STORE_DIR.

Usage:
    python cli.py --help
    python cli.py show 101 --candidates candidates.json
    python cli.py ocr 101 form34a.jpg --candidates candidates.json
    python cli.py submit 101 --candidates candidates.json
"""

import argparse
import json
import sys
from pathlib import Path

from version import __version__


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    parser = argparse.ArgumentParser(
        prog="results-capture",
        description="""
Form 34 Results Capture - record, OCR-fill and submit election result forms.

Examples:
  %(prog)s show 101 --candidates candidates.json                 # Show station draft
  %(prog)s set-vote 101 0 120 --candidates candidates.json       # Candidate #1 gets 120
  %(prog)s ocr 101 form34a.jpg --candidates candidates.json      # Fill from photo
  %(prog)s --form 34B submit 7 --candidates candidates.json      # Submit constituency tally
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--form", "-f",
        choices=["34A", "34B"],
        default="34A",
        help="Form type: 34A (polling station) or 34B (constituency) (default: 34A)"
    )
    parser.add_argument(
        "--store",
        default=None,
        help="Draft directory (default: DRAFT_STORE_DIR or .results_drafts)"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="count",
        default=0,
        help="Increase verbosity (-v, -vv)"
    )

    # Options shared by every subcommand
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("entity_id", help="Station id (34A) or constituency id (34B)")
    common.add_argument(
        "--candidates", "-c",
        required=True,
        help="JSON file with the ordered candidate list [{id, name, party}]"
    )
    common.add_argument("--name", default="", help="Station/constituency name for a new draft")
    common.add_argument(
        "--registered-voters",
        type=int,
        default=None,
        help="Registered voters for a new draft"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("show", parents=[common], help="Show the current draft")
    subparsers.add_parser("validate", parents=[common], help="Check the draft can be submitted")
    subparsers.add_parser("save", parents=[common], help="Save the draft")
    subparsers.add_parser("submit", parents=[common], help="Submit final results")

    vote_parser = subparsers.add_parser("set-vote", parents=[common], help="Set a candidate's votes")
    vote_parser.add_argument("index", type=int, help="Candidate position in the list (0-based)")
    vote_parser.add_argument("value", help="Vote count")

    count_parser = subparsers.add_parser(
        "set-count", parents=[common],
        help="Set rejected/disputed/spoilt votes or registered voters"
    )
    count_parser.add_argument("field", help="e.g. rejected_votes, disputed_votes, spoilt_votes, registered_voters")
    count_parser.add_argument("value", help="Count")

    text_parser = subparsers.add_parser("set-text", parents=[common], help="Set a narrative field")
    text_parser.add_argument("field", help="e.g. presiding_officer, form34a_ref, remarks")
    text_parser.add_argument("value", help="Text")

    ocr_parser = subparsers.add_parser("ocr", parents=[common], help="Fill the draft from a form photo")
    ocr_parser.add_argument("image", help="JPG, PNG or WEBP image of the form")
    ocr_parser.add_argument("--mime-type", default=None, help="MIME type of the image, if known")

    return parser


def load_candidates(path: str) -> list:
    from result_types import Candidate

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("candidates", [])
    return [Candidate.from_dict(c) for c in data if isinstance(c, dict)]


def open_workflow(args):
    """Build the workflow for the entity named on the command line."""
    from config import get_config
    from draft_store import DraftStore, JsonFileStorage, SubmissionGuard
    from ocr_client import OcrClient
    from result_types import Constituency, FormType, PollingStation
    from results_api import ResultsApiClient
    from submission import ResultsWorkflow

    storage = JsonFileStorage(args.store or get_config().draft_store_dir)
    if FormType.parse(args.form) is FormType.FORM_34A:
        entity = PollingStation(id=args.entity_id, name=args.name, registered_voters=args.registered_voters)
    else:
        entity = Constituency(id=args.entity_id, name=args.name, registered_voters=args.registered_voters)

    return ResultsWorkflow.open(
        entity,
        load_candidates(args.candidates),
        DraftStore(storage),
        SubmissionGuard(storage),
        api_client=ResultsApiClient.from_config(),
        ocr_client=OcrClient.from_config(),
    )


def print_draft(workflow) -> None:
    draft = workflow.draft
    print(f"Form {draft.form_type.value} {draft.form_type.entity_label} {draft.entity_id} [{workflow.state.value}]")
    names = {str(c.id): c.name for c in workflow.candidates}
    for idx, entry in enumerate(draft.entries):
        print(f"  {idx:>2}. {names.get(str(entry.candidate_id), entry.candidate_id):<30} {entry.votes:>8}")
    print(f"  Valid votes:    {draft.total_valid}")
    print(f"  Rejected votes: {draft.rejected_votes}")
    print(f"  Total votes:    {draft.total_votes}")
    if draft.registered_voters:
        print(f"  Turnout:        {workflow.turnout():.1f}% of {draft.registered_voters}")
    if draft.remarks:
        print(f"  Remarks:        {draft.remarks}")


def run(args) -> int:
    from draft_validation import format_validation_issue
    from ocr_client import OcrError
    from ocr_reconciler import unmatched_ocr_names
    from submission import (
        AlreadySubmittedError,
        DraftBusyError,
        DraftValidationError,
        SubmissionError,
    )

    try:
        workflow = open_workflow(args)
        if args.command == "set-vote":
            workflow.set_vote(args.index, args.value)
        elif args.command == "set-count":
            workflow.set_count(args.field, args.value)
        elif args.command == "set-text":
            workflow.set_text(args.field, args.value)
        elif args.command == "ocr":
            ocr = workflow.apply_ocr(args.image, args.mime_type)
            print(ocr.notes or "OCR completed. Please review numbers before submitting.")
            for name in unmatched_ocr_names(ocr, workflow.candidates):
                print(f"  Unmatched OCR row: {name}")
        elif args.command == "save":
            outcome = workflow.save()
            print(outcome.warning or "Draft saved.")
        elif args.command == "validate":
            issue = workflow.validate()
            print(format_validation_issue(issue))
            return 1 if issue else 0
        elif args.command == "submit":
            draft = workflow.submit()
            print(f"Results submitted successfully (backend id {draft.backend_id}).")
    except (AlreadySubmittedError, DraftBusyError, SubmissionError, OcrError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except DraftValidationError as e:
        print(f"Error: {format_validation_issue(e.issue)}", file=sys.stderr)
        return 1
    except (OSError, ValueError, IndexError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print_draft(workflow)
    return 0


def main():
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    from logging_config import setup_logging
    setup_logging(level="DEBUG" if args.verbose > 1 else "INFO" if args.verbose else "WARNING")

    sys.exit(run(args))


if __name__ == "__main__":
    main()

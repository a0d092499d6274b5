"""Terminal view of a doctor's appointment board.

Usage:
    medbook board --doctor 1
    medbook board --doctor 1 --tab past
    medbook board --doctor 1 --calendar
    medbook reviews --doctor 1
"""
import argparse
import asyncio
import sys
from typing import List, Optional

from medbook import config
from medbook.board import AppointmentBoard
from medbook.logging_config import setup_structured_logging
from medbook.models import Actor, Tab
from medbook.store import RecordStore, StoreError
from medbook.views import format_grouped


# ANSI color codes keyed by calendar color
class Colors:
    green = '\033[92m'
    yellow = '\033[93m'
    red = '\033[91m'
    blue = '\033[94m'
    purple = '\033[95m'
    gray = '\033[90m'
    RESET = '\033[0m'
    BOLD = '\033[1m'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="medbook", description=__doc__.splitlines()[0])
    parser.add_argument("--api", default=config.API_BASE_URL, help="Record store base URL")
    sub = parser.add_subparsers(dest="command", required=True)

    board = sub.add_parser("board", help="Show a doctor's appointments")
    board.add_argument("--doctor", required=True, help="Doctor id")
    board.add_argument("--tab", choices=[t.value for t in Tab], default=Tab.UPCOMING.value)
    board.add_argument("--calendar", action="store_true", help="Show calendar projection")

    reviews = sub.add_parser("reviews", help="Show a doctor's ratings and reviews")
    reviews.add_argument("--doctor", required=True, help="Doctor id")
    return parser


def render_board(board: AppointmentBoard, tab: str, calendar: bool) -> str:
    if calendar:
        lines = []
        for event in board.calendar():
            color = getattr(Colors, event.color, Colors.gray)
            a = event.appointment
            lines.append(f"{color}■{Colors.RESET} {event.start}  {a.patient_name} [{a.status}]")
        return "\n".join(lines) or "No appointments."

    counts = board.counts()
    header = (
        f"{Colors.BOLD}Upcoming ({counts[Tab.UPCOMING.value]}) | "
        f"Past ({counts[Tab.PAST.value]}){Colors.RESET}"
    )
    return f"{header}\n\n{format_grouped(board.grouped(tab))}"


def render_reviews(board: AppointmentBoard) -> str:
    summary = board.rating_summary()
    lines = [f"{Colors.BOLD}Rating {summary.average} ({summary.count} reviews){Colors.RESET}"]
    for stars in range(5, 0, -1):
        lines.append(f"  {stars}★ {summary.distribution[stars]}")
    for review in board.reviews:
        lines.append(f"- [{review.rating}] {review.review_text or '(no text)'}")
    return "\n".join(lines)


async def _run_board(args) -> int:
    board = AppointmentBoard(RecordStore(base_url=args.api), Actor(id=args.doctor, role="doctor"))
    try:
        await board.refresh()
    except StoreError as e:
        print(f"{Colors.red}{e}{Colors.RESET}", file=sys.stderr)
        return 1
    finally:
        board.close()

    print(render_board(board, args.tab, args.calendar))
    return 0


async def _run_reviews(args) -> int:
    board = AppointmentBoard(RecordStore(base_url=args.api), Actor(id=args.doctor, role="doctor"))
    try:
        await board.load_reviews()
    except StoreError as e:
        print(f"{Colors.red}{e}{Colors.RESET}", file=sys.stderr)
        return 1
    finally:
        board.close()

    print(render_reviews(board))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_structured_logging(log_level="WARNING")

    if args.command == "board":
        return asyncio.run(_run_board(args))
    if args.command == "reviews":
        return asyncio.run(_run_reviews(args))
    return 2


if __name__ == "__main__":
    sys.exit(main())

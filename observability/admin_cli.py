"""Lightweight CLI helpers for inspecting audit sessions and housekeeping."""
from __future__ import annotations

import argparse

from storage.rate_limits import RateLimitStore
from storage.sessions import SessionStore


def list_sessions(status: str, limit: int = 20) -> None:
    store = SessionStore()
    for session in store.list_by_status(status)[:limit]:  # type: ignore[arg-type]
        contact = session.contact_info.email if session.contact_info else "-"
        print(
            f"{session.session_id} state={session.state} q={session.question_count} "
            f"overall={session.confidence.overall:.2f} contact={contact}"
        )


def abandon(session_id: str) -> None:
    updated = SessionStore().abandon(session_id)
    print("abandoned" if updated else "not found")


def purge() -> None:
    sessions = SessionStore().purge_expired()
    limits = RateLimitStore().purge_expired()
    print(f"purged sessions={sessions} rate_limits={limits}")


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument(
        "--list",
        choices=["active", "complete", "escalated", "abandoned"],
        help="Show sessions with the given status, newest first",
    )
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--abandon", metavar="SESSION_ID", help="Mark a session as abandoned")
    parser.add_argument("--purge", action="store_true", help="Delete expired sessions and rate limit rows")
    args = parser.parse_args()

    if args.list:
        list_sessions(args.list, args.limit)
    if args.abandon:
        abandon(args.abandon)
    if args.purge:
        purge()


if __name__ == "__main__":
    main()

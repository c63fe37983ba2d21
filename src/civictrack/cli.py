"""CivicTrack CLI — serve the API, list issues, sweep conversations, chat."""

import argparse
import asyncio
import logging
import sys

from civictrack.config import settings


def _setup() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="civictrack", description="CivicTrack issue tracker")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")

    issues = sub.add_parser("issues", help="List issues")
    issues.add_argument("--status", choices=["open", "in_progress", "resolved", "closed"])
    issues.add_argument("--category")
    issues.add_argument("--user")
    issues.add_argument("--near", nargs=2, type=float, metavar=("LAT", "LNG"))
    issues.add_argument("--radius", type=float, help="Radius in km (with --near)")
    issues.add_argument("--page", type=int, default=1)
    issues.add_argument("--limit", type=int, default=20)
    issues.add_argument("--sort", choices=["createdAt", "upvotes"], default="createdAt")
    issues.add_argument("--order", choices=["asc", "desc"], default="desc")

    sub.add_parser("sweep", help="Delete expired conversations")

    chat = sub.add_parser("chat", help="Send one message to the assistant")
    chat.add_argument("user_id")
    chat.add_argument("message", nargs="+")
    return parser


async def _list_issues(args: argparse.Namespace) -> None:
    from civictrack.api.deps import build_services
    from civictrack.core.types import IssueQuery

    services = build_services(settings)
    try:
        await services.db.init()
        lat, lng = args.near if args.near else (None, None)
        page = await services.queries.query_issues(IssueQuery(
            status=args.status,
            category=args.category,
            user_id=args.user,
            latitude=lat,
            longitude=lng,
            radius_km=args.radius,
            page=args.page,
            limit=args.limit,
            sort_by=args.sort,
            sort_order=args.order,
        ))
        print(f"\n{page.total} issues (page {page.page}/{page.total_pages}):\n")
        for r in page.records:
            issue = r.issue
            distance = f" {r.distance_km:.2f}km" if r.distance_km is not None else ""
            print(f"  [{issue.status:<11}] {issue.title} ({issue.category}, {issue.upvotes} upvotes){distance}")
            print(f"      {issue.id} by {r.reported_by_name} — {issue.location.address}")
    finally:
        await services.db.dispose()


async def _sweep() -> None:
    from civictrack.api.deps import build_services

    services = build_services(settings)
    try:
        await services.db.init()
        removed = await services.conversations.purge_expired()
        print(f"Removed {removed} expired conversations")
    finally:
        await services.db.dispose()


async def _chat(user_id: str, message: str) -> None:
    from civictrack.api.chat import present_reply
    from civictrack.api.deps import build_services

    services = build_services(settings)
    try:
        await services.db.init()
        reply = await services.orchestrator.handle_message(message, user_id)
        payload = present_reply(reply)
        print(payload.message)
        if payload.openForm:
            print("(issue form requested)")
    finally:
        await services.db.dispose()


def main() -> None:
    """civictrack <serve|issues|sweep|chat> ..."""
    parser = _build_parser()
    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        sys.exit(1)

    _setup()
    if args.command == "serve":
        import uvicorn

        uvicorn.run("civictrack.api.main:app", host=args.host, port=args.port, reload=args.reload)
    elif args.command == "issues":
        asyncio.run(_list_issues(args))
    elif args.command == "sweep":
        asyncio.run(_sweep())
    elif args.command == "chat":
        asyncio.run(_chat(args.user_id, " ".join(args.message)))


if __name__ == "__main__":
    main()

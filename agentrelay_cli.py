import argparse
import json
import sys
from typing import List, Optional

import httpx


DEFAULT_API_BASE = "http://127.0.0.1:8000"


def _join_url(base: str, path: str) -> str:
    return base.rstrip("/") + path


def _print_messages(messages: List[dict]) -> None:
    if not messages:
        print("No messages.")
        return
    for message in messages:
        print(f"[{message.get('role')}] {message.get('content')}")
        metadata = message.get("metadata") or {}
        if "completeness" in metadata:
            sources = ", ".join(metadata.get("sourcesUsed") or [])
            print(f"  sources: {sources or '-'}  completeness: {metadata['completeness']}")


def _print_executions(executions: List[dict]) -> None:
    if not executions:
        print("No agent executions.")
        return
    for item in executions:
        line = f"{item.get('agent_type'):<10} {item.get('status'):<10} {item.get('duration_ms')}ms"
        if item.get("error"):
            line += f"  error: {item['error']}"
        print(line)


def run_new(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.post(
            _join_url(args.base_url, "/api/conversation/new"), params={"userId": args.user}, timeout=10
        )
        if resp.status_code >= 400:
            print(f"Failed to create conversation: HTTP {resp.status_code}")
            return 1
        print(resp.json().get("conversationId"))
    return 0


def run_history(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.get(
            _join_url(args.base_url, f"/api/conversations/{args.conversation_id}/messages"),
            params={"limit": args.limit},
            timeout=10,
        )
        if resp.status_code >= 400:
            print(f"Failed to fetch history: HTTP {resp.status_code}")
            return 1
        _print_messages(resp.json().get("messages") or [])
    return 0


def run_executions(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.get(
            _join_url(args.base_url, f"/api/conversations/{args.conversation_id}/executions"), timeout=10
        )
        if resp.status_code >= 400:
            print(f"Failed to fetch executions: HTTP {resp.status_code}")
            return 1
        _print_executions(resp.json().get("executions") or [])
    return 0


def run_search(args: argparse.Namespace) -> int:
    with httpx.Client() as client:
        resp = client.get(
            _join_url(args.base_url, "/api/search"), params={"q": args.query, "limit": args.limit}, timeout=30
        )
        if resp.status_code >= 400:
            print(f"Search failed: HTTP {resp.status_code}")
            return 1
        results = resp.json().get("results") or []
        if args.json:
            print(json.dumps(results, indent=2))
            return 0
        if not results:
            print("No matches.")
        for doc in results:
            meta = doc.get("metadata") or {}
            print(f"{doc.get('score', 0.0):.3f}  {meta.get('conversationId')}  [{meta.get('role')}] {doc.get('text')}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="AgentRelay CLI")
    parser.add_argument("--base-url", default=DEFAULT_API_BASE, help="API base URL")
    subparsers = parser.add_subparsers(dest="command")

    new = subparsers.add_parser("new", help="Create a conversation")
    new.add_argument("--user", default="anonymous", help="User id")

    history = subparsers.add_parser("history", help="Show persisted messages")
    history.add_argument("conversation_id")
    history.add_argument("--limit", type=int, default=50)

    executions = subparsers.add_parser("executions", help="Show agent executions")
    executions.add_argument("conversation_id")

    search = subparsers.add_parser("search", help="Similarity search over messages")
    search.add_argument("query")
    search.add_argument("--limit", type=int, default=5)
    search.add_argument("--json", action="store_true", help="Print raw JSON")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    handlers = {
        "new": run_new,
        "history": run_history,
        "executions": run_executions,
        "search": run_search,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())

"""chatrelay diagnostics CLI."""

from __future__ import annotations

import argparse
import json

from chatrelay.config import RelaySettings
from chatrelay.storage import ChromaStore, ChromaUnavailableError, SessionRecord


def load_store(settings: RelaySettings) -> ChromaStore:
    try:
        store = ChromaStore(settings.chroma_persist_path)
        store.ping()
    except ChromaUnavailableError as exc:
        print(f"Chroma unavailable: {exc}")
        raise SystemExit(1)
    return store


def _record_payload(record: SessionRecord) -> dict[str, object]:
    return {
        "conversation_id": record.conversation_id,
        "session_type": record.session_type,
        "project_path": record.project_path,
        "process_session_id": record.process_session_id,
        "last_activity": record.last_activity.isoformat(),
        "is_active": record.is_active,
    }


def cmd_sessions(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    records = store.list_sessions(args.owner or settings.owner_id, include_inactive=args.all)
    if args.json:
        print(json.dumps([_record_payload(record) for record in records], indent=2))
    else:
        for record in records:
            state = "active" if record.is_active else "disabled"
            print(f"{record.conversation_id} [{state}] -> {record.process_session_id}")


def cmd_messages(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    messages = store.fetch_messages(args.conversation_id, limit=args.limit)
    for message in messages:
        print(
            f"{message.created_at.isoformat()} {message.direction:<8} "
            f"[{message.message_type}] {message.content[:200]}"
        )


def cmd_stats(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    records = store.list_sessions(args.owner or settings.owner_id, include_inactive=True)

    type_counts: dict[str, int] = {}
    for record in records:
        type_counts[record.session_type] = type_counts.get(record.session_type, 0) + 1

    stats = {
        "sessions_total": len(records),
        "sessions_active": sum(1 for record in records if record.is_active),
        "sessions_with_process_id": sum(1 for record in records if record.process_session_id),
        "type_counts": type_counts,
    }
    print(json.dumps(stats, indent=2))


def cmd_projects(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    projects = store.list_projects()
    if args.json:
        payload = [
            {
                "conversation_id": project.conversation_id,
                "path": project.path,
                "display_name": project.display_name,
                "created_at": project.created_at.isoformat(),
            }
            for project in projects
        ]
        print(json.dumps(payload, indent=2))
        return
    for project in projects:
        print(f"{project.conversation_id}\t{project.display_name}\t{project.path}")


def cmd_reset_stale(args: argparse.Namespace) -> None:
    settings = RelaySettings()
    store = load_store(settings)
    cleared = store.clear_all_process_session_ids()
    print(f"Cleared {cleared} process session id(s)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="chatrelay diagnostics")
    sub = parser.add_subparsers(dest="cmd")

    p_sessions = sub.add_parser("sessions", help="List persisted conversation sessions")
    p_sessions.add_argument("--owner")
    p_sessions.add_argument("--all", action="store_true", help="Include disabled sessions")
    p_sessions.add_argument("--json", action="store_true", help="Output JSON")
    p_sessions.set_defaults(func=cmd_sessions)

    p_messages = sub.add_parser("messages", help="Show the message log of a conversation")
    p_messages.add_argument("conversation_id")
    p_messages.add_argument("--limit", type=int, default=20)
    p_messages.set_defaults(func=cmd_messages)

    p_stats = sub.add_parser("stats", help="Show session counts")
    p_stats.add_argument("--owner")
    p_stats.set_defaults(func=cmd_stats)

    p_projects = sub.add_parser("projects", help="List provisioned conversation workspaces")
    p_projects.add_argument("--json", action="store_true", help="Output JSON")
    p_projects.set_defaults(func=cmd_projects)

    p_reset = sub.add_parser(
        "reset-stale",
        help="Clear stored process session ids (only while the server is stopped)",
    )
    p_reset.set_defaults(func=cmd_reset_stale)

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not hasattr(args, "func"):
        parser.print_help()
        return
    args.func(args)


if __name__ == "__main__":
    main()

import argparse
import asyncio
import logging
import sys

from blazeclip.config import DB_PATH, IMAGE_DIR, LOG_PATH, MAX_PINS
from blazeclip.history import HistoryStore, PersistenceError
from blazeclip.models import ClipboardEntry, PinResult
from blazeclip.storage import ImageStore, StorageManager
from blazeclip.utils import ensure_dirs, format_when


def configure_logging() -> None:
    ensure_dirs()
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_PATH),
            logging.StreamHandler(sys.stderr),
        ],
    )


def format_entry(entry: ClipboardEntry) -> str:
    marker = "*" if entry.pinned else " "
    return f"{entry.id:>14} {marker} x{entry.use_count:<3} {format_when(entry.last_used_at)}  {entry.preview}"


def open_store(storage: StorageManager) -> HistoryStore:
    from blazeclip.clipboard import default_clipboard

    image_store = ImageStore(IMAGE_DIR)
    store = HistoryStore(storage, release_image=image_store.release, clipboard=default_clipboard(image_store))
    store.load()
    return store


def list_entries(store: HistoryStore, limit: int | None = None, query: str = "") -> int:
    entries = store.filter(query)
    if limit is not None:
        entries = entries[:limit]
    if not entries:
        print("(No clipboard history)" if not query else f'No results for "{query}"')
        return 0
    for entry in entries:
        print(format_entry(entry))
    return 0


def pin_entry(store: HistoryStore, entry_id: int) -> int:
    result = store.pin(entry_id)
    if result == PinResult.NOT_FOUND:
        print(f"No entry with id {entry_id}")
        return 1
    if result == PinResult.QUOTA_EXCEEDED:
        print(f"Maximum {MAX_PINS} pinned items")
        return 1
    print("Already pinned" if result == PinResult.ALREADY_PINNED else "Pinned")
    return 0


def unpin_entry(store: HistoryStore, entry_id: int) -> int:
    if store.get(entry_id) is None:
        print(f"No entry with id {entry_id}")
        return 1
    print("Unpinned" if store.unpin(entry_id) else "Not pinned")
    return 0


def delete_entry(store: HistoryStore, entry_id: int) -> int:
    result = store.delete(entry_id)
    if not result.deleted:
        print(f"No entry with id {entry_id}")
        return 1
    print("Deleted")
    return 0


def clear_entries(store: HistoryStore) -> int:
    removed = asyncio.run(store.clear())
    print(f"Cleared {removed} entries")
    return 0


def run_app() -> None:
    """Run clipboard capture in the foreground until interrupted."""
    configure_logging()

    from blazeclip.app import ClipboardSession
    from blazeclip.clipboard import default_clipboard

    image_store = ImageStore(IMAGE_DIR)
    with StorageManager(DB_PATH) as storage:
        session = ClipboardSession(storage, default_clipboard(image_store), image_store)
        try:
            asyncio.run(session.run_forever())
        except KeyboardInterrupt:
            logging.getLogger(__name__).info("Stopped")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="BlazeClip - clipboard history with pinning",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  blazeclip               # capture clipboard history in the foreground
  blazeclip list -n 10    # show the ten newest entries
  blazeclip search token  # entries containing "token"
  blazeclip pin 1718000000000
""",
    )
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", help="Capture clipboard history in the foreground")
    list_cmd = sub.add_parser("list", help="Show pinned and recent entries")
    list_cmd.add_argument("-n", "--limit", type=int, default=None)
    search_cmd = sub.add_parser("search", help="Case-insensitive text search")
    search_cmd.add_argument("query")
    for name in ("pin", "unpin", "delete"):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} an entry by id")
        cmd.add_argument("id", type=int)
    sub.add_parser("clear", help="Remove every entry, pinned ones included")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)

    if args.command in (None, "run"):
        run_app()
        return

    ensure_dirs()
    with StorageManager(DB_PATH) as storage:
        try:
            store = open_store(storage)
        except PersistenceError as exc:
            print(f"Could not read clipboard history: {exc}", file=sys.stderr)
            sys.exit(1)

        if args.command == "list":
            code = list_entries(store, limit=args.limit)
        elif args.command == "search":
            code = list_entries(store, query=args.query)
        elif args.command == "pin":
            code = pin_entry(store, args.id)
        elif args.command == "unpin":
            code = unpin_entry(store, args.id)
        elif args.command == "delete":
            code = delete_entry(store, args.id)
        else:
            code = clear_entries(store)

        if store.last_persist_error is not None:
            print(f"Warning: {store.last_persist_error}", file=sys.stderr)
    sys.exit(code)


if __name__ == "__main__":
    main()

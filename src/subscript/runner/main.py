"""
CLI main entry point.
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..errors import SubscriptError
from ..extraction import OllamaExtractionClient
from ..mail_client import ImapFetcher
from ..review import ReviewWorkflow
from ..state_store import StoreRouter, StoreTarget
from ..sync import run_sync

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="subscript",
        description="Turn receipt mail into reviewed subscriptions and domains",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # Shared by every command that touches a store
    store_parent = argparse.ArgumentParser(add_help=False)
    store_parent.add_argument(
        "--test-mode",
        action="store_true",
        help="Use the isolated test database instead of production",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser(
        "sync", parents=[store_parent], help="Fetch unseen mail and queue extractions for review"
    )
    subparsers.add_parser("pending", parents=[store_parent], help="List items awaiting review")

    approve_parser = subparsers.add_parser(
        "approve", parents=[store_parent], help="Approve review items (stops at first failure)"
    )
    approve_parser.add_argument("ids", type=int, nargs="+", help="Review item ID(s)")
    approve_parser.add_argument(
        "--data",
        type=str,
        help="Edited extracted data as a JSON object (single ID only)",
    )

    reject_parser = subparsers.add_parser(
        "reject", parents=[store_parent], help="Reject review items (stops at first failure)"
    )
    reject_parser.add_argument("ids", type=int, nargs="+", help="Review item ID(s)")

    create_parser = subparsers.add_parser(
        "create-pending", parents=[store_parent], help="Add a review item by hand"
    )
    create_parser.add_argument("--from", dest="email_from", required=True, help="Sender")
    create_parser.add_argument("--subject", type=str, help="Subject line")
    create_parser.add_argument("--date", type=str, help="Message date")
    create_parser.add_argument(
        "--type",
        dest="classification",
        choices=["subscription", "domain", "junk"],
        help="Classification",
    )
    create_parser.add_argument("--confidence", type=float, help="Confidence in [0, 1]")
    create_parser.add_argument(
        "--data", type=str, default="{}", help="Extracted data as JSON (stored verbatim)"
    )

    subparsers.add_parser("models", help="List models available on the Ollama server")
    subparsers.add_parser("test-imap", help="Check the mail server login")
    subparsers.add_parser("status", parents=[store_parent], help="Show queue and ledger counts")

    purge_parser = subparsers.add_parser(
        "purge-receipts", parents=[store_parent], help="Delete receipts past retention"
    )
    purge_parser.add_argument(
        "--days",
        type=int,
        help="Retention in days (default: storage.receipt_retention_days)",
    )

    subparsers.add_parser("clear-test-db", help="Delete all rows from the test database")

    init_parser = subparsers.add_parser("init-config", help="Write a default config file")
    init_parser.add_argument(
        "--force", action="store_true", help="Overwrite an existing config file"
    )

    return parser


def cmd_sync(config: Config, target: StoreTarget) -> int:
    """Run one sync pass."""
    print(f"📬 Syncing mail into the {target.value} store...")

    summary = run_sync(config, test_mode=target is StoreTarget.TEST)
    if summary.skipped:
        missing = ", ".join(config.missing_sync_settings())
        print(f"⏭️  Sync skipped, missing settings: {missing}")
        return 0

    for outcome in summary.failed:
        stage = outcome.failed_stage.value if outcome.failed_stage else "unknown"
        print(f"  ❌ [{outcome.uid}] {outcome.subject or '(no subject)'}: {stage}: {outcome.error}")

    print(f"\n✓ Processed {summary.processed}, queued {summary.imported} for review")
    return 0


def cmd_pending(config: Config, target: StoreTarget) -> int:
    """List the review queue."""
    workflow = ReviewWorkflow(StoreRouter(config.storage).get(target))
    items = workflow.list_pending()

    if not items:
        print("✓ Review queue is empty")
        return 0

    for item in items:
        confidence = f"{item.confidence:.0%}" if item.confidence is not None else "-"
        print(
            f"  [{item.id}] {item.classification or '?':<12} {confidence:>5}  "
            f"{item.email_from}  {item.email_subject or ''}"
        )
    print(f"\n{len(items)} item(s) pending")
    return 0


def cmd_approve(
    config: Config, target: StoreTarget, ids: list[int], data: str | None = None
) -> int:
    """Approve one item (optionally with edits) or a batch."""
    workflow = ReviewWorkflow(StoreRouter(config.storage).get(target))

    if data is not None:
        if len(ids) != 1:
            print("❌ --data can only be used with a single ID")
            return 1
        results = [workflow.approve(ids[0], edited_data=data)]
    else:
        results = workflow.batch_approve(ids)

    for result in results:
        action = "merged into" if result.merged else "created"
        print(
            f"  ✓ [{result.pending_id}] {action} {result.classification.value} {result.entity_id}"
        )
    return 0


def cmd_reject(config: Config, target: StoreTarget, ids: list[int]) -> int:
    """Reject one item or a batch."""
    workflow = ReviewWorkflow(StoreRouter(config.storage).get(target))
    workflow.batch_reject(ids)
    print(f"✓ Rejected {len(ids)} item(s)")
    return 0


def cmd_create_pending(
    config: Config,
    target: StoreTarget,
    email_from: str,
    data: str,
    classification: str | None = None,
    confidence: float | None = None,
    subject: str | None = None,
    date: str | None = None,
) -> int:
    """Insert a review item by hand."""
    try:
        json.loads(data)
    except json.JSONDecodeError as e:
        print(f"❌ --data is not valid JSON: {e}")
        return 1

    store = StoreRouter(config.storage).get(target)
    pending_id = store.create_pending_import(
        email_from=email_from,
        extracted_data=data,
        classification=classification,
        confidence=confidence,
        email_subject=subject,
        email_date=date,
    )
    print(f"✓ Created review item {pending_id}")
    return 0


def cmd_models(config: Config) -> int:
    """List models on the Ollama server."""
    with OllamaExtractionClient(config.llm) as client:
        models = client.list_models()

    for name in models:
        marker = "*" if name == config.llm.model else " "
        print(f"  {marker} {name}")
    print(f"\n{len(models)} model(s) at {config.llm.ollama_url}")
    return 0


def cmd_test_imap(config: Config) -> int:
    """Check the mail server login."""
    ImapFetcher(config.imap).test_connection()
    print(f"✓ Logged in to {config.imap.host} as {config.imap.username}")
    return 0


def cmd_status(config: Config, target: StoreTarget) -> int:
    """Show queue and ledger counts."""
    store = StoreRouter(config.storage).get(target)
    stats = store.get_stats()

    print(f"\n📊 Status ({target.value} store)")
    print("=" * 40)
    print(f"  Pending review:         {stats['pending_imports_pending']}")
    print(f"  Approved:               {stats['pending_imports_approved']}")
    print(f"  Rejected:               {stats['pending_imports_rejected']}")
    print(f"  Subscriptions:          {stats['subscriptions']}")
    print(f"  Domains:                {stats['domains']}")
    print(f"  Receipts:               {stats['receipts']}")
    print(f"  Last sync:              {store.get_last_sync_time() or 'never'}")
    print()
    return 0


def cmd_purge_receipts(config: Config, target: StoreTarget, days: int | None = None) -> int:
    """Delete receipts older than the retention window."""
    retention = days if days is not None else config.storage.receipt_retention_days
    store = StoreRouter(config.storage).get(target)
    deleted = store.delete_old_receipts(retention)
    print(f"✓ Deleted {deleted} receipt(s) older than {retention} day(s)")
    return 0


def cmd_clear_test_db(config: Config) -> int:
    """Empty the isolated test database."""
    StoreRouter(config.storage).clear_test_store()
    print(f"✓ Cleared {config.storage.test_path}")
    return 0


def cmd_init_config(config_path: Path, force: bool = False) -> int:
    """Write a default config file."""
    if config_path.exists() and not force:
        print(f"❌ {config_path} already exists (use --force to overwrite)")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote {config_path}")
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config, parsed.force)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    target = StoreTarget.from_test_mode(getattr(parsed, "test_mode", False))

    # Route to command
    try:
        if parsed.command == "sync":
            return cmd_sync(config, target)
        elif parsed.command == "pending":
            return cmd_pending(config, target)
        elif parsed.command == "approve":
            return cmd_approve(config, target, parsed.ids, parsed.data)
        elif parsed.command == "reject":
            return cmd_reject(config, target, parsed.ids)
        elif parsed.command == "create-pending":
            return cmd_create_pending(
                config,
                target,
                email_from=parsed.email_from,
                data=parsed.data,
                classification=parsed.classification,
                confidence=parsed.confidence,
                subject=parsed.subject,
                date=parsed.date,
            )
        elif parsed.command == "models":
            return cmd_models(config)
        elif parsed.command == "test-imap":
            return cmd_test_imap(config)
        elif parsed.command == "status":
            return cmd_status(config, target)
        elif parsed.command == "purge-receipts":
            return cmd_purge_receipts(config, target, parsed.days)
        elif parsed.command == "clear-test-db":
            return cmd_clear_test_db(config)
        else:
            parser.print_help()
            return 1
    except SubscriptError as e:
        logger.debug("Command %s failed", parsed.command, exc_info=True)
        print(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())

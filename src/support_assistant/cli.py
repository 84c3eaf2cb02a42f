"""Command-line tools for managing the support knowledge base."""

import asyncio
import json
import sys
from pathlib import Path

import click
from pydantic import ValidationError

from support_assistant.application.exceptions import KnowledgeBaseError
from support_assistant.config import get_settings
from support_assistant.domain.models import KnowledgeBaseEntryCreate
from support_assistant.logging_config import setup_logging
from support_assistant.services.knowledge_store import SqliteKnowledgeStore, create_knowledge_store

# Starter articles covering the most common support topics
DEFAULT_ENTRIES: list[dict] = [
    {
        "title": "Password Reset Guide",
        "content": (
            "To reset your password: 1. Go to the login page 2. Click \"Forgot Password\" "
            "3. Enter your email 4. Check your email for reset instructions "
            "5. Follow the link and create a new password"
        ),
        "category": "technical",
        "priority": "high",
        "product_type": "web_app",
        "tags": ["password", "reset", "login"],
    },
    {
        "title": "Account Billing Information",
        "content": (
            "Your billing information can be found in Account Settings > Billing. "
            "Here you can view current plans, payment history, and update payment methods."
        ),
        "category": "billing",
        "priority": "medium",
        "product_type": "web_app",
        "tags": ["billing", "account", "payment"],
    },
    {
        "title": "Getting Started Guide",
        "content": (
            "Welcome! To get started: 1. Complete your profile 2. Explore the dashboard "
            "3. Connect your first data source 4. Create your first project 5. Invite team members"
        ),
        "category": "general",
        "priority": "low",
        "product_type": "web_app",
        "tags": ["getting-started", "onboarding"],
    },
    {
        "title": "Tracking Your Order",
        "content": (
            "Once your order ships you will receive an email with a tracking number. "
            "You can also open Orders in your account and click \"Track shipment\" "
            "to see the carrier status and estimated delivery date."
        ),
        "category": "shipping",
        "priority": "medium",
        "product_type": "store",
        "tags": ["shipping", "tracking", "delivery"],
    },
    {
        "title": "Returning an Item",
        "content": (
            "Items can be returned within 30 days of delivery. Open Orders, choose the item, "
            "click \"Start a return\" and print the prepaid label. Refunds are issued to the "
            "original payment method within 5-7 business days after we receive the item."
        ),
        "category": "returns",
        "priority": "medium",
        "product_type": "store",
        "tags": ["returns", "refund", "exchange"],
    },
]


def load_entries(path: Path | None) -> list[KnowledgeBaseEntryCreate]:
    """Parse seed entries from a JSON file, or return the built-in set."""
    raw = DEFAULT_ENTRIES if path is None else json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        raise ValueError("Seed file must contain a JSON list of entries")
    return [KnowledgeBaseEntryCreate.model_validate(item) for item in raw]


async def seed_entries(
    store: SqliteKnowledgeStore, entries: list[KnowledgeBaseEntryCreate]
) -> list[str]:
    """Insert entries one by one and return the new ids."""
    ids = []
    for entry in entries:
        created = await store.add_entry(entry)
        ids.append(created.id)
    return ids


def _open_store() -> SqliteKnowledgeStore:
    settings = get_settings()
    setup_logging(level=settings.log_level, json=settings.log_json, log_file=settings.log_file)
    store = create_knowledge_store(settings)
    store.connect()
    return store


@click.group()
def cli():
    """Customer-support assistant management commands."""
    pass


@cli.command()
@click.option(
    "--file",
    "file_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON list of entries to load instead of the built-in starter articles.",
)
def seed(file_path: Path | None):
    """Load knowledge-base entries and index their embeddings."""
    try:
        entries = load_entries(file_path)
    except (ValueError, ValidationError) as e:
        click.echo(f"✗ Invalid seed data: {e}", err=True)
        sys.exit(1)

    click.echo(f"Seeding {len(entries)} entries...")
    store = _open_store()
    try:
        ids = asyncio.run(seed_entries(store, entries))
    except KnowledgeBaseError as e:
        click.echo(f"✗ Error: {e}", err=True)
        sys.exit(1)
    finally:
        store.close()

    for entry, entry_id in zip(entries, ids):
        click.echo(f"  ✓ {entry_id}  [{entry.category}] {entry.title}")
    click.echo(f"\n✓ Seeded {len(ids)} entries into {store.db_path}")


@cli.command("kb-stats")
def kb_stats():
    """Show knowledge-base statistics."""
    store = _open_store()
    try:
        stats = asyncio.run(store.get_stats())
    finally:
        store.close()

    click.echo(f"Total entries: {stats['total_entries']}")
    click.echo("\nBy category:")
    for category, count in sorted(stats["by_category"].items()):
        click.echo(f"  {category}: {count}")
    click.echo("\nBy priority:")
    for priority, count in sorted(stats["by_priority"].items()):
        click.echo(f"  {priority}: {count}")


if __name__ == "__main__":
    cli()

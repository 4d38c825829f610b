"""Per-trade journal entries.

Entries record how a trade felt and what was learned from it: a 1-5
rating, emotions, mistakes, lessons and improvements. The CLI prompts
below fill them in interactively.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Optional

from .storage import JournalStore

logger = logging.getLogger(__name__)

ENTRIES_TABLE = "journal_entries"

LIST_FIELDS = ["emotions", "mistakes", "lessons_learned", "improvements", "market_conditions"]


def _validate_rating(rating: Optional[int]) -> None:
    if rating is not None and not 1 <= int(rating) <= 5:
        raise ValueError(f"Rating must be between 1 and 5, got {rating}")


def create_entry_template(trade_id: Optional[str] = None) -> dict:
    """Create empty journal entry.

    Args:
        trade_id: Trade the entry belongs to, if any.

    Returns:
        Dictionary with entry structure.
    """
    entry = {
        "trade_id": trade_id,
        "entry_date": datetime.now(timezone.utc).isoformat(),
        "notes": None,
        "rating": None,
    }
    for name in LIST_FIELDS:
        entry[name] = []
    return entry


def create_entry(store: JournalStore, user_id: str, entry: dict) -> dict:
    """Store a new journal entry.

    Raises:
        ValueError: If the rating is outside 1-5.
    """
    _validate_rating(entry.get("rating"))

    record = {**create_entry_template(entry.get("trade_id")), **entry, "user_id": user_id}
    stored = store.insert(ENTRIES_TABLE, [record])[0]

    logger.info(f"Journal entry {stored['id']} saved")
    return stored


def get_entry(store: JournalStore, user_id: str, entry_id: str) -> Optional[dict]:
    rows = store.select(ENTRIES_TABLE, {"id": entry_id, "user_id": user_id})
    return rows[0] if rows else None


def list_entries(
    store: JournalStore,
    user_id: str,
    trade_id: Optional[str] = None,
) -> list[dict]:
    """List journal entries, newest first.

    Args:
        store: Storage backend.
        user_id: Owner.
        trade_id: Only entries for this trade.

    Returns:
        List of entry dictionaries.
    """
    filters = {"user_id": user_id}
    if trade_id:
        filters["trade_id"] = trade_id
    return store.select(ENTRIES_TABLE, filters, order_by="entry_date", descending=True)


def update_entry(store: JournalStore, user_id: str, entry_id: str, changes: dict) -> dict:
    """Update an entry.

    Raises:
        ValueError: If the entry does not exist or the rating is invalid.
    """
    if get_entry(store, user_id, entry_id) is None:
        raise ValueError(f"Journal entry not found: {entry_id}")
    _validate_rating(changes.get("rating"))
    return store.update(ENTRIES_TABLE, entry_id, changes)


def delete_entry(store: JournalStore, user_id: str, entry_id: str) -> bool:
    return store.delete(ENTRIES_TABLE, row_id=entry_id, filters={"user_id": user_id}) > 0


def common_mistakes(entries: list[dict], top: int = 3) -> list[tuple[str, int]]:
    """Most frequently logged mistakes across entries."""
    counts = Counter(
        mistake
        for entry in entries
        for mistake in entry.get("mistakes") or []
    )
    return sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:top]


def prompt_input(prompt: str, default: Optional[str] = None) -> Optional[str]:
    """Prompt user for input with optional default.

    Args:
        prompt: Prompt text to display.
        default: Default value if user enters nothing.

    Returns:
        User input or default value.
    """
    if default:
        display = f"{prompt} [{default}]: "
    else:
        display = f"{prompt}: "

    value = input(display).strip()

    if not value and default:
        return default

    return value if value else None


def prompt_rating(prompt: str, default: Optional[int] = None) -> Optional[int]:
    """Prompt for a 1-5 rating, re-asking on invalid input."""
    default_str = str(default) if default is not None else None
    value = prompt_input(f"{prompt} (1-5)", default_str)

    if value is None:
        return None

    try:
        rating = int(value)
        _validate_rating(rating)
        return rating
    except ValueError:
        print(f"Invalid rating: {value}")
        return prompt_rating(prompt, default)


def prompt_list(prompt: str, default: Optional[list[str]] = None) -> list[str]:
    """Prompt for a comma-separated list."""
    value = prompt_input(f"{prompt} (comma-separated)", ", ".join(default or []) or None)
    if value is None:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def interactive_entry(store: JournalStore, user_id: str, trade_id: Optional[str] = None) -> dict:
    """Run interactive journal entry session.

    Args:
        store: Storage backend.
        user_id: Owner.
        trade_id: Trade to attach the entry to.

    Returns:
        Stored entry dictionary.
    """
    entry = create_entry_template(trade_id)

    print("\n--- JOURNAL ENTRY ---\n")

    entry["rating"] = prompt_rating("How well did you execute")
    entry["emotions"] = prompt_list("Emotions")
    entry["market_conditions"] = prompt_list("Market conditions")
    entry["mistakes"] = prompt_list("Mistakes")
    entry["lessons_learned"] = prompt_list("Lessons learned")
    entry["improvements"] = prompt_list("Improvements")
    entry["notes"] = prompt_input("Notes")

    stored = create_entry(store, user_id, entry)
    print(f"\nJournal entry saved with ID {stored['id']}")

    return stored


def format_entry_list(entries: list[dict]) -> str:
    """Format entry list for display.

    Args:
        entries: List of journal entries.

    Returns:
        Formatted text output.
    """
    if not entries:
        return "No journal entries found."

    lines = [
        "=" * 60,
        "JOURNAL ENTRIES",
        "=" * 60,
        "",
    ]

    for entry in entries:
        rating = entry.get("rating")
        lines.append(f"ID: {entry['id']}")
        lines.append(f"  Date: {(entry.get('entry_date') or 'N/A')[:10]}")
        lines.append(f"  Trade: {entry.get('trade_id') or 'N/A'}")
        lines.append(f"  Rating: {rating if rating is not None else '-'}/5")
        if entry.get("mistakes"):
            lines.append(f"  Mistakes: {', '.join(entry['mistakes'])}")
        if entry.get("lessons_learned"):
            lines.append(f"  Lessons: {', '.join(entry['lessons_learned'])}")
        if entry.get("notes"):
            lines.append(f"  Notes: {entry['notes'][:50]}")
        lines.append("")

    return "\n".join(lines)

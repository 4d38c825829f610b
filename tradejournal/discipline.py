"""Discipline tracking: trading rules, daily check-ins, goals and habits.

Daily entries record which rules were followed or broken and a 1-5
self-rating. compute_discipline_stats() turns them into compliance and
trend figures for the dashboard.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Optional

from .storage import JournalStore

logger = logging.getLogger(__name__)

RULES_TABLE = "trading_rules"
ENTRIES_TABLE = "discipline_tracker"
GOALS_TABLE = "goals"
HABITS_TABLE = "habits"
VERIFICATIONS_TABLE = "habit_verifications"

RULE_CATEGORIES = ["Entry", "Exit", "Risk Management", "Psychology", "Process"]
IMPORTANCE_LEVELS = ["Critical", "Important", "Good Practice"]
GOAL_STATUSES = ["not_started", "in_progress", "completed"]

TOP_RULES = 5
TREND_WEEKS = 8


@dataclass
class TradingRule:
    name: str
    category: str
    description: str = ""
    importance: str = "Important"
    id: Optional[str] = None

    def __post_init__(self):
        if self.category not in RULE_CATEGORIES:
            raise ValueError(f"Invalid rule category: {self.category}")
        if self.importance not in IMPORTANCE_LEVELS:
            raise ValueError(f"Invalid rule importance: {self.importance}")


@dataclass
class DailyEntry:
    """One day's discipline check-in."""
    date: date
    rating: int
    rules_followed: list[str] = field(default_factory=list)
    rules_broken: list[str] = field(default_factory=list)
    mood: str = ""
    notes: str = ""
    learnings: str = ""
    id: Optional[str] = None

    def __post_init__(self):
        if not 1 <= self.rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {self.rating}")

    @classmethod
    def from_record(cls, record: dict) -> "DailyEntry":
        return cls(
            id=record.get("id"),
            date=date.fromisoformat(str(record["date"])[:10]),
            rating=int(record["rating"]),
            rules_followed=list(record.get("rules_followed") or []),
            rules_broken=list(record.get("rules_broken") or []),
            mood=record.get("mood") or "",
            notes=record.get("notes") or "",
            learnings=record.get("learnings") or "",
        )

    def to_record(self) -> dict:
        record = asdict(self)
        record["date"] = self.date.isoformat()
        if record["id"] is None:
            del record["id"]
        return record


@dataclass
class DisciplineStats:
    """Aggregates over daily entries."""
    average_rating: float
    compliance_rate: float
    total_entries: int
    most_followed_rules: list[dict]
    most_broken_rules: list[dict]
    weekly_trend: list[dict]
    mood_distribution: dict[str, int]

    def to_dict(self) -> dict:
        return asdict(self)


def _top_rules(counts: Counter) -> list[dict]:
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [{"rule": rule, "count": count} for rule, count in ranked[:TOP_RULES]]


def week_key(day: date) -> str:
    """ISO week label, e.g. '2024-W09'."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def compute_discipline_stats(entries: list[DailyEntry]) -> Optional[DisciplineStats]:
    """Compute discipline statistics.

    Args:
        entries: Daily entries in any order.

    Returns:
        DisciplineStats, or None when there are no entries.
    """
    if not entries:
        return None

    followed = Counter(rule for entry in entries for rule in entry.rules_followed)
    broken = Counter(rule for entry in entries for rule in entry.rules_broken)

    total_followed = sum(followed.values())
    total_broken = sum(broken.values())
    total_rules = total_followed + total_broken
    compliance = total_followed / total_rules * 100 if total_rules else 0.0

    weekly = defaultdict(list)
    for entry in entries:
        weekly[week_key(entry.date)].append(entry.rating)
    trend = [
        {"week": week, "average_rating": round(sum(ratings) / len(ratings), 2)}
        for week, ratings in sorted(weekly.items())
    ][-TREND_WEEKS:]

    moods = Counter(entry.mood for entry in entries if entry.mood)

    return DisciplineStats(
        average_rating=round(sum(entry.rating for entry in entries) / len(entries), 2),
        compliance_rate=round(compliance, 2),
        total_entries=len(entries),
        most_followed_rules=_top_rules(followed),
        most_broken_rules=_top_rules(broken),
        weekly_trend=trend,
        mood_distribution=dict(moods),
    )


@dataclass
class Goal:
    title: str
    description: str = ""
    target_date: Optional[date] = None
    progress: float = 0.0
    status: str = "not_started"
    metrics: list[dict] = field(default_factory=list)
    id: Optional[str] = None


def goal_progress(metrics: list[dict]) -> float:
    """Average completion of goal metrics, capped per metric at 100%.

    Args:
        metrics: List of {key, value, target} dicts.

    Returns:
        Progress in percent (0-100).
    """
    ratios = []
    for metric in metrics:
        target = metric.get("target") or 0
        if target <= 0:
            continue
        ratios.append(min(max(metric.get("value", 0) / target, 0), 1))

    if not ratios:
        return 0.0
    return round(sum(ratios) / len(ratios) * 100, 1)


def goal_status(progress: float) -> str:
    if progress <= 0:
        return "not_started"
    if progress >= 100:
        return "completed"
    return "in_progress"


@dataclass
class Habit:
    name: str
    icon: str = ""
    goal: int = 0  # completions targeted per month
    id: Optional[str] = None


def _habit_rows(verifications: list[dict], habit_id: str) -> list[dict]:
    return [v for v in verifications if v.get("habit_id") == habit_id]


def habit_completion_rate(verifications: list[dict], habit_id: str) -> int:
    """Percent of tracked days on which the habit was completed."""
    rows = _habit_rows(verifications, habit_id)
    if not rows:
        return 0
    completed = sum(1 for row in rows if row.get("completed"))
    return round(completed / len(rows) * 100)


def habit_summary(habit: Habit, verifications: list[dict]) -> dict:
    """Done / remaining / progress figures for one habit."""
    done = sum(1 for row in _habit_rows(verifications, habit.id) if row.get("completed"))
    return {
        "habit": habit.name,
        "goal": habit.goal,
        "done": done,
        "remaining": max(habit.goal - done, 0),
        "progress": habit_completion_rate(verifications, habit.id),
    }


def current_streak(verifications: list[dict], habit_id: str, as_of: date) -> int:
    """Count consecutive completed days ending at as_of."""
    completed_days = {
        str(row["date"])[:10]
        for row in _habit_rows(verifications, habit_id)
        if row.get("completed")
    }

    streak = 0
    day = as_of
    while day.isoformat() in completed_days:
        streak += 1
        day -= timedelta(days=1)
    return streak


class DisciplineTracker:
    """Persists rules, daily entries, goals and habits for one user."""

    def __init__(self, store: JournalStore, user_id: str):
        self.store = store
        self.user_id = user_id

    def _owned(self) -> dict:
        return {"user_id": self.user_id}

    # Rules

    def add_rule(self, rule: TradingRule) -> TradingRule:
        record = {k: v for k, v in asdict(rule).items() if k != "id"}
        stored = self.store.insert(RULES_TABLE, [{**record, **self._owned()}])[0]
        logger.info(f"Added rule '{rule.name}'")
        return TradingRule(
            id=stored["id"],
            name=stored["name"],
            category=stored["category"],
            description=stored.get("description") or "",
            importance=stored["importance"],
        )

    def list_rules(self) -> list[TradingRule]:
        rows = self.store.select(RULES_TABLE, self._owned(), order_by="name")
        return [
            TradingRule(
                id=row["id"],
                name=row["name"],
                category=row["category"],
                description=row.get("description") or "",
                importance=row["importance"],
            )
            for row in rows
        ]

    def delete_rule(self, rule_id: str) -> bool:
        return self.store.delete(RULES_TABLE, row_id=rule_id, filters=self._owned()) > 0

    # Daily entries

    def add_entry(self, entry: DailyEntry) -> DailyEntry:
        stored = self.store.insert(ENTRIES_TABLE, [{**entry.to_record(), **self._owned()}])[0]
        logger.info(f"Discipline entry for {entry.date} rated {entry.rating}/5")
        return DailyEntry.from_record(stored)

    def list_entries(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[DailyEntry]:
        """Daily entries newest first, optionally bounded by date."""
        rows = self.store.select(ENTRIES_TABLE, self._owned(), order_by="date", descending=True)

        entries = []
        for row in rows:
            try:
                entry = DailyEntry.from_record(row)
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable discipline entry {row.get('id')}: {e}")
                continue
            if start and entry.date < start:
                continue
            if end and entry.date > end:
                continue
            entries.append(entry)
        return entries

    def stats(self) -> Optional[DisciplineStats]:
        return compute_discipline_stats(self.list_entries())

    # Goals

    def add_goal(self, goal: Goal) -> dict:
        record = asdict(goal)
        record.pop("id")
        record["progress"] = goal_progress(goal.metrics)
        record["status"] = goal_status(record["progress"])
        if goal.target_date:
            record["target_date"] = goal.target_date.isoformat()
        return self.store.insert(GOALS_TABLE, [{**record, **self._owned()}])[0]

    def update_goal_metrics(self, goal_id: str, metrics: list[dict]) -> dict:
        """Replace a goal's metrics and recompute progress and status."""
        progress = goal_progress(metrics)
        return self.store.update(GOALS_TABLE, goal_id, {
            "metrics": metrics,
            "progress": progress,
            "status": goal_status(progress),
        })

    def list_goals(self) -> list[dict]:
        return self.store.select(GOALS_TABLE, self._owned(), order_by="created_at", descending=True)

    # Habits

    def add_habit(self, habit: Habit) -> Habit:
        record = {k: v for k, v in asdict(habit).items() if k != "id"}
        stored = self.store.insert(HABITS_TABLE, [{**record, **self._owned()}])[0]
        return Habit(id=stored["id"], name=stored["name"], icon=stored.get("icon") or "", goal=stored.get("goal") or 0)

    def list_habits(self) -> list[Habit]:
        rows = self.store.select(HABITS_TABLE, self._owned(), order_by="name")
        return [
            Habit(id=row["id"], name=row["name"], icon=row.get("icon") or "", goal=row.get("goal") or 0)
            for row in rows
        ]

    def set_habit_status(self, habit_id: str, day: date, completed: bool) -> dict:
        """Record whether a habit was completed on a day (one row per habit/day)."""
        filters = {**self._owned(), "habit_id": habit_id, "date": day.isoformat()}
        existing = self.store.select(VERIFICATIONS_TABLE, filters)
        if existing:
            return self.store.update(VERIFICATIONS_TABLE, existing[0]["id"], {"completed": completed})
        return self.store.insert(VERIFICATIONS_TABLE, [{**filters, "completed": completed}])[0]

    def list_verifications(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict]:
        rows = self.store.select(VERIFICATIONS_TABLE, self._owned(), order_by="date")
        return [
            row for row in rows
            if (start is None or row["date"] >= start.isoformat())
            and (end is None or row["date"] <= end.isoformat())
        ]

    def habit_report(self, as_of: date) -> list[dict]:
        """Month-to-date summary per habit, with current streaks."""
        history = self.list_verifications(end=as_of)
        month_start = as_of.replace(day=1).isoformat()
        this_month = [v for v in history if v["date"] >= month_start]

        report = []
        for habit in self.list_habits():
            summary = habit_summary(habit, this_month)
            # Streaks may run back past the first of the month
            summary["streak"] = current_streak(history, habit.id, as_of)
            report.append(summary)
        return report

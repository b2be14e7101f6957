"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the pure tree helpers. Services perform validation, execute domain
logic and persist documents via repositories. Every service takes the
`DocumentStore` it works on plus an optional clock so tests can pin the
current time.
"""

import json
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set

import pydantic

from . import repositories
from .config import settings
from .errors import ConflictError, NotFoundError, PartialFailure, ValidationError
from .schemas import (
    ACTIVITY_TYPES, ActivityLog, AddTermPayload, CategorySummary, DailySummary,
    ReviewPayload, StudyPayload, activity_payload_adapter,
)
from .store import DocumentStore
from .tree import CategoryGraph, breadcrumb, normalize_category_key
from .utils.default_categories import DEFAULT_CATEGORIES, DEFAULT_PARENTS

category_logger = logging.getLogger("termbook.categories")
activity_logger = logging.getLogger("termbook.activity")

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _event(logger: logging.Logger, name: str, **fields: Any) -> None:
    logger.info("%s %s", name, json.dumps(fields, ensure_ascii=True, default=str))


@dataclass
class FavoriteResult:
    is_favorite: bool
    updated_ids: List[str]

    @property
    def updated_count(self) -> int:
        return len(self.updated_ids)


class CategoryService:
    """Manage the category hierarchy.

    Tree questions (descendants, paths, cycles) are answered from a fresh
    snapshot of the categories collection taken per call.
    """
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        self.store = store
        self.repo = repositories.CategoryRepository(store)
        self.term_repo = repositories.TermRepository(store)
        self.clock = clock or utcnow

    def snapshot(self) -> CategoryGraph:
        return CategoryGraph(self.repo.list_all())

    def get(self, key: str) -> Dict[str, Any]:
        category = self.repo.get(key)
        if not category:
            raise NotFoundError(f"category not found: {key}")
        return category

    def create_category(self, name: str, icon: str = "📝", color: str = "#6c757d",
                        parent_id: Optional[str] = None, display_order: int = 0,
                        is_favorite: bool = False) -> str:
        """Create a category and return its key.

        The key is derived from the name. Creation is refused when the key
        or the case-insensitive name is already taken, or when `parent_id`
        does not exist.
        """
        if name is None or not name.strip():
            raise ValidationError("category name is required")
        name = name.strip()
        key = normalize_category_key(name)
        categories = self.repo.list_all()
        self._ensure_unique(categories, name, key=key)
        if parent_id is not None:
            graph = CategoryGraph(categories)
            if parent_id not in graph:
                raise NotFoundError(f"parent category not found: {parent_id}")
            # a new key cannot already be an ancestor, but moves share this check
            if graph.would_create_cycle(key, parent_id):
                raise ConflictError(f"category {key} cannot be placed under {parent_id}")
        now = self.clock().isoformat()
        self.repo.create(key, {
            "category_key": key,
            "category_name": name,
            "category_icon": icon or "📝",
            "category_color": color or "#6c757d",
            "parent_id": parent_id,
            "is_favorite": bool(is_favorite),
            "display_order": display_order,
            "created_at": now,
            "updated_at": now,
        })
        _event(category_logger, "category_created", key=key, parent_id=parent_id)
        return key

    def _ensure_unique(self, categories: List[Dict[str, Any]], name: str,
                       key: Optional[str] = None, exclude: Optional[str] = None) -> None:
        folded = name.casefold()
        for cat in categories:
            if cat["id"] == exclude:
                continue
            if key is not None and cat["id"] == key:
                raise ConflictError(f"category already exists: {key}")
            if (cat.get("category_name") or "").casefold() == folded:
                raise ConflictError(f"category name already exists: {name}")

    def update_category(self, key: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Rename, re-icon, recolor, reorder or reparent a category.

        Only keys present in `changes` are applied. The document key never
        changes, even on rename.
        """
        categories = self.repo.list_all()
        graph = CategoryGraph(categories)
        graph.node(key)
        fields: Dict[str, Any] = {}
        if "category_name" in changes and changes["category_name"] is not None:
            name = changes["category_name"]
            if not name.strip():
                raise ValidationError("category name is required")
            self._ensure_unique(categories, name.strip(), exclude=key)
            fields["category_name"] = name.strip()
        for attr in ("category_icon", "category_color", "display_order"):
            if changes.get(attr) is not None:
                fields[attr] = changes[attr]
        if "parent_id" in changes:
            parent_id = changes["parent_id"]
            if parent_id is not None and parent_id not in graph:
                raise NotFoundError(f"parent category not found: {parent_id}")
            if graph.would_create_cycle(key, parent_id):
                raise ConflictError(f"moving {key} under {parent_id} would create a cycle")
            fields["parent_id"] = parent_id
        fields["updated_at"] = self.clock().isoformat()
        self.repo.update(key, fields)
        _event(category_logger, "category_updated", key=key, fields=sorted(fields))
        return self.get(key)

    def delete_category(self, key: str) -> List[str]:
        """Delete a category, moving its direct children up one level.

        Refused while terms are filed under the category. Returns the keys
        of the reparented children.
        """
        graph = self.snapshot()
        category = graph.node(key)
        in_use = self.term_repo.count_for_category(key)
        if in_use:
            raise ConflictError(f"category {key} is used by {in_use} terms and cannot be deleted")
        children = graph.children_of(key)
        new_parent = category.get("parent_id")
        if new_parent is not None and new_parent not in graph:
            new_parent = None
        self.repo.delete_and_reparent(key, children, new_parent, self.clock().isoformat())
        _event(category_logger, "category_deleted", key=key, reparented=children, new_parent=new_parent)
        return children

    def get_all_descendants(self, key: str) -> Set[str]:
        return self.snapshot().descendants(key)

    def resolve_path(self, key: str) -> List[Dict[str, Any]]:
        return list(self.snapshot().path(key))

    def breadcrumb(self, key: str) -> str:
        return breadcrumb(self.resolve_path(key))

    def propagate_favorite(self, key: str, value: Optional[bool] = None) -> FavoriteResult:
        """Set `is_favorite` on `key` and all of its descendants in one batch.

        `value=None` flips the current state of `key`. A failed commit
        leaves every category untouched.
        """
        graph = self.snapshot()
        target = graph.node(key)
        new_value = (not target.get("is_favorite", False)) if value is None else bool(value)
        ids = [key] + [cid for cid, _depth in graph.walk(key, graph.children_of)]
        self.repo.set_favorite(ids, new_value, self.clock().isoformat())
        _event(category_logger, "favorite_propagated", key=key, is_favorite=new_value, updated=len(ids))
        return FavoriteResult(is_favorite=new_value, updated_ids=ids)

    def toggle_favorite(self, key: str, value: Optional[bool] = None) -> int:
        """Propagate a favorite state and return how many categories were written."""
        return self.propagate_favorite(key, value).updated_count

    def list_categories(self) -> List[Dict[str, Any]]:
        """Every category with breadcrumb, path and child count.

        Ordered favorites first, then by the parent's display order, the
        category's own display order and creation time.
        """
        graph = self.snapshot()
        out = []
        for cat in graph.nodes.values():
            path = graph.path(cat["id"])
            parent = graph.nodes.get(cat.get("parent_id")) if cat.get("parent_id") else None
            out.append({
                **cat,
                "parent_name": parent.get("category_name") if parent else None,
                "child_count": len(graph.children_of(cat["id"])),
                "breadcrumb": breadcrumb(path),
                "path": [
                    {"id": p["id"], "name": p.get("category_name"), "icon": p.get("category_icon"),
                     "color": p.get("category_color")}
                    for p in path
                ],
            })

        def sort_key(c):
            parent = graph.nodes.get(c.get("parent_id")) if c.get("parent_id") else None
            own_order = c.get("display_order") or 0
            group_order = (parent.get("display_order") or 0) if parent else own_order
            return (not c.get("is_favorite", False), group_order, own_order, c.get("created_at") or "")

        out.sort(key=sort_key)
        return out

    def seed_default_categories(self) -> int:
        """Write the default category tree when no categories exist yet.

        Returns the number of categories created (0 if any already exist).
        """
        if self.repo.list_all():
            return 0
        now = self.clock().isoformat()
        batch = self.store.batch()
        for order, cat in enumerate(DEFAULT_CATEGORIES, start=1):
            batch.set(repositories.CATEGORIES, cat["key"], {
                "category_key": cat["key"],
                "category_name": cat["name"],
                "category_icon": cat["icon"],
                "category_color": cat["color"],
                "parent_id": DEFAULT_PARENTS.get(cat["key"]),
                "is_favorite": False,
                "display_order": order,
                "created_at": now,
                "updated_at": now,
            })
        created = batch.commit()
        _event(category_logger, "categories_seeded", count=created)
        return created


class TermService:
    """CRUD, search and favorites for study terms."""
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None):
        self.repo = repositories.TermRepository(store)
        self.category_repo = repositories.CategoryRepository(store)
        self.clock = clock or utcnow

    def _validate(self, term: Optional[str], meaning: Optional[str], category: Optional[str]) -> None:
        if term is not None and not term.strip():
            raise ValidationError("term is required")
        if meaning is not None and not meaning.strip():
            raise ValidationError("meaning is required")
        if category is not None and not self.category_repo.get(category):
            raise NotFoundError(f"category not found: {category}")

    def create_term(self, term: str, meaning: str, category: str, example: str = "",
                    image_url: Optional[str] = None) -> str:
        """Create a term and return its id."""
        if term is None or meaning is None or category is None:
            raise ValidationError("term, meaning and category are required")
        self._validate(term, meaning, category)
        now = self.clock().isoformat()
        term_id = self.repo.create({
            "term": term.strip(),
            "meaning": meaning.strip(),
            "example": example or "",
            "category": category,
            "is_favorite": False,
            "image_url": image_url,
            "created_at": now,
            "updated_at": now,
        })
        return term_id

    def get_term(self, term_id: str) -> Dict[str, Any]:
        term = self.repo.get(term_id)
        if not term:
            raise NotFoundError(f"term not found: {term_id}")
        return term

    def update_term(self, term_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        self.get_term(term_id)
        fields = {k: v for k, v in changes.items()
                  if k in ("term", "meaning", "example", "category", "image_url") and v is not None}
        self._validate(fields.get("term"), fields.get("meaning"), fields.get("category"))
        for attr in ("term", "meaning"):
            if attr in fields:
                fields[attr] = fields[attr].strip()
        fields["updated_at"] = self.clock().isoformat()
        self.repo.update(term_id, fields)
        return self.get_term(term_id)

    def delete_term(self, term_id: str) -> None:
        self.get_term(term_id)
        self.repo.delete(term_id)

    def toggle_term_favorite(self, term_id: str) -> bool:
        term = self.get_term(term_id)
        new_value = not term.get("is_favorite", False)
        self.repo.update(term_id, {"is_favorite": new_value, "updated_at": self.clock().isoformat()})
        return new_value

    def list_terms(self, category: str = "all") -> List[Dict[str, Any]]:
        if category == "all":
            return self.repo.list_all()
        return self.repo.list_by_category(category)

    def search_terms(self, query: str, category: str = "all") -> List[Dict[str, Any]]:
        """Case-insensitive substring search over term, meaning and example."""
        terms = self.list_terms(category)
        if not query:
            return terms
        needle = query.lower()
        return [
            t for t in terms
            if needle in (t.get("term") or "").lower()
            or needle in (t.get("meaning") or "").lower()
            or needle in (t.get("example") or "").lower()
        ]


def correct_rate(correct: int, incorrect: int) -> int:
    """Percentage of correct reviews, rounded half up; 0 when none."""
    total = correct + incorrect
    if total <= 0:
        return 0
    return math.floor(100 * correct / total + 0.5)


def recompute_totals(summary: DailySummary) -> DailySummary:
    """Derive the overall totals of `summary` from its per-category map.

    `correctRate` pools the correct/incorrect counts of every category.
    """
    cats = summary.byCategory.values()
    summary.totalStudyTime = sum(c.studyTime for c in cats)
    summary.termsAdded = sum(c.termsAdded for c in cats)
    summary.termsReviewed = sum(c.termsReviewed for c in cats)
    summary.correctRate = correct_rate(
        sum(c.correctCount for c in cats), sum(c.incorrectCount for c in cats)
    )
    return summary


def _parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError(f"invalid date, expected YYYY-MM-DD: {value!r}") from None


class ActivityService:
    """Record activity events and maintain per-day rollups."""
    def __init__(self, store: DocumentStore, clock: Optional[Clock] = None,
                 max_study_minutes: Optional[int] = None):
        self.logs = repositories.ActivityLogRepository(store)
        self.summaries = repositories.DailySummaryRepository(store)
        self.clock = clock or utcnow
        self.max_study_minutes = max_study_minutes or settings.ACTIVITY_MAX_STUDY_MINUTES

    def parse_payload(self, activity_type: str, data: Optional[Dict[str, Any]] = None):
        """Validate `data` against the payload shape for `activity_type`."""
        if activity_type not in ACTIVITY_TYPES:
            raise ValidationError(f"unknown activity type: {activity_type!r}")
        try:
            payload = activity_payload_adapter.validate_python({**(data or {}), "type": activity_type})
        except pydantic.ValidationError as exc:
            raise ValidationError(f"invalid {activity_type} payload: {exc.errors()}") from exc
        if isinstance(payload, StudyPayload) and payload.duration > self.max_study_minutes:
            raise ValidationError(f"study duration exceeds {self.max_study_minutes} minutes")
        return payload

    def log_activity(self, activity_type: str, category: str, data: Optional[Dict[str, Any]] = None) -> str:
        """Append an activity log and fold it into the day's summary.

        Returns the new log id. The log and the summary are separate
        writes: if the summary update fails after the log landed,
        `PartialFailure` is raised carrying the log id.
        """
        payload = self.parse_payload(activity_type, data)
        if not category or not str(category).strip():
            raise ValidationError("activity category is required")
        now = self.clock()
        day = now.astimezone(timezone.utc).date().isoformat()
        stamp = now.isoformat()
        log_id = self.logs.add({
            "type": activity_type,
            "date": day,
            "timestamp": stamp,
            "category": category,
            "data": payload.model_dump(exclude={"type"}),
            "createdAt": stamp,
        })
        try:
            self.update_daily_summary(day, activity_type, category, payload)
        except Exception as exc:
            activity_logger.error("summary_update_failed %s", json.dumps(
                {"log_id": log_id, "date": day, "error": str(exc)}, ensure_ascii=True))
            raise PartialFailure(log_id, exc) from exc
        _event(activity_logger, "activity_logged", id=log_id, type=activity_type, date=day, category=category)
        return log_id

    def update_daily_summary(self, day: str, activity_type: str, category: str, payload) -> DailySummary:
        """Apply one activity delta to the summary for `day`.

        The read-modify-write runs in a store transaction, so concurrent
        updates of the same day are serialized instead of overwriting
        each other.
        """
        if not isinstance(payload, (AddTermPayload, StudyPayload, ReviewPayload)):
            payload = self.parse_payload(activity_type, payload)
        stamp = self.clock().isoformat()

        def mutate(current: Optional[Dict[str, Any]]) -> Dict[str, Any]:
            if current:
                summary = DailySummary.model_validate(current)
            else:
                summary = DailySummary(date=day, createdAt=stamp)
            entry = summary.byCategory.get(category) or CategorySummary()
            if isinstance(payload, AddTermPayload):
                entry.termsAdded += 1
            elif isinstance(payload, StudyPayload):
                entry.studyTime += payload.duration
            elif isinstance(payload, ReviewPayload):
                entry.termsReviewed += 1
                if payload.isCorrect:
                    entry.correctCount += 1
                else:
                    entry.incorrectCount += 1
            summary.byCategory[category] = entry
            recompute_totals(summary)
            summary.updatedAt = stamp
            return summary.model_dump()

        return DailySummary.model_validate(self.summaries.apply(day, mutate))

    def fetch_logs(self, start_date: str, end_date: str) -> List[ActivityLog]:
        """Logs between two dates inclusive, newest date and timestamp first."""
        if _parse_day(start_date) > _parse_day(end_date):
            raise ValidationError("start date must not be after end date")
        return [ActivityLog.model_validate(r) for r in self.logs.list_between(start_date, end_date)]

    def fetch_logs_by_date(self, day: str) -> List[ActivityLog]:
        _parse_day(day)
        return [ActivityLog.model_validate(r) for r in self.logs.list_for_date(day)]

    def fetch_daily_summary(self, day: str) -> Optional[DailySummary]:
        _parse_day(day)
        record = self.summaries.get(day)
        return DailySummary.model_validate(record) if record else None

    def fetch_summaries(self, start_date: str, end_date: str) -> List[DailySummary]:
        if _parse_day(start_date) > _parse_day(end_date):
            raise ValidationError("start date must not be after end date")
        return [DailySummary.model_validate(r) for r in self.summaries.list_between(start_date, end_date)]

    def _summaries_in(self, start_date: Optional[str], end_date: Optional[str]) -> List[DailySummary]:
        if start_date is not None and end_date is not None:
            if _parse_day(start_date) > _parse_day(end_date):
                raise ValidationError("start date must not be after end date")
        else:
            for value in (start_date, end_date):
                if value is not None:
                    _parse_day(value)
        return [DailySummary.model_validate(r) for r in self.summaries.list_between(start_date, end_date)]

    def study_time_by_category(self, start_date: Optional[str] = None,
                               end_date: Optional[str] = None) -> Dict[str, int]:
        """Minutes studied per category; omitted bounds mean all recorded days."""
        totals: Dict[str, int] = {}
        for summary in self._summaries_in(start_date, end_date):
            for category, entry in summary.byCategory.items():
                if entry.studyTime:
                    totals[category] = totals.get(category, 0) + entry.studyTime
        return totals

    def study_time_total(self, start_date: Optional[str] = None, end_date: Optional[str] = None,
                         category: Optional[str] = None) -> int:
        """Minutes studied in the range, optionally for one category only."""
        if category is None:
            return sum(s.totalStudyTime for s in self._summaries_in(start_date, end_date))
        return self.study_time_by_category(start_date, end_date).get(category, 0)

    def recent_study_time(self, days: int, today: Optional[date] = None) -> int:
        """Minutes studied from `days` days ago through today, both ends included."""
        if days < 0:
            raise ValidationError("days must not be negative")
        today = today or self.clock().astimezone(timezone.utc).date()
        start = today - timedelta(days=days)
        return self.study_time_total(start.isoformat(), today.isoformat())

    def weekly_study_time(self, today: Optional[date] = None) -> int:
        return self.recent_study_time(7, today)

    def monthly_study_time(self, today: Optional[date] = None) -> int:
        return self.recent_study_time(30, today)

    def study_streak(self, today: Optional[date] = None) -> int:
        """Number of consecutive days, ending today, with recorded activity."""
        today = today or self.clock().astimezone(timezone.utc).date()
        days = set(self.summaries.list_dates())
        streak = 0
        current = today
        while current.isoformat() in days:
            streak += 1
            current -= timedelta(days=1)
        return streak

"""Repository classes encapsulating document store operations.

Each repository is small and focused on a single collection
(categories, terms, activity logs, daily summaries). Repositories return
plain record dicts with the document key under `id`.
"""

from typing import Any, Callable, Dict, Iterable, List, Optional

from .store import DocumentStore

CATEGORIES = "categories"
TERMS = "terms"
ACTIVITY_LOGS = "activityLogs"
DAILY_SUMMARIES = "dailySummaries"


class CategoryRepository:
    """CRUD and batch operations for category documents."""
    def __init__(self, store: DocumentStore):
        self.store = store

    def list_all(self) -> List[Dict[str, Any]]:
        """Return a snapshot of every category (unordered)."""
        return self.store.query(CATEGORIES)

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Return a category by key or `None` if not found."""
        return self.store.get(CATEGORIES, key)

    def create(self, key: str, fields: Dict[str, Any]) -> None:
        self.store.set(CATEGORIES, key, fields)

    def update(self, key: str, fields: Dict[str, Any]) -> None:
        """Merge `fields` into an existing category."""
        self.store.update(CATEGORIES, key, fields)

    def set_favorite(self, keys: Iterable[str], value: bool, updated_at: str) -> int:
        """Write `is_favorite = value` on every key in one atomic batch.

        Returns the number of documents written.
        """
        batch = self.store.batch()
        for key in keys:
            batch.update(CATEGORIES, key, {"is_favorite": value, "updated_at": updated_at})
        return batch.commit()

    def delete_and_reparent(self, key: str, child_keys: Iterable[str],
                            new_parent: Optional[str], updated_at: str) -> None:
        """Delete `key` and move its direct children under `new_parent` atomically."""
        batch = self.store.batch()
        for child in child_keys:
            batch.update(CATEGORIES, child, {"parent_id": new_parent, "updated_at": updated_at})
        batch.delete(CATEGORIES, key)
        batch.commit()


class TermRepository:
    """CRUD operations for term documents."""
    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, fields: Dict[str, Any]) -> str:
        """Persist a new term and return its generated id."""
        return self.store.add(TERMS, fields)

    def get(self, term_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(TERMS, term_id)

    def update(self, term_id: str, fields: Dict[str, Any]) -> None:
        self.store.update(TERMS, term_id, fields)

    def delete(self, term_id: str) -> None:
        self.store.delete(TERMS, term_id)

    def list_all(self) -> List[Dict[str, Any]]:
        """Return every term, newest first."""
        return self.store.query(TERMS, order_by=[("created_at", "desc")])

    def list_by_category(self, category: str) -> List[Dict[str, Any]]:
        return self.store.query(TERMS, [("category", "==", category)], [("created_at", "desc")])

    def count_for_category(self, category: str) -> int:
        return len(self.store.query(TERMS, [("category", "==", category)]))


class ActivityLogRepository:
    """Append-only access to activity logs.

    There is deliberately no update or delete: logs are immutable once
    written.
    """
    def __init__(self, store: DocumentStore):
        self.store = store

    def add(self, fields: Dict[str, Any]) -> str:
        return self.store.add(ACTIVITY_LOGS, fields)

    def get(self, log_id: str) -> Optional[Dict[str, Any]]:
        return self.store.get(ACTIVITY_LOGS, log_id)

    def list_between(self, start_date: str, end_date: str) -> List[Dict[str, Any]]:
        """Logs with `start_date <= date <= end_date`, newest date then newest timestamp first."""
        return self.store.query(
            ACTIVITY_LOGS,
            [("date", ">=", start_date), ("date", "<=", end_date)],
            [("date", "desc"), ("timestamp", "desc")],
        )

    def list_for_date(self, date: str) -> List[Dict[str, Any]]:
        return self.store.query(ACTIVITY_LOGS, [("date", "==", date)], [("timestamp", "desc")])


class DailySummaryRepository:
    """Point reads and read-modify-write updates of daily summaries."""
    def __init__(self, store: DocumentStore):
        self.store = store

    def get(self, date: str) -> Optional[Dict[str, Any]]:
        return self.store.get(DAILY_SUMMARIES, date)

    def list_between(self, start_date: Optional[str] = None,
                     end_date: Optional[str] = None) -> List[Dict[str, Any]]:
        """Summaries in date order; a missing bound leaves that side open."""
        filters = []
        if start_date is not None:
            filters.append(("date", ">=", start_date))
        if end_date is not None:
            filters.append(("date", "<=", end_date))
        return self.store.query(DAILY_SUMMARIES, filters, [("date", "asc")])

    def list_dates(self) -> List[str]:
        return [s["date"] for s in self.store.query(DAILY_SUMMARIES, order_by=[("date", "desc")])]

    def apply(self, date: str, mutate: Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]) -> Dict[str, Any]:
        """Replace the summary for `date` with `mutate(current)` in one transaction.

        `current` is `None` when no summary exists yet. The whole document
        is written back; concurrent callers are serialized by the store.
        """
        with self.store.transaction() as txn:
            updated = mutate(txn.get(DAILY_SUMMARIES, date))
            txn.set(DAILY_SUMMARIES, date, updated)
        return updated

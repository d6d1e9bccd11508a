"""
Paginated history of past optimization runs for the logged-in user.

Entries are created by the optimizer itself when an authenticated request
succeeds; this module only lists, loads and deletes them. The server returns
entries newest first and that order is kept as-is.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from api_client import ApiClient, MalformedResponseError, ServiceAPIError, UnauthenticatedError
from optimizer_client import Solution
from session_manager import SessionManager
from stock_model import Board, Cut, Problem

logger = logging.getLogger(__name__)

HISTORY_PATH = "/optimizations"
DEFAULT_PAGE_SIZE = 10


class HistoryError(ServiceAPIError):
    """History endpoint answered with an error."""
    pass


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return default


@dataclass
class HistorySummary:
    """One row of a history listing."""

    id: str
    project_name: Optional[str] = None
    total_cost: Optional[float] = None
    created_at: Optional[str] = None

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "HistorySummary":
        entry_id = _pick(data, "id", "_id")
        if entry_id is None:
            raise MalformedResponseError(f"History entry has no id: {data!r}")
        cost = _pick(data, "totalCost", "total_cost")
        try:
            total_cost = float(cost) if cost is not None else None
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(
                f"History entry {entry_id} has invalid total cost: {cost!r}"
            ) from e
        return cls(
            id=str(entry_id),
            project_name=_pick(data, "projectName", "project_name"),
            total_cost=total_cost,
            created_at=_pick(data, "createdAt", "created_at"),
        )


@dataclass
class HistoryEntry:
    """A stored Problem + Solution pair. Never modified after creation."""

    id: str
    project_name: Optional[str]
    cuts: List[Cut]
    boards: List[Board]
    solution: Optional[Solution]
    total_cost: Optional[float]
    created_at: Optional[str]

    @classmethod
    def from_payload(cls, data: Any) -> "HistoryEntry":
        if not isinstance(data, dict):
            raise MalformedResponseError("History entry is not a JSON object")
        summary = HistorySummary.from_payload(data)
        try:
            problem = Problem.from_payload(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise MalformedResponseError(
                f"History entry {summary.id} has invalid cuts or boards: {e}"
            ) from e
        raw_solution = _pick(data, "solution", "result")
        solution = Solution.from_payload(raw_solution) if raw_solution is not None else None
        total_cost = summary.total_cost
        if total_cost is None and solution is not None:
            total_cost = solution.total_cost
        return cls(
            id=summary.id,
            project_name=summary.project_name,
            cuts=problem.cuts,
            boards=problem.boards,
            solution=solution,
            total_cost=total_cost,
            created_at=summary.created_at,
        )

    def to_problem(self) -> Problem:
        """A fresh, independent Problem holding this entry's cuts and boards."""
        return Problem(
            cuts=list(self.cuts),
            boards=list(self.boards),
            project_name=self.project_name,
        ).copy()


@dataclass
class HistoryPage:
    entries: List[HistorySummary] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    @property
    def page_count(self) -> int:
        return max(1, math.ceil(self.total / self.page_size))

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.page_count


class HistoryManager:
    """List, load and delete history entries of the current identity.

    Listing calls are numbered; only the most recently issued one may
    replace ``current_page``, so a slow response for a page the user has
    already navigated away from is dropped.
    """

    def __init__(self, api: ApiClient, session: SessionManager,
                 page_size: int = DEFAULT_PAGE_SIZE):
        self.api = api
        self.session = session
        self.page_size = page_size
        self.current_page: Optional[HistoryPage] = None
        self._lock = threading.Lock()
        self._latest_request = 0

    def list(self, page: int = 1, page_size: Optional[int] = None) -> Optional[HistoryPage]:
        """Fetch one page. Returns None if a newer listing superseded this one."""
        token = self._token()
        page = max(1, int(page))
        limit = page_size or self.page_size
        with self._lock:
            self._latest_request += 1
            request_id = self._latest_request

        data = self._call("GET", HISTORY_PATH, token,
                          params={"page": page, "limit": limit})
        if not isinstance(data, dict):
            raise MalformedResponseError("History listing is not a JSON object")
        rows = data.get("optimizations") or []
        if not isinstance(rows, list):
            raise MalformedResponseError("History listing has no list of optimizations")
        try:
            total = int(data.get("total", len(rows)))
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"Invalid history total: {e}") from e
        result = HistoryPage(
            entries=[HistorySummary.from_payload(r) for r in rows if isinstance(r, dict)],
            total=total,
            page=page,
            page_size=limit,
        )

        with self._lock:
            if request_id != self._latest_request:
                logger.warning("Dropping stale history response for page %d", page)
                return None
            self.current_page = result
        return result

    def load_one(self, entry_id: str) -> HistoryEntry:
        token = self._token()
        data = self._call("GET", f"{HISTORY_PATH}/{entry_id}", token)
        if isinstance(data, dict) and isinstance(data.get("optimization"), dict):
            data = data["optimization"]
        return HistoryEntry.from_payload(data)

    def delete_one(self, entry_id: str) -> Optional[HistoryPage]:
        """Delete an entry and re-fetch the page being viewed."""
        token = self._token()
        self._call("DELETE", f"{HISTORY_PATH}/{entry_id}", token)
        logger.info("Deleted history entry %s", entry_id)
        page = self.current_page.page if self.current_page else 1
        refreshed = self.list(page)
        if refreshed is not None and not refreshed.entries and page > 1:
            refreshed = self.list(min(page - 1, refreshed.page_count))
        return refreshed

    def close(self) -> None:
        with self._lock:
            self._latest_request += 1
            self.current_page = None

    def _token(self) -> str:
        credential = self.session.credential
        if not self.session.is_authenticated or credential is None:
            raise UnauthenticatedError("Log in to view your optimization history")
        return credential.access_token

    def _call(self, method: str, path: str, token: str, **kwargs) -> Any:
        try:
            return self.api.request_json(method, path, access_token=token, **kwargs)
        except UnauthenticatedError:
            raise
        except ServiceAPIError as e:
            raise HistoryError(str(e), e.status_code) from e

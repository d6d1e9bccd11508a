"""
Per-process application state tying the pieces together.

A Workspace owns the problem being edited, the last result, the single
user-visible error message and the open history page. Every operation
clears the error on success; a failure leaves only the error, never a
result next to it.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from api_client import ApiClient, ServiceConfig, ServiceError
from history_manager import HistoryEntry, HistoryManager, HistoryPage
from optimizer_client import OptimizationClient, OptimizationInProgressError, Solution
from result_view import InconsistentSolutionError, ResultView, build_result_view
from session_manager import CredentialStore, SessionManager
from stock_model import Problem

logger = logging.getLogger(__name__)


@dataclass
class Workspace:
    """Root application state."""

    session: SessionManager
    optimizer: OptimizationClient
    history: HistoryManager
    problem: Problem = field(default_factory=Problem.default)
    solution: Optional[Solution] = None
    view: Optional[ResultView] = None
    error: Optional[str] = None
    loading: bool = False
    history_page: Optional[HistoryPage] = None

    def __post_init__(self):
        self.session.on_identity_change(self.close_history)

    @classmethod
    def create(cls, config: Optional[ServiceConfig] = None, http=None,
               store: Optional[CredentialStore] = None, open_url=None) -> "Workspace":
        """Wire up a workspace against one backend."""
        config = config or ServiceConfig.from_env()
        api = ApiClient(config, http=http)
        store = store or CredentialStore(config.credentials_path)
        session = SessionManager(api, store, open_url=open_url)
        return cls(
            session=session,
            optimizer=OptimizationClient(api),
            history=HistoryManager(api, session),
        )

    @property
    def can_optimize(self) -> bool:
        return not self.loading and self.problem.is_submittable()

    # ── Optimize ─────────────────────────────────────────────────────────

    def optimize(self) -> bool:
        """Submit the current problem. Returns True when a result is shown."""
        if not self.problem.is_submittable():
            return False
        if self.loading or self.optimizer.in_flight:
            self.error = "An optimization is already running"
            return False
        self.error = None
        self.solution = None
        self.view = None
        self.loading = True
        submitted = self.problem.copy()
        try:
            outcome = self.optimizer.optimize(submitted, self.session)
        except OptimizationInProgressError as e:
            self.error = str(e)
            return False
        finally:
            self.loading = False

        if outcome is None:
            return False
        if not outcome.ok:
            self.error = outcome.failure.message
            return False
        return self._show(outcome.solution, submitted)

    def _show(self, solution: Solution, problem: Problem) -> bool:
        try:
            view = build_result_view(solution, problem.boards)
        except InconsistentSolutionError as e:
            logger.error("Refusing to show inconsistent solution: %s", e)
            self.error = f"The optimizer returned an invalid plan: {e}"
            return False
        for issue in view.inconsistencies:
            logger.warning("Solution inconsistency: %s", issue)
        self.solution = solution
        self.view = view
        self.error = None
        return True

    # ── Session ──────────────────────────────────────────────────────────

    def restore_session(self) -> None:
        self.session.restore()

    def begin_login(self, redirect_uri: Optional[str] = None) -> Optional[str]:
        try:
            url = self.session.begin_login(redirect_uri)
        except ServiceError as e:
            self.error = str(e)
            return None
        self.error = None
        return url

    def complete_login(self, callback_url: str) -> Optional[str]:
        return self.session.complete_login_from_callback(callback_url)

    def logout(self) -> None:
        self.session.logout()

    # ── History ──────────────────────────────────────────────────────────

    def open_history(self, page: int = 1) -> Optional[HistoryPage]:
        try:
            result = self.history.list(page)
        except ServiceError as e:
            self.error = str(e)
            return None
        if result is not None:
            self.history_page = result
            self.error = None
        return result

    def next_page(self) -> Optional[HistoryPage]:
        if self.history_page is None or not self.history_page.has_next:
            return None
        return self.open_history(self.history_page.page + 1)

    def previous_page(self) -> Optional[HistoryPage]:
        if self.history_page is None or not self.history_page.has_previous:
            return None
        return self.open_history(self.history_page.page - 1)

    def close_history(self) -> None:
        self.history.close()
        self.history_page = None

    def load_history_entry(self, entry_id: str) -> Optional[HistoryEntry]:
        """Replace the problem and result with a stored run."""
        try:
            entry = self.history.load_one(entry_id)
        except ServiceError as e:
            self.error = str(e)
            return None
        self.problem = entry.to_problem()
        self.solution = None
        self.view = None
        self.error = None
        if entry.solution is not None:
            self._show(entry.solution, self.problem)
        self.close_history()
        logger.info("Loaded history entry %s", entry_id)
        return entry

    def delete_history_entry(self, entry_id: str) -> Optional[HistoryPage]:
        try:
            result = self.history.delete_one(entry_id)
        except ServiceError as e:
            self.error = str(e)
            return None
        if result is not None:
            self.history_page = result
        self.error = None
        return result

"""
Client for the external cutting-stock optimizer.

Sends a Problem to POST /optimize and classifies the answer into a Solution
or an OptimizationFailure. The optimizer records the run into the user's
history by itself when a bearer credential is attached; this module never
writes history.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from api_client import (
    WARM_UP_MESSAGE,
    ApiClient,
    MalformedResponseError,
    ServiceError,
    ServiceUnavailableError,
    decode_json,
    error_message,
)
from session_manager import SessionManager
from stock_model import Problem

logger = logging.getLogger(__name__)

OPTIMIZE_PATH = "/optimize"
DEFAULT_FAILURE_MESSAGE = "Optimization failed"


class OptimizationInProgressError(ServiceError):
    """An optimize call is already outstanding."""
    pass


@dataclass
class Solution:
    """The optimizer's plan, keyed by position in the submitted board list.

    board_plan:    board index -> number of boards to buy
    cut_plan:      board index -> one list of cut lengths per physical board
    waste_summary: board index -> leftover length across all those boards
    """

    board_plan: Dict[int, int] = field(default_factory=dict)
    cut_plan: Dict[int, List[List[float]]] = field(default_factory=dict)
    waste_summary: Dict[int, float] = field(default_factory=dict)
    total_cost: float = 0.0

    @classmethod
    def from_payload(cls, data: Any) -> "Solution":
        if not isinstance(data, dict):
            raise MalformedResponseError("Solution is not a JSON object")
        missing = [k for k in ("board_plan", "cut_plan", "waste_summary", "total_cost")
                   if k not in data]
        if missing:
            raise MalformedResponseError(f"Solution missing fields: {', '.join(missing)}")
        try:
            board_plan = {int(k): int(v) for k, v in _index_items(data["board_plan"])}
            cut_plan = {
                int(k): [[float(c) for c in instance] for instance in instances]
                for k, instances in _index_items(data["cut_plan"])
            }
            waste_summary = {int(k): float(v) for k, v in _index_items(data["waste_summary"])}
            total_cost = float(data["total_cost"])
        except (TypeError, ValueError) as e:
            raise MalformedResponseError(f"Solution has invalid values: {e}") from e
        return cls(
            board_plan=dict(sorted(board_plan.items())),
            cut_plan=dict(sorted(cut_plan.items())),
            waste_summary=dict(sorted(waste_summary.items())),
            total_cost=total_cost,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "board_plan": {str(k): v for k, v in self.board_plan.items()},
            "cut_plan": {str(k): [list(i) for i in v] for k, v in self.cut_plan.items()},
            "waste_summary": {str(k): v for k, v in self.waste_summary.items()},
            "total_cost": self.total_cost,
        }


def _index_items(value: Any):
    """Items of an index-keyed mapping; a plain list is keyed by position."""
    if isinstance(value, dict):
        return value.items()
    if isinstance(value, list):
        return enumerate(value)
    raise TypeError(f"expected object keyed by board index, got {type(value).__name__}")


class FailureKind(Enum):
    VALIDATION = "validation"      # optimizer rejected the problem
    WARMING_UP = "warming_up"      # request never reached the service
    MALFORMED = "malformed"        # 2xx with an unusable body


@dataclass
class OptimizationFailure:
    kind: FailureKind
    message: str
    status_code: int = 0


@dataclass
class OptimizationOutcome:
    solution: Optional[Solution] = None
    failure: Optional[OptimizationFailure] = None

    @property
    def ok(self) -> bool:
        return self.solution is not None


class OptimizationClient:
    """Submits problems to the optimizer, one at a time."""

    def __init__(self, api: ApiClient):
        self.api = api
        self._in_flight = threading.Lock()

    @property
    def in_flight(self) -> bool:
        return self._in_flight.locked()

    def optimize(self, problem: Problem,
                 session: Optional[SessionManager] = None) -> Optional[OptimizationOutcome]:
        """Optimize ``problem``; returns None when there is nothing to submit.

        Raises:
            OptimizationInProgressError: If another call has not finished yet.
        """
        if not problem.is_submittable():
            logger.debug("Nothing to optimize: need at least one cut and one board")
            return None
        if not self._in_flight.acquire(blocking=False):
            raise OptimizationInProgressError("An optimization is already running")
        try:
            return self._submit(problem, session)
        finally:
            self._in_flight.release()

    def _submit(self, problem: Problem,
                session: Optional[SessionManager]) -> OptimizationOutcome:
        token = None
        if session is not None and session.credential is not None:
            token = session.credential.access_token
        logger.info(
            "Submitting optimization: %d cuts, %d boards%s",
            len(problem.cuts), len(problem.boards),
            " (saved to history)" if token else "",
        )
        try:
            resp = self.api.request(
                "POST", OPTIMIZE_PATH,
                access_token=token,
                timeout=self.api.config.optimize_timeout_seconds,
                json=problem.to_payload(),
            )
        except ServiceUnavailableError:
            return OptimizationOutcome(
                failure=OptimizationFailure(FailureKind.WARMING_UP, WARM_UP_MESSAGE)
            )

        if resp.status_code >= 400:
            message = error_message(resp, DEFAULT_FAILURE_MESSAGE)
            logger.info("Optimizer rejected problem (%d): %s", resp.status_code, message)
            return OptimizationOutcome(
                failure=OptimizationFailure(FailureKind.VALIDATION, message, resp.status_code)
            )

        try:
            solution = Solution.from_payload(decode_json(resp))
        except MalformedResponseError as e:
            logger.error("Unusable optimizer response: %s", e)
            return OptimizationOutcome(
                failure=OptimizationFailure(FailureKind.MALFORMED, str(e), resp.status_code)
            )
        logger.info("Optimization succeeded: total cost %.2f", solution.total_cost)
        return OptimizationOutcome(solution=solution)

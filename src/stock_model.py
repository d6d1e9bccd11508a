"""
Cutting-stock problem definition: required cuts and purchasable boards.

Editing is tolerant: malformed numbers become 0 instead of raising, so the
problem can always be edited. Whether a problem is worth submitting is only
decided at submission time (see Problem.is_submittable).
All measurements are in inches.
"""

import copy
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

CUT_FIELDS = ("width", "height", "length", "quantity")
BOARD_FIELDS = ("width", "height", "length", "price")


def coerce_float(value: Any) -> float:
    """Parse a float, returning 0.0 for anything unparseable or negative."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(number) or number < 0:
        return 0.0
    return number


def coerce_int(value: Any) -> int:
    """Parse an integer count, returning 0 for anything unparseable or negative.

    Fractional input is truncated ("3.7" -> 3).
    """
    if isinstance(value, bool):
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        pass
    number = coerce_float(value)
    return int(number)


@dataclass
class Cut:
    """A required piece: dimensions plus how many identical pieces are needed."""

    width: float = 2.0
    height: float = 4.0
    length: float = 12.0
    quantity: int = 1

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Cut":
        return cls(
            width=coerce_float(data.get("width")),
            height=coerce_float(data.get("height")),
            length=coerce_float(data.get("length")),
            quantity=coerce_int(data.get("quantity")),
        )


@dataclass
class Board:
    """A purchasable stock length with its unit price."""

    width: float = 2.0
    height: float = 4.0
    length: float = 96.0
    price: float = 8.0

    @property
    def label(self) -> str:
        return f'{format_length(self.width)}x{format_length(self.height)}x{format_length(self.length)}"'

    def to_payload(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Board":
        return cls(
            width=coerce_float(data.get("width")),
            height=coerce_float(data.get("height")),
            length=coerce_float(data.get("length")),
            price=coerce_float(data.get("price")),
        )


def format_length(value: float) -> str:
    """Format a measurement without a trailing .0 for whole numbers."""
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


@dataclass
class Problem:
    """Ordered cuts and boards, plus an optional project name.

    Solutions refer to boards by their position in ``boards``, so the order
    here must not change between submitting a problem and reading its result.
    """

    cuts: List[Cut] = field(default_factory=list)
    boards: List[Board] = field(default_factory=list)
    project_name: Optional[str] = None

    @classmethod
    def default(cls) -> "Problem":
        """The starter problem shown to a new user."""
        return cls(
            cuts=[Cut(width=2, height=4, length=24, quantity=3)],
            boards=[Board(width=2, height=4, length=96, price=8)],
        )

    # ── Editing ──────────────────────────────────────────────────────────

    def add_cut(self) -> Cut:
        cut = Cut()
        self.cuts.append(cut)
        return cut

    def remove_cut(self, index: int) -> None:
        if 0 <= index < len(self.cuts):
            del self.cuts[index]

    def update_cut(self, index: int, field_name: str, raw_value: Any) -> None:
        if field_name not in CUT_FIELDS:
            raise KeyError(f"Unknown cut field: {field_name}")
        if not 0 <= index < len(self.cuts):
            return
        if field_name == "quantity":
            value = coerce_int(raw_value)
        else:
            value = coerce_float(raw_value)
        setattr(self.cuts[index], field_name, value)

    def add_board(self) -> Board:
        board = Board()
        self.boards.append(board)
        return board

    def remove_board(self, index: int) -> None:
        if 0 <= index < len(self.boards):
            del self.boards[index]

    def update_board(self, index: int, field_name: str, raw_value: Any) -> None:
        if field_name not in BOARD_FIELDS:
            raise KeyError(f"Unknown board field: {field_name}")
        if not 0 <= index < len(self.boards):
            return
        setattr(self.boards[index], field_name, coerce_float(raw_value))

    # ── Submission ───────────────────────────────────────────────────────

    def is_submittable(self) -> bool:
        return bool(self.cuts) and bool(self.boards)

    def copy(self) -> "Problem":
        return copy.deepcopy(self)

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "cuts": [c.to_payload() for c in self.cuts],
            "boards": [b.to_payload() for b in self.boards],
        }
        if self.project_name:
            payload["projectName"] = self.project_name
        return payload

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "Problem":
        cuts = data.get("cuts") or []
        boards = data.get("boards") or []
        name = data.get("projectName", data.get("project_name"))
        return cls(
            cuts=[Cut.from_payload(c) for c in cuts if isinstance(c, dict)],
            boards=[Board.from_payload(b) for b in boards if isinstance(b, dict)],
            project_name=str(name) if name else None,
        )

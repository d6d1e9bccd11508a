"""
Presentation-ready view of a Solution: shopping list, cutting instructions
and waste summary.

Board indices in the Solution refer to positions in the board list that was
submitted. Totals reported by the optimizer are cross-checked against the
per-board data; disagreements are recorded as inconsistencies, and physically
impossible layouts (cuts longer than the board) raise.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from optimizer_client import Solution
from stock_model import Board, format_length

TOLERANCE = 1e-6


class InconsistentSolutionError(ValueError):
    """The Solution violates its own invariants and must not be rendered."""
    pass


@dataclass
class ShoppingLine:
    board_index: int
    board: Board
    quantity: int
    line_cost: float

    @property
    def label(self) -> str:
        return f"Buy {self.quantity}x {self.board.label} boards"


@dataclass
class BoardInstanceLayout:
    number: int                 # 1-based, per board type
    cuts: List[float]
    used_length: float
    waste: float


@dataclass
class CuttingInstructions:
    board_index: int
    board: Board
    instances: List[BoardInstanceLayout] = field(default_factory=list)

    @property
    def instance_waste(self) -> float:
        return sum(i.waste for i in self.instances)


@dataclass
class WasteLine:
    board_index: int
    board: Board
    total_waste: float


@dataclass
class ResultView:
    shopping_list: List[ShoppingLine]
    grand_total: float
    cutting_instructions: List[CuttingInstructions]
    waste_summary: List[WasteLine]
    total_waste: float
    inconsistencies: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.inconsistencies

    @property
    def line_cost_total(self) -> float:
        return sum(line.line_cost for line in self.shopping_list)


def _board_at(boards: Sequence[Board], index: int) -> Board:
    if not 0 <= index < len(boards):
        raise InconsistentSolutionError(
            f"Solution refers to board #{index} but only {len(boards)} boards were submitted"
        )
    return boards[index]


def build_result_view(solution: Solution, boards: Sequence[Board],
                      strict: bool = False) -> ResultView:
    """Derive the result view for ``solution`` against the submitted ``boards``.

    Raises:
        InconsistentSolutionError: If a board index is unknown, a board is
            over-filled, or more boards are laid out than purchased. With
            ``strict=True`` any recorded inconsistency raises as well.
    """
    issues: List[str] = []

    shopping = []
    for index, quantity in solution.board_plan.items():
        board = _board_at(boards, index)
        shopping.append(ShoppingLine(index, board, quantity, board.price * quantity))
    line_total = sum(line.line_cost for line in shopping)
    if abs(line_total - solution.total_cost) > TOLERANCE:
        issues.append(
            f"Total cost {solution.total_cost:.2f} does not match "
            f"the shopping list total {line_total:.2f}"
        )

    instructions = []
    for index, instances in solution.cut_plan.items():
        board = _board_at(boards, index)
        purchased = solution.board_plan.get(index, 0)
        if len(instances) > purchased:
            raise InconsistentSolutionError(
                f"{len(instances)} {board.label} boards are laid out "
                f"but only {purchased} are purchased"
            )
        block = CuttingInstructions(index, board)
        for number, cuts in enumerate(instances, start=1):
            used = sum(cuts)
            waste = board.length - used
            if waste < -TOLERANCE:
                raise InconsistentSolutionError(
                    f'{board.label} board #{number} holds {format_length(used)}" of cuts, '
                    f'more than its length'
                )
            block.instances.append(BoardInstanceLayout(number, list(cuts), used, max(waste, 0.0)))
        instructions.append(block)

    computed_waste: Dict[int, float] = {b.board_index: b.instance_waste for b in instructions}
    waste_lines = []
    for index, total in solution.waste_summary.items():
        board = _board_at(boards, index)
        waste_lines.append(WasteLine(index, board, total))
        expected = computed_waste.get(index, 0.0)
        if abs(expected - total) > TOLERANCE:
            issues.append(
                f'Reported waste for {board.label} boards ({format_length(total)}") '
                f'does not match the cutting layout ({format_length(expected)}")'
            )
    for index in computed_waste:
        if index not in solution.waste_summary:
            issues.append(f"No waste reported for {boards[index].label} boards")

    if strict and issues:
        raise InconsistentSolutionError("; ".join(issues))

    return ResultView(
        shopping_list=shopping,
        grand_total=solution.total_cost,
        cutting_instructions=instructions,
        waste_summary=waste_lines,
        total_waste=sum(line.total_waste for line in waste_lines),
        inconsistencies=issues,
    )


def format_result_view(view: ResultView) -> str:
    """Plain-text rendering of a result view."""
    lines = ["Shopping List"]
    for item in view.shopping_list:
        lines.append(f"  {item.label:<40} ${item.line_cost:.2f}")
    lines.append(f"  Total Cost: ${view.grand_total:.2f}")
    lines.append("")
    lines.append("Cutting Instructions")
    for block in view.cutting_instructions:
        lines.append(f"  {block.board.label} Boards:")
        for inst in block.instances:
            pieces = " + ".join(f'{format_length(c)}"' for c in inst.cuts)
            lines.append(
                f'    Board #{inst.number}: {pieces} = {format_length(inst.used_length)}" '
                f'(waste: {format_length(inst.waste)}")'
            )
    lines.append("")
    lines.append("Waste Summary")
    for w in view.waste_summary:
        lines.append(f'  {w.board.label:<20} {format_length(w.total_waste)}" total waste')
    lines.append(f'  Total Waste: {format_length(view.total_waste)}"')
    if view.inconsistencies:
        lines.append("")
        lines.append("WARNING: the optimizer returned inconsistent data:")
        lines.extend(f"  - {issue}" for issue in view.inconsistencies)
    return "\n".join(lines)

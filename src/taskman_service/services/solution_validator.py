"""
Per-type solution checking.

Each task type owns one comparison strategy registered in ``VALIDATORS``.
Payloads are opaque JSON objects everywhere else in the service; only the
strategy for a type reads their shape. Strategies must not mutate their
inputs and must not raise: malformed submissions and unknown types fail
closed with ``correct=False``.
"""

from __future__ import annotations

import math
from collections import Counter
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from taskman_service.config import ValidationConfig


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of checking one submission."""

    correct: bool
    details: str
    score: float | None = None


@dataclass(frozen=True)
class ValidatorOptions:
    """Tolerances used by the numeric strategies."""

    arithmetic_tolerance: float = 1e-9
    color_match_default_tolerance: float = 5.0

    @classmethod
    def from_config(cls, config: ValidationConfig) -> ValidatorOptions:
        """Build options from the ``validation`` config section."""
        return cls(
            arithmetic_tolerance=config.arithmetic_tolerance,
            color_match_default_tolerance=config.color_match_default_tolerance,
        )


DEFAULT_OPTIONS = ValidatorOptions()


class MalformedSolutionError(ValueError):
    """A payload does not have the shape its task type requires."""


def _require_mapping(value: object, name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedSolutionError(f"{name} must be an object")
    return value


def _require_number(value: object, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedSolutionError(f"{name} must be a number")
    if not math.isfinite(value):
        raise MalformedSolutionError(f"{name} must be finite")
    return float(value)


def _require_list(value: object, name: str) -> list[Any]:
    if not isinstance(value, list):
        raise MalformedSolutionError(f"{name} must be a list")
    return value


def _require_grid(value: object, name: str) -> list[list[str]]:
    rows = _require_list(value, name)
    grid: list[list[str]] = []
    for row in rows:
        cells = _require_list(row, f"{name} row")
        if not all(isinstance(cell, str) for cell in cells):
            raise MalformedSolutionError(f"{name} cells must be strings")
        grid.append(cells)
    return grid


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def validate_sort_list(
    submitted: dict[str, Any],
    stored: dict[str, Any],
    data: dict[str, Any],
    options: ValidatorOptions,
) -> ValidationResult:
    """Exact ordered match against the stored ``sortedItems``."""
    submitted_items = _require_list(submitted.get("sortedItems"), "sortedItems")
    expected_items = _require_list(stored.get("sortedItems"), "stored sortedItems")

    if submitted_items == expected_items:
        return ValidationResult(correct=True, details="Perfect sort!")
    return ValidationResult(correct=False, details="Sort order is incorrect")


def validate_arithmetic(
    submitted: dict[str, Any],
    stored: dict[str, Any],
    data: dict[str, Any],
    options: ValidatorOptions,
) -> ValidationResult:
    """Numeric answer within ``arithmetic_tolerance`` of the stored answer."""
    answer = _require_number(submitted.get("answer"), "answer")
    expected = _require_number(stored.get("answer"), "stored answer")
    expression = data.get("expression", "expression")

    if abs(answer - expected) <= options.arithmetic_tolerance:
        return ValidationResult(correct=True, details=f"Correct! {expression} = {_fmt(expected)}")
    return ValidationResult(
        correct=False,
        details=f"Incorrect. Your answer: {_fmt(answer)}",
    )


def _fmt(value: float) -> str:
    return str(int(value)) if value.is_integer() else str(value)


def _rgb(value: object, name: str) -> tuple[float, float, float]:
    color = _require_mapping(value, name)
    return (
        _require_number(color.get("r"), f"{name}.r"),
        _require_number(color.get("g"), f"{name}.g"),
        _require_number(color.get("b"), f"{name}.b"),
    )


def validate_color_match(
    submitted: dict[str, Any],
    stored: dict[str, Any],
    data: dict[str, Any],
    options: ValidatorOptions,
) -> ValidationResult:
    """Average normalised RGB distance must be within the task's tolerance percentage."""
    submitted_rgb = _rgb(submitted.get("submittedColor"), "submittedColor")
    target_source = stored.get("submittedColor", data.get("targetColor"))
    target_rgb = _rgb(target_source, "target color")

    tolerance_pct = data.get("tolerance", options.color_match_default_tolerance)
    tolerance = _require_number(tolerance_pct, "tolerance") / 100

    avg_diff = sum(abs(t - s) / 255 for t, s in zip(target_rgb, submitted_rgb, strict=True)) / 3
    accuracy = (1 - avg_diff) * 100
    score = max(0.0, 100 - avg_diff * 100)

    if avg_diff <= tolerance:
        return ValidationResult(
            correct=True, details=f"Great match! Accuracy: {accuracy:.1f}%", score=score
        )
    return ValidationResult(
        correct=False, details=f"Too far off. Accuracy: {accuracy:.1f}%", score=score
    )


def validate_group_separation(
    submitted: dict[str, Any],
    stored: dict[str, Any],
    data: dict[str, Any],
    options: ValidatorOptions,
) -> ValidationResult:
    """Every stored group must be set-equal to the submitted group of the same name."""
    submitted_groups = _require_mapping(submitted.get("groups"), "groups")
    expected_groups = _require_mapping(stored.get("groups"), "stored groups")

    total = len(expected_groups)
    correct_groups = 0
    for name, expected_items in expected_groups.items():
        submitted_items = submitted_groups.get(name, [])
        _require_list(submitted_items, f"groups.{name}")
        if set(submitted_items) == set(_require_list(expected_items, f"stored groups.{name}")):
            correct_groups += 1

    score = (correct_groups / total) * 100 if total else 100.0
    if correct_groups == total:
        return ValidationResult(correct=True, details="All groups correct!", score=score)
    return ValidationResult(
        correct=False, details=f"{correct_groups}/{total} groups correct", score=score
    )


def _block_counts(grid: list[list[str]]) -> Counter[str]:
    return Counter(cell for row in grid for cell in row if cell != "")


def _is_defragmented(grid: list[list[str]], cols: int) -> bool:
    for col in range(cols):
        found_empty = False
        for row in grid:
            if row[col] == "":
                found_empty = True
            elif found_empty:
                return False
    return True


def optimal_defrag_moves(grid: list[list[str]]) -> int:
    """Minimum cell moves that pull every block to the top of its column."""
    if not grid:
        return 0
    moves = 0
    for col in range(len(grid[0])):
        target_row = 0
        for row_index, row in enumerate(grid):
            if row[col] != "":
                moves += row_index - target_row
                target_row += 1
    return moves


def validate_defragmentation(
    submitted: dict[str, Any],
    stored: dict[str, Any],
    data: dict[str, Any],
    options: ValidatorOptions,
) -> ValidationResult:
    """
    Check the submitted grid in order: dimensions, preserved block counts,
    no gaps under blocks, then a per-cell match with the stored grid.
    """
    submitted_grid = _require_grid(submitted.get("grid"), "grid")
    expected_grid = _require_grid(stored.get("grid"), "stored grid")
    original_grid = _require_grid(data.get("grid", expected_grid), "data grid")
    rows = int(_require_number(data.get("rows", len(expected_grid)), "rows"))
    cols = int(
        _require_number(data.get("cols", len(expected_grid[0]) if expected_grid else 0), "cols")
    )

    if len(submitted_grid) != rows:
        return ValidationResult(
            correct=False, details="Invalid grid dimensions: wrong number of rows"
        )
    if any(len(row) != cols for row in submitted_grid):
        return ValidationResult(
            correct=False, details="Invalid grid dimensions: wrong number of columns"
        )

    if _block_counts(original_grid) != _block_counts(submitted_grid):
        return ValidationResult(
            correct=False, details="Block count mismatch: blocks were added or removed"
        )

    if not _is_defragmented(submitted_grid, cols):
        return ValidationResult(
            correct=False,
            details="Grid is not properly defragmented: blocks must be at the top with no gaps",
        )

    if submitted_grid != expected_grid:
        return ValidationResult(
            correct=False, details="Blocks must keep their column order when moved up"
        )

    optimal = optimal_defrag_moves(original_grid)
    move_count = submitted.get("moveCount", optimal)
    if isinstance(move_count, bool) or not isinstance(move_count, int):
        move_count = optimal
    if optimal > 0:
        efficiency = max(0.0, 100 - ((move_count - optimal) / optimal) * 50)
    else:
        efficiency = 100.0
    return ValidationResult(
        correct=True,
        details=f"Defragmentation complete! Moves: {move_count} (optimal: {optimal})",
        score=min(100.0, efficiency),
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

VALIDATORS: Mapping[str, Callable[..., ValidationResult]] = MappingProxyType(
    {
        "sort_list": validate_sort_list,
        "color_match": validate_color_match,
        "arithmetic": validate_arithmetic,
        "group_separation": validate_group_separation,
        "defragmentation": validate_defragmentation,
    }
)

TASK_TYPES: frozenset[str] = frozenset(VALIDATORS)


def validate(
    task_type: str,
    submitted: object,
    stored: object,
    data: object,
    options: ValidatorOptions = DEFAULT_OPTIONS,
) -> ValidationResult:
    """Check ``submitted`` against the stored solution for ``task_type``."""
    strategy = VALIDATORS.get(task_type)
    if strategy is None:
        return ValidationResult(correct=False, details=f"Unrecognized task type: {task_type}")

    try:
        return strategy(
            _require_mapping(submitted, "solution"),
            _require_mapping(stored, "stored solution"),
            _require_mapping(data if data is not None else {}, "task data"),
            options,
        )
    except (MalformedSolutionError, KeyError, TypeError, ValueError, IndexError) as exc:
        return ValidationResult(correct=False, details=f"Malformed solution: {exc}")

"""Exact solver for two-player zero-sum matrix games.

Given the row player's payoff matrix A (R×C), returns a pair of optimal mixed
strategies and the value of the game. Payoffs here are always player 0's
match-victory probabilities, so the column player minimises.

Algorithm: compact simplex tableau (Williams; Ferguson, *Game Theory*,
Part II §4.5)
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
  1. Add ``shift = 1 − min(A)`` to every entry so all payoffs are ≥ 1.
  2. Border the matrix with a column of 1s on the right and a row of −1s
     underneath (corner 0). Rows are labelled with row-player indices,
     columns with column-player indices.
  3. Pick the lowest-index column with a negative bottom-row entry. Among
     rows with a positive entry in that column, pick the one with the
     smallest border / entry ratio (first on ties).
  4. Pivot around (p, q):
        pivot        ← 1 / pivot
        row p        ← row p / pivot
        column q     ← −column q / pivot
        other (r, c) ← a[r, c] − a[r, q] · a[p, c] / pivot
     and swap the labels of row p and column q.
  5. Repeat 3–4 until the bottom row has no negative entries.
  6. value = 1 / corner − shift. A row-player label sitting on a column
     gives that row's probability (bottom-row entry / corner); a
     column-player label sitting on a row gives that column's probability
     (border entry / corner). Every other probability is 0.

The result is one optimal strategy pair; degenerate games may have others.
"""

from __future__ import annotations

import logging
from typing import NamedTuple, Sequence

import numpy as np

from src.engine.errors import MalformedInput, SolverInternalError

logger = logging.getLogger(__name__)

# ─── Constants ────────────────────────────────────────────────────────────────

POSITIVE_PIVOT_EPSILON: float = 1e-10
"""Pivot candidates must exceed this; border entries below it snap to 0."""

STRATEGY_SUM_EPSILON: float = 1e-7
"""Allowed drift of a returned strategy's total probability from 1."""

NEAR_OPTIMAL_EPSILON: float = 1e-7
"""Largest gain a unilateral deviation may show before verification fails."""

MAX_PIVOTS: int = 10_000
"""Guard against degenerate cycling; far above any real match tree's needs."""


# ─── Result type ──────────────────────────────────────────────────────────────


class MatrixGameSolution(NamedTuple):
    """Optimal play for a zero-sum matrix game.

    Attributes:
        expected_value: Value of the game to the row player (player 0).
        strategy_p0:    Row player's mixed strategy, shape (R,).
        strategy_p1:    Column player's mixed strategy, shape (C,).
    """

    expected_value: float
    strategy_p0: np.ndarray
    strategy_p1: np.ndarray


# ─── Input handling ───────────────────────────────────────────────────────────


def _as_payoff_matrix(payoffs: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Return ``payoffs`` as a fresh float64 (R, C) array.

    Raises:
        MalformedInput: If the matrix is empty, ragged, not 2-D, or contains
                        non-finite values.
    """
    if isinstance(payoffs, np.ndarray):
        if payoffs.ndim != 2:
            raise MalformedInput("Payoff matrix must be 2-D.")
        rows = payoffs.tolist()
    else:
        try:
            rows = [list(row) for row in payoffs]
        except TypeError as exc:
            raise MalformedInput("Payoff matrix must be 2-D.") from exc

    if len(rows) < 1 or len(rows[0]) < 1:
        raise MalformedInput("Payoff matrix is empty.")
    n_cols = len(rows[0])
    if any(len(row) != n_cols for row in rows):
        raise MalformedInput("Payoff matrix rows have unequal lengths.")

    try:
        matrix = np.array(rows, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise MalformedInput(f"Payoff matrix must be numeric: {exc}") from exc
    if not np.all(np.isfinite(matrix)):
        raise MalformedInput("Payoff matrix contains non-finite values.")
    return matrix


# ─── Simplex steps ────────────────────────────────────────────────────────────


def _select_pivot_row(tableau: np.ndarray, q: int, n_rows: int) -> int:
    """Choose the leaving row for entering column ``q`` (minimum-ratio test).

    Border values within POSITIVE_PIVOT_EPSILON of zero are snapped to 0 in
    place before the ratios are taken.

    Raises:
        SolverInternalError: If no row has a positive entry in column q, or
                             the smallest ratio is negative.
    """
    border = tableau.shape[1] - 1
    best_row = -1
    best_ratio = 0.0
    for r in range(n_rows):
        entry = tableau[r, q]
        if entry <= POSITIVE_PIVOT_EPSILON:
            continue
        if abs(tableau[r, border]) < POSITIVE_PIVOT_EPSILON:
            tableau[r, border] = 0.0
        ratio = tableau[r, border] / entry
        if best_row < 0 or ratio < best_ratio:
            best_row = r
            best_ratio = ratio

    if best_row < 0:
        raise SolverInternalError(
            f"No candidate pivot rows in column {q}. This indicates an "
            f"implementation error, or unexpected payoff input.\n{tableau}"
        )
    if best_ratio < 0:
        raise SolverInternalError(
            f"Negative pivot ratio {best_ratio}. This indicates an "
            f"implementation error, or unexpected payoff input."
        )
    return best_row


def _pivot(tableau: np.ndarray, p: int, q: int) -> np.ndarray:
    """Return the tableau after pivoting on (p, q)."""
    pivot = tableau[p, q]
    pivot_col = tableau[:, q].copy()
    pivot_row = tableau[p, :].copy()

    result = tableau - np.outer(pivot_col, pivot_row) / pivot
    result[p, :] = pivot_row / pivot
    result[:, q] = -pivot_col / pivot
    result[p, q] = 1.0 / pivot
    return result


def _entering_column(tableau: np.ndarray, n_rows: int, n_cols: int) -> int:
    """Lowest-index column with a negative bottom-row entry, or -1 if none."""
    negative = np.flatnonzero(tableau[n_rows, :n_cols] < 0)
    return int(negative[0]) if negative.size else -1


# ─── Public API ───────────────────────────────────────────────────────────────


def solve(
    payoffs: Sequence[Sequence[float]] | np.ndarray,
    verify: bool = False,
) -> MatrixGameSolution:
    """Solve a zero-sum matrix game exactly.

    Args:
        payoffs: R×C matrix of the row player's payoffs.
        verify:  Also check that both strategies sum to 1 and that no pure
                 deviation beats them. Never changes the returned values.

    Returns:
        MatrixGameSolution with the game value and both optimal strategies.

    Raises:
        MalformedInput:      Empty, ragged or non-finite payoffs.
        SolverInternalError: No eligible pivot, pivot cycling, or a failed
                             verification.

    Examples:
        >>> solve([[0.5, 0.5], [0.5, 0.5]]).expected_value
        0.5
        >>> solution = solve([[1.0, 0.0], [0.0, 1.0]])
        >>> bool(np.allclose(solution.strategy_p0, [0.5, 0.5]))
        True
    """
    matrix = _as_payoff_matrix(payoffs)
    n_rows, n_cols = matrix.shape

    # Forced move: the value is the single payoff, exactly.
    if n_rows == 1 and n_cols == 1:
        return MatrixGameSolution(float(matrix[0, 0]), np.ones(1), np.ones(1))

    # Row labels hold column-player indices once swapped in, and vice versa:
    # (True, i) = row-player index i, (False, j) = column-player index j.
    row_labels: list[tuple[bool, int]] = [(True, i) for i in range(n_rows)]
    col_labels: list[tuple[bool, int]] = [(False, j) for j in range(n_cols)]

    shift = 1.0 - float(matrix.min())
    tableau = np.zeros((n_rows + 1, n_cols + 1), dtype=np.float64)
    tableau[:n_rows, :n_cols] = matrix + shift
    tableau[:n_rows, n_cols] = 1.0
    tableau[n_rows, :n_cols] = -1.0

    n_pivots = 0
    q = _entering_column(tableau, n_rows, n_cols)
    while q >= 0:
        if n_pivots >= MAX_PIVOTS:
            raise SolverInternalError(
                f"Simplex did not terminate after {MAX_PIVOTS} pivots "
                f"on a {n_rows}x{n_cols} game."
            )
        p = _select_pivot_row(tableau, q, n_rows)
        tableau = _pivot(tableau, p, q)
        row_labels[p], col_labels[q] = col_labels[q], row_labels[p]
        n_pivots += 1
        q = _entering_column(tableau, n_rows, n_cols)

    inv_corner = 1.0 / tableau[n_rows, n_cols]
    expected_value = inv_corner - shift

    strategy_p0 = np.zeros(n_rows, dtype=np.float64)
    strategy_p1 = np.zeros(n_cols, dtype=np.float64)
    for c, (is_row_player, index) in enumerate(col_labels):
        if is_row_player:
            strategy_p0[index] = tableau[n_rows, c] * inv_corner
    for r, (is_row_player, index) in enumerate(row_labels):
        if not is_row_player:
            strategy_p1[index] = tableau[r, n_cols] * inv_corner

    logger.debug(
        "Solved %dx%d game in %d pivots: value=%.6f", n_rows, n_cols, n_pivots, expected_value
    )

    if verify:
        _verify_strategy_sums(strategy_p0, strategy_p1)
        assert_optimal_strategy(matrix, strategy_p0, strategy_p1)

    return MatrixGameSolution(float(expected_value), strategy_p0, strategy_p1)


def expected_value(
    payoffs: Sequence[Sequence[float]] | np.ndarray,
    strategy_p0: Sequence[float] | np.ndarray,
    strategy_p1: Sequence[float] | np.ndarray,
) -> float:
    """Row player's expected payoff when both players mix as given.

    Raises:
        MalformedInput: If the strategy lengths do not match the matrix.
    """
    matrix = _as_payoff_matrix(payoffs)
    s0 = np.asarray(strategy_p0, dtype=np.float64)
    s1 = np.asarray(strategy_p1, dtype=np.float64)
    if s0.shape != (matrix.shape[0],) or s1.shape != (matrix.shape[1],):
        raise MalformedInput(
            f"Strategies of length {s0.size} and {s1.size} do not fit a "
            f"{matrix.shape[0]}x{matrix.shape[1]} payoff matrix."
        )
    return float(s0 @ matrix @ s1)


def assert_optimal_strategy(
    payoffs: Sequence[Sequence[float]] | np.ndarray,
    strategy_p0: Sequence[float] | np.ndarray,
    strategy_p1: Sequence[float] | np.ndarray,
) -> None:
    """Check that neither player gains by deviating unilaterally.

    Any mixed deviation is a convex combination of pure ones, so comparing
    against every pure row (and column) is exhaustive.

    Raises:
        SolverInternalError: If a deviation improves a player's payoff by
                             more than NEAR_OPTIMAL_EPSILON.
    """
    matrix = _as_payoff_matrix(payoffs)
    s0 = np.asarray(strategy_p0, dtype=np.float64)
    s1 = np.asarray(strategy_p1, dtype=np.float64)
    value = expected_value(matrix, s0, s1)

    best_row_payoff = float(np.max(matrix @ s1))
    if best_row_payoff > value + NEAR_OPTIMAL_EPSILON:
        raise SolverInternalError(
            f"Player 0 strategy appears non-optimal: a deviation earns "
            f"{best_row_payoff} against value {value}."
        )
    worst_col_payoff = float(np.min(s0 @ matrix))
    if worst_col_payoff < value - NEAR_OPTIMAL_EPSILON:
        raise SolverInternalError(
            f"Player 1 strategy appears non-optimal: a deviation holds player 0 "
            f"to {worst_col_payoff} against value {value}."
        )


def _verify_strategy_sums(strategy_p0: np.ndarray, strategy_p1: np.ndarray) -> None:
    p0_sum = float(strategy_p0.sum())
    p1_sum = float(strategy_p1.sum())
    if abs(p0_sum - 1) > STRATEGY_SUM_EPSILON or abs(p1_sum - 1) > STRATEGY_SUM_EPSILON:
        raise SolverInternalError(
            f"A resulting strategy did not sum to 1. p0_sum: {p0_sum}, p1_sum: {p1_sum}"
        )

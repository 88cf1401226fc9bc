"""
Package-wide constants for the HearthNash match solver.

Nothing here is mutated at runtime. Behaviour switches (strict deck counts,
solver verification, random seeds) are keyword arguments on the functions
that use them.
"""

from __future__ import annotations

VERSION: str = "0.1.4"
"""Recorded on every MetricResults so stored analyses can be told apart."""

# ─── Players ──────────────────────────────────────────────────────────────────

P0: int = 0
P1: int = 1
PLAYERS: tuple[int, int] = (P0, P1)

# ─── Tolerances ───────────────────────────────────────────────────────────────

WINRATE_COMPLEMENT_TOLERANCE: float = 0.0015
"""Allowed |w[a][b] + w[b][a] - 1| in a winrate matrix."""

SUM_TO_ONE_TOLERANCE: float = 1e-8
"""Allowed drift of a metric probability distribution away from 1."""


def opponent(player: int) -> int:
    """Return the other player's index.

    Examples:
        >>> opponent(P0)
        1
    """
    return P1 if player == P0 else P0

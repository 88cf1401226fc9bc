"""Plain-text reports for solved matches and aggregated metrics.

    print_match_summary(match)       — format, decks, victory probabilities,
                                       tree shape and the opening equilibrium
    print_metric_results(results)    — titled [x, y] table of a MetricResults
"""

from __future__ import annotations

import numpy as np

from src.analysis.metrics import MetricResults, results_title
from src.engine.match_tree import MatchRoot, Vertex, VertexKind, decision_options
from src.engine.settings import P0, P1

_RULE_WIDTH: int = 56

# Display order for vertex-count rows.
_KIND_ORDER: tuple[VertexKind, ...] = (
    VertexKind.ROOT,
    VertexKind.PROTECT,
    VertexKind.BAN,
    VertexKind.DECK_CHOICE,
    VertexKind.GAME,
    VertexKind.OUTCOME,
)


def _opening_decision(match: MatchRoot) -> Vertex | None:
    """First simultaneous-choice vertex below the root, if any."""
    vertex = match.root
    while vertex.children:
        vertex = match.vertex(vertex.children[0])
        if vertex.is_decision:
            return vertex
    return None


def _option_label(match: MatchRoot, option) -> str:
    if isinstance(option, tuple):
        return ", ".join(match.meta.deck_name(d) for d in option) or "—"
    return match.meta.deck_name(option)


def print_match_summary(match: MatchRoot) -> None:
    """Print victory probabilities, tree shape and the opening equilibrium.

    Args:
        match: MatchRoot returned by match_tree.evaluate().
    """
    vp = match.victory_probabilities
    print("=" * _RULE_WIDTH)
    print(f"Match Summary — {match.rules}")
    print("=" * _RULE_WIDTH)
    for player in (P0, P1):
        names = ", ".join(match.meta.deck_name(d) for d in match.decks[player])
        print(f"  Player {player} decks:  {names}")
    print()
    print(f"  P(player 0 wins): {vp[P0]:.4f}  ({vp[P0] * 100:.2f}%)")
    print(f"  P(player 1 wins): {vp[P1]:.4f}  ({vp[P1] * 100:.2f}%)")
    print()

    counts = match.kind_counts()
    print(f"  Unique vertices: {len(match)}   Depth: {match.depth()}")
    for kind in _KIND_ORDER:
        if counts[kind]:
            print(f"    {kind.value:<12} {counts[kind]:>8,}")
    print()

    opening = _opening_decision(match)
    if opening is None:
        return
    options = decision_options(match.rules, opening.kind, opening.state)
    print(f"  Opening equilibrium ({opening.kind.value}):")
    for player in (P0, P1):
        print(f"    Player {player}:")
        for option, prob in zip(options[player], opening.strategies[player]):
            if prob > 0:
                print(f"      {_option_label(match, option):<28} {prob:>7.4f}")
    print()


def print_metric_results(results: MetricResults) -> None:
    """Print a MetricResults table, one row per x value.

    Args:
        results: MetricResults returned by metrics.measure_match_set().
    """
    info = results.metric_info
    print("=" * _RULE_WIDTH)
    print(results_title(results))
    print("=" * _RULE_WIDTH)
    print(f"  {info.x_axis:>26}  {info.y_axis:>26}")
    print(f"  {'-' * 26:>26}  {'-' * 26:>26}")
    for x, y in np.asarray(results.results):
        print(f"  {x:>26g}  {y:>+26.6f}")
    print(f"  version {results.version}")
    print()

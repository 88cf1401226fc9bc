"""Metrics measured on solved match trees.

Each metric turns one MatchRoot into a (k, 2) array of ``[x, y]`` rows; a
reducer averages the y column over many matches.

    match_length              x = match length in games, y = probability
    skill_sensitivity_wide    x = ε, y = Δ match-victory probability when every
                              deck of one player gains ε winrate
    skill_sensitivity_tall    x = ε, y = Δ match-victory probability when a
                              single deck of one player gains ε winrate

Match length
~~~~~~~~~~~~
Walks the solved DAG bottom-up: outcomes contribute a one-hot vector at
wins₀ + wins₁, games mix their two children with the chance winrate, and
decision vertices mix all children by the product of both players'
equilibrium probabilities (row-major, matching the solve order).

Skill sensitivity
~~~~~~~~~~~~~~~~~
The deck pool is doubled: player 1's decks are relabelled ``d + N`` so the
two players never share a matrix row, and the boosted player's matchups
across the two halves are shifted by ε (clamped to [0, 1]). The match is
re-evaluated and the boosted player's change in victory probability is
reported, averaged over which player is boosted (and, for the tall variant,
over each of that player's starting decks).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, NamedTuple, Sequence

import numpy as np

from src.engine.formats import FormatRules
from src.engine.match_tree import MatchRoot, VertexKind, evaluate
from src.engine.meta import MetaModel, MetaType, winrate_matrix_set
from src.engine.settings import P0, P1, PLAYERS, SUM_TO_ONE_TOLERANCE, VERSION

logger = logging.getLogger(__name__)

# ─── Constants ────────────────────────────────────────────────────────────────

EPSILON_MATCHUP_WINRATES: tuple[float, ...] = (0.0025, 0.005, 0.01, 0.02, 0.04, 0.08, 0.16)
"""Winrate boosts applied by the skill-sensitivity metrics."""


# ─── Metric descriptors and results ───────────────────────────────────────────


class MetricInfo(NamedTuple):
    """Display metadata for a metric."""

    title: str
    x_axis: str
    y_axis: str


class Metric(NamedTuple):
    """A named per-match measurement.

    Attributes:
        key:     Registry key, e.g. "match_length".
        info:    Title and axis labels.
        measure: MatchRoot → (k, 2) array of [x, y] rows.
    """

    key: str
    info: MetricInfo
    measure: Callable[[MatchRoot], np.ndarray]


@dataclass
class MetricResults:
    """A metric averaged over a set of matches.

    Attributes:
        metric_info: Title and axis labels of the metric.
        version:     Package version that produced the results.
        rules:       Format every match was played under.
        meta_type:   Source of the winrate matrices.
        n_matches:   Number of matches averaged.
        results:     (k, 2) array of [x, mean y] rows.
    """

    metric_info: MetricInfo
    version: str
    rules: FormatRules
    meta_type: int
    n_matches: int
    results: np.ndarray


def results_title(results: MetricResults, include_metric_name: bool = True) -> str:
    """Chart/report title, e.g. ``"Match Length Distribution (Conquest BO3 / M0) [n=10]"``."""
    prefix = f"{results.metric_info.title} " if include_metric_name else ""
    return f"{prefix}({results.rules} / M{int(results.meta_type)}) [n={results.n_matches}]"


# ─── Match length ─────────────────────────────────────────────────────────────


def match_length_distribution(match: MatchRoot) -> np.ndarray:
    """Probability of the match lasting each number of games under equilibrium play.

    Returns:
        float64 array of length 2 · games_to_win; index = games played.
        Lengths below games_to_win are always 0.

    Raises:
        ValueError: If the distribution does not sum to 1 within
                    SUM_TO_ONE_TOLERANCE, or the tree is malformed.
    """
    distr_length = 2 * match.rules.games_to_win
    winrates = match.meta.winrates
    distributions: dict[int, np.ndarray] = {}

    # Children precede parents in the arena, so one forward pass suffices.
    for vertex in match.iter_vertices():
        if vertex.kind is VertexKind.OUTCOME:
            length = vertex.wins[P0] + vertex.wins[P1]
            if length >= distr_length:
                raise ValueError(f"Match length {length} exceeds distribution bounds.")
            distribution = np.zeros(distr_length)
            distribution[length] = 1.0

        elif vertex.kind is VertexKind.GAME:
            if len(vertex.children) != 2:
                raise ValueError(f"Game vertex {vertex.index} does not have exactly 2 children.")
            d0, d1 = vertex.state.current_decks
            p = winrates[d0, d1]
            distribution = (
                p * distributions[vertex.children[P0]]
                + (1.0 - p) * distributions[vertex.children[P1]]
            )

        elif vertex.strategies is not None:
            strategy_p0, strategy_p1 = vertex.strategies
            weights = np.outer(strategy_p0, strategy_p1).ravel()
            if weights.size != len(vertex.children):
                raise ValueError(
                    f"Vertex {vertex.index} has {len(vertex.children)} children but "
                    f"strategies cover {weights.size}."
                )
            child_distributions = np.array([distributions[c] for c in vertex.children])
            distribution = weights @ child_distributions

        else:
            if len(vertex.children) != 1:
                raise ValueError(
                    f"Vertex {vertex.index} has {len(vertex.children)} children but no strategies."
                )
            distribution = distributions[vertex.children[0]]

        distributions[vertex.index] = distribution

    result = distributions[match.root.index]
    total = float(result.sum())
    if abs(total - 1.0) > SUM_TO_ONE_TOLERANCE:
        raise ValueError(f"Match length distribution sums to {total}, expected 1.")
    return result


def measure_match_length(match: MatchRoot) -> np.ndarray:
    """(2 · games_to_win, 2) array of [length, probability] rows."""
    distribution = match_length_distribution(match)
    return np.column_stack([np.arange(distribution.size, dtype=np.float64), distribution])


# ─── Skill sensitivity ────────────────────────────────────────────────────────


def _shifted_starting_decks(match: MatchRoot) -> list[list[int]]:
    """Starting decks with player 1's relabelled into the mirrored half."""
    n = match.meta.n_decks
    return [list(match.decks[P0]), [d + n for d in match.decks[P1]]]


def adjust_winrates_wide(winrates: np.ndarray, epsilon: float) -> np.ndarray:
    """Double the deck pool and shift every cross-half matchup by ε.

    The result is 2N×2N: the diagonal quadrants repeat ``winrates``, the
    top-right quadrant (original decks vs mirrored decks) is ``w + ε`` and
    the bottom-left is ``w − ε``, all clamped to [0, 1]. A positive ε favours
    the original half (player 0); a negative ε favours the mirror (player 1).

    Examples:
        >>> adjust_winrates_wide(np.array([[0.5]]), 0.1).tolist()
        [[0.5, 0.6], [0.4, 0.5]]
    """
    w = np.asarray(winrates, dtype=np.float64)
    return np.block(
        [
            [w, np.clip(w + epsilon, 0.0, 1.0)],
            [np.clip(w - epsilon, 0.0, 1.0), w],
        ]
    )


def adjust_winrates_tall(
    winrates: np.ndarray,
    epsilon: float,
    player: int,
    deck: int,
) -> np.ndarray:
    """Double the deck pool and boost one deck of one player by ε.

    The 2N×2N result tiles ``winrates`` in all four quadrants, then adds ε
    to the boosted deck's row and subtracts ε from its column (the diagonal
    entry is unchanged), clamping to [0, 1]. Player 1's decks live in the
    mirrored half, so their deck index is offset by N.
    """
    w = np.asarray(winrates, dtype=np.float64)
    n = w.shape[0]
    target = deck + n if player == P1 else deck
    adjusted = np.tile(w, (2, 2))
    adjusted[target, :] += epsilon
    adjusted[:, target] -= epsilon
    return np.clip(adjusted, 0.0, 1.0)


def _delta_victory(match: MatchRoot, adjusted_winrates: np.ndarray, player: int) -> float:
    """Boosted player's change in match-victory probability under a new meta."""
    boosted = evaluate(_shifted_starting_decks(match), match.rules, MetaModel(adjusted_winrates))
    return boosted.victory_probabilities[player] - match.victory_probabilities[player]


def skill_sensitivity_wide(match: MatchRoot, epsilon: float) -> float:
    """Mean Δ victory probability when either player gains ε on every deck."""
    winrates = match.meta.winrates
    p0_delta = _delta_victory(match, adjust_winrates_wide(winrates, epsilon), P0)
    p1_delta = _delta_victory(match, adjust_winrates_wide(winrates, -epsilon), P1)
    return (p0_delta + p1_delta) / 2


def skill_sensitivity_tall(match: MatchRoot, epsilon: float) -> float:
    """Mean Δ victory probability when one deck of either player gains ε."""
    winrates = match.meta.winrates
    total = 0.0
    for player in PLAYERS:
        decks = match.decks[player]
        for deck in decks:
            adjusted = adjust_winrates_tall(winrates, epsilon, player, deck)
            total += _delta_victory(match, adjusted, player) / (2 * len(decks))
    return total


def measure_skill_sensitivity_wide(match: MatchRoot) -> np.ndarray:
    """(7, 2) array of [ε, Δ victory probability] rows."""
    return np.array([[eps, skill_sensitivity_wide(match, eps)] for eps in EPSILON_MATCHUP_WINRATES])


def measure_skill_sensitivity_tall(match: MatchRoot) -> np.ndarray:
    """(7, 2) array of [ε, Δ victory probability] rows."""
    return np.array([[eps, skill_sensitivity_tall(match, eps)] for eps in EPSILON_MATCHUP_WINRATES])


# ─── Registry and aggregation ─────────────────────────────────────────────────

MATCH_LENGTH = Metric(
    "match_length",
    MetricInfo("Match Length Distribution", "Match Length", "Probability"),
    measure_match_length,
)
SKILL_SENSITIVITY_WIDE = Metric(
    "skill_sensitivity_wide",
    MetricInfo("Skill Sensitivity (Wide)", "Epsilon Matchup Winrates", "Delta Match Victory Probability"),
    measure_skill_sensitivity_wide,
)
SKILL_SENSITIVITY_TALL = Metric(
    "skill_sensitivity_tall",
    MetricInfo("Skill Sensitivity (Tall)", "Epsilon Matchup Winrates", "Delta Match Victory Probability"),
    measure_skill_sensitivity_tall,
)

METRICS: dict[str, Metric] = {
    m.key: m for m in (MATCH_LENGTH, SKILL_SENSITIVITY_WIDE, SKILL_SENSITIVITY_TALL)
}


def flatten_measurement_set(measurements: Sequence[np.ndarray]) -> np.ndarray:
    """Average per-match [x, y] arrays into one (k, 2) array.

    The x column is taken from the first measurement; the y column is the
    mean across all of them.

    Raises:
        ValueError: If there are no measurements or their shapes differ.

    Examples:
        >>> a = np.array([[1.0, 0.25], [2.0, 0.75]])
        >>> b = np.array([[1.0, 0.75], [2.0, 0.25]])
        >>> flatten_measurement_set([a, b]).tolist()
        [[1.0, 0.5], [2.0, 0.5]]
    """
    if len(measurements) == 0:
        raise ValueError("Cannot flatten an empty measurement set.")
    stacked = np.array([np.asarray(m, dtype=np.float64) for m in measurements])
    if stacked.ndim != 3 or stacked.shape[2] != 2:
        raise ValueError("Measurements must all be (k, 2) arrays of the same shape.")
    flattened = stacked[0].copy()
    flattened[:, 1] = stacked[:, :, 1].mean(axis=0)
    return flattened


def measure_match_set(
    metric: Metric,
    rules: FormatRules,
    n_matches: int,
    meta_type: MetaType = MetaType.PURE_RANDOM,
    seed: int | None = 93413731,
) -> MetricResults:
    """Measure ``metric`` over ``n_matches`` matches on synthetic metas.

    Each match draws a fresh 2D×2D winrate matrix (D = decks_per_player);
    player 0 brings decks 0…D−1 and player 1 brings D…2D−1, so the players
    never share an archetype.

    Args:
        metric:    Metric to measure (see METRICS).
        rules:     Format to play.
        n_matches: Number of matches to average (> 0).
        meta_type: Meta generator; only MetaType.PURE_RANDOM is available.
        seed:      NumPy random seed for reproducibility. None = unseeded.

    Returns:
        MetricResults with the averaged [x, y] rows.
    """
    if n_matches <= 0:
        raise ValueError(f"n_matches must be positive, got {n_matches}.")

    rng = np.random.default_rng(seed)
    decks_pp = rules.decks_per_player
    decks = [list(range(decks_pp)), list(range(decks_pp, 2 * decks_pp))]
    winrates_set = winrate_matrix_set(2 * decks_pp, n_matches, meta_type, rng)

    logger.info(
        "Measuring %s over %d matches of %s (meta type %d)",
        metric.info.title,
        n_matches,
        rules,
        int(meta_type),
    )
    measurements = []
    for winrates in winrates_set:
        match = evaluate(decks, rules, MetaModel(winrates, meta_type=int(meta_type)))
        measurements.append(metric.measure(match))

    return MetricResults(
        metric_info=metric.info,
        version=VERSION,
        rules=rules,
        meta_type=int(meta_type),
        n_matches=n_matches,
        results=flatten_measurement_set(measurements),
    )


if __name__ == "__main__":
    from src.analysis.match_report import print_match_summary, print_metric_results
    from src.engine.formats import CORE_FORMATS

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    demo_rules = FormatRules(True, False, True, True, 1, 1, 2, 3, "Shield Phase Conquest BO3")
    demo_meta = MetaModel(
        [
            [0.5, 0.6, 0.4, 0.55],
            [0.4, 0.5, 0.6, 0.55],
            [0.6, 0.4, 0.5, 0.55],
            [0.45, 0.45, 0.45, 0.5],
        ]
    )
    print_match_summary(evaluate([[1, 2, 3], [0, 1, 2]], demo_rules, demo_meta))

    for key in ("SHIELD_PHASE_CONQUEST_BO5", "LAST_HERO_STANDING_BO5"):
        print_metric_results(measure_match_set(MATCH_LENGTH, CORE_FORMATS[key], n_matches=10))

"""
Match tree construction and bottom-up equilibrium solving.

A match is an extensive-form game that descends level by level:

    root → [protect] → [ban] → deck choice → game → (deck choice | outcome) …

Protect and ban appear once each, only when the format uses them. Deck
choice and game alternate until one player reaches games_to_win.

Vertex kinds
------------
  ROOT         Wraps the format and meta; exactly one child.
  PROTECT      Both players simultaneously protect protect_count of their
               own decks. Solved as a matrix game.
  BAN          Both players simultaneously ban ban_count of the opponent's
               unprotected decks. Solved as a matrix game.
  DECK_CHOICE  Both players simultaneously pick a deck for the next game,
               unless the switch rules lock them to their previous deck.
               Solved as a matrix game.
  GAME         Chance vertex: player 0 wins with winrates[d0][d1].
  OUTCOME      Terminal: one player has won the match.

Storage
-------
Vertices live in a flat arena (MatchRoot.vertices) and refer to their
children by arena index. Children are listed row-major over the joint
choice matrix, i.e. child ``i * n_p1_options + j`` answers player 0's
option ``i`` and player 1's option ``j``. A per-evaluation memo maps each
canonical (kind, state) key to its arena index, so distinct move orders
that reach the same residual state share one vertex and the tree becomes a
DAG. Children are always built before their parent, so a vertex's index is
greater than every child index and the root is the last vertex.

Remaining decks are immutable tuples that keep the starting order; removing
decks never reorders them, which keeps enumeration order (and therefore
strategy vectors) deterministic.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from itertools import combinations
from typing import Callable, Iterator, NamedTuple, Sequence, Union

import numpy as np

from src.solvers.matrix_game import solve

from .errors import EvaluationPreconditionError
from .formats import FormatRules
from .meta import MetaModel
from .settings import P0, P1, PLAYERS, opponent

logger = logging.getLogger(__name__)

# ─── Type aliases ─────────────────────────────────────────────────────────────

Decks = tuple[int, ...]
DeckPair = tuple[Decks, Decks]
Wins = tuple[int, int]
VictoryProbabilities = tuple[float, float]


# ─── Vertex kinds and states ──────────────────────────────────────────────────


class VertexKind(Enum):
    ROOT = "root"
    PROTECT = "protect"
    BAN = "ban"
    DECK_CHOICE = "deck_choice"
    GAME = "game"
    OUTCOME = "outcome"


DECISION_KINDS: frozenset[VertexKind] = frozenset(
    {VertexKind.PROTECT, VertexKind.BAN, VertexKind.DECK_CHOICE}
)
"""Kinds solved as simultaneous-choice matrix games."""


class RootState(NamedTuple):
    wins: Wins
    decks_remaining: DeckPair


class ProtectState(NamedTuple):
    wins: Wins
    decks_remaining: DeckPair


class BanState(NamedTuple):
    """State before bans.

    Attributes:
        decks_protected: Each player's own protected decks (empty tuples when
                         the format has no protect phase).
    """

    wins: Wins
    decks_remaining: DeckPair
    decks_protected: DeckPair


class DeckChoiceState(NamedTuple):
    """State before both players pick a deck.

    Attributes:
        previous_decks:  Decks used in the last game, or None before game 1.
        previous_winner: Winner of the last game, or None before game 1.
    """

    wins: Wins
    decks_remaining: DeckPair
    previous_decks: tuple[int, int] | None
    previous_winner: int | None


class GameState(NamedTuple):
    wins: Wins
    decks_remaining: DeckPair
    current_decks: tuple[int, int]


class OutcomeState(NamedTuple):
    wins: Wins
    decks_remaining: DeckPair
    winner: int


VertexState = Union[RootState, ProtectState, BanState, DeckChoiceState, GameState, OutcomeState]


@dataclass(frozen=True, eq=False)
class Vertex:
    """One solved vertex of a match tree.

    Attributes:
        index:                 Position in the owning MatchRoot's arena.
        kind:                  Which stage of the match this vertex is.
        state:                 Kind-specific immutable game state.
        children:              Arena indices of the children (row-major over
                               the joint choice matrix at decision vertices;
                               [player 0 wins, player 1 wins] at games).
        strategies:            (player 0, player 1) equilibrium strategies at
                               decision vertices, None elsewhere.
        victory_probabilities: (P(player 0 wins match), P(player 1 wins match)).
    """

    index: int
    kind: VertexKind
    state: VertexState
    children: tuple[int, ...]
    strategies: tuple[np.ndarray, np.ndarray] | None
    victory_probabilities: VictoryProbabilities

    @property
    def wins(self) -> Wins:
        return self.state.wins

    @property
    def decks_remaining(self) -> DeckPair:
        return self.state.decks_remaining

    @property
    def is_decision(self) -> bool:
        return self.kind in DECISION_KINDS

    @property
    def is_terminal(self) -> bool:
        return self.kind is VertexKind.OUTCOME


# ─── Solved match ─────────────────────────────────────────────────────────────


@dataclass(frozen=True, eq=False)
class MatchRoot:
    """A fully solved match: the arena of vertices plus the inputs.

    Attributes:
        rules:      Format the match was evaluated under.
        meta:       Winrate matrix the match was evaluated against.
        vertices:   Arena of unique vertices; the root is the last entry.
    """

    rules: FormatRules
    meta: MetaModel
    vertices: tuple[Vertex, ...]

    @property
    def root(self) -> Vertex:
        return self.vertices[-1]

    @property
    def decks(self) -> DeckPair:
        """Each player's starting decks."""
        return self.root.decks_remaining

    @property
    def victory_probabilities(self) -> VictoryProbabilities:
        return self.root.victory_probabilities

    def vertex(self, index: int) -> Vertex:
        return self.vertices[index]

    def children(self, vertex: Vertex) -> list[Vertex]:
        return [self.vertices[i] for i in vertex.children]

    def iter_vertices(self) -> Iterator[Vertex]:
        """Yield every unique vertex, children before parents."""
        return iter(self.vertices)

    def kind_counts(self) -> Counter[VertexKind]:
        return Counter(v.kind for v in self.vertices)

    def depth(self) -> int:
        """Number of edges on the longest root-to-outcome path."""
        depths: dict[int, int] = {}
        for vertex in self.vertices:
            if vertex.children:
                depths[vertex.index] = 1 + max(depths[c] for c in vertex.children)
            else:
                depths[vertex.index] = 0
        return depths[self.root.index]

    def to_records(self) -> list[dict]:
        """Flatten the arena into index-addressed plain dicts.

        Each record carries its children as arena indices (no back-pointers),
        so the tree can be rebuilt by index resolution.
        """
        records = []
        for vertex in self.vertices:
            record = {"index": vertex.index, "kind": vertex.kind.value}
            for name, value in vertex.state._asdict().items():
                record[name] = _to_plain(value)
            record["children"] = list(vertex.children)
            record["strategies"] = (
                None if vertex.strategies is None else [s.tolist() for s in vertex.strategies]
            )
            record["victory_probabilities"] = list(vertex.victory_probabilities)
            records.append(record)
        return records

    def __len__(self) -> int:
        return len(self.vertices)


def _to_plain(value):
    if isinstance(value, tuple):
        return [_to_plain(v) for v in value]
    return value


# ─── Set helpers ──────────────────────────────────────────────────────────────


def subsets(items: Sequence[int], size: int) -> list[Decks]:
    """All size-``size`` subsets of ``items``, preserving item order.

    Examples:
        >>> subsets((1, 2, 3), 2)
        [(1, 2), (1, 3), (2, 3)]
        >>> subsets((1, 2), 0)
        [()]
        >>> subsets((1, 2), 3)
        []
    """
    if size < 0:
        return []
    return list(combinations(items, size))


def _without(decks: Decks, removed: Sequence[int]) -> Decks:
    """``decks`` minus every deck in ``removed``, order kept."""
    return tuple(d for d in decks if d not in removed)


def _deck_options(rules: FormatRules, state: DeckChoiceState, player: int) -> Decks:
    if state.previous_winner is not None:
        won_last = state.previous_winner == player
        may_switch = rules.winner_may_switch if won_last else rules.loser_may_switch
        if not may_switch:
            return (state.previous_decks[player],)
    return state.decks_remaining[player]


def decision_options(rules: FormatRules, kind: VertexKind, state: VertexState) -> tuple[list, list]:
    """Each player's options at a decision vertex, in solve order.

    PROTECT:     tuples of the player's own decks to protect.
    BAN:         tuples of the opponent's unprotected decks to ban.
    DECK_CHOICE: single deck indices; only the previous deck when the switch
                 rules lock the player to it.

    Raises:
        ValueError: For non-decision kinds.
    """
    remaining = state.decks_remaining
    if kind is VertexKind.PROTECT:
        return (
            subsets(remaining[P0], rules.protect_count),
            subsets(remaining[P1], rules.protect_count),
        )
    if kind is VertexKind.BAN:
        protected = state.decks_protected
        # Each player bans from the opponent's unprotected decks.
        return (
            subsets(_without(remaining[P1], protected[P1]), rules.ban_count),
            subsets(_without(remaining[P0], protected[P0]), rules.ban_count),
        )
    if kind is VertexKind.DECK_CHOICE:
        return (
            list(_deck_options(rules, state, P0)),
            list(_deck_options(rules, state, P1)),
        )
    raise ValueError(f"{kind.value} vertices have no simultaneous choice.")


# ─── Tree builder ─────────────────────────────────────────────────────────────


_Solved = tuple[tuple[int, ...], Union[tuple[np.ndarray, np.ndarray], None], VictoryProbabilities]


class _TreeBuilder:
    """Builds and solves one match tree.

    Holds the format, meta and memo for a single evaluate() call; nothing is
    shared between builders, so independent evaluations are safe to run
    concurrently.
    """

    def __init__(self, rules: FormatRules, meta: MetaModel, verify: bool) -> None:
        self.rules = rules
        self.meta = meta
        self.verify = verify
        self.vertices: list[Vertex] = []
        self._memo: dict[tuple[VertexKind, VertexState], int] = {}
        self._solvers: dict[VertexKind, Callable[[VertexState], _Solved]] = {
            VertexKind.ROOT: self._solve_root,
            VertexKind.PROTECT: self._solve_protect,
            VertexKind.BAN: self._solve_ban,
            VertexKind.DECK_CHOICE: self._solve_deck_choice,
            VertexKind.GAME: self._solve_game,
            VertexKind.OUTCOME: self._solve_outcome,
        }

    def build(self, kind: VertexKind, state: VertexState) -> Vertex:
        """Return the solved vertex for (kind, state), building it if new."""
        key = (kind, state)
        index = self._memo.get(key)
        if index is not None:
            return self.vertices[index]

        children, strategies, victory_probabilities = self._solvers[kind](state)
        vertex = Vertex(
            index=len(self.vertices),
            kind=kind,
            state=state,
            children=children,
            strategies=strategies,
            victory_probabilities=victory_probabilities,
        )
        self.vertices.append(vertex)
        self._memo[key] = vertex.index
        return vertex

    # ─── Simultaneous choices ─────────────────────────────────────────────────

    def _solve_choices(
        self,
        kind: VertexKind,
        p0_options: Sequence,
        p1_options: Sequence,
        make_child: Callable[[object, object], Vertex],
    ) -> _Solved:
        """Build one child per joint choice and solve the resulting matrix game."""
        children: list[int] = []
        payoffs = np.empty((len(p0_options), len(p1_options)), dtype=np.float64)
        for i, p0_choice in enumerate(p0_options):
            for j, p1_choice in enumerate(p1_options):
                child = make_child(p0_choice, p1_choice)
                children.append(child.index)
                payoffs[i, j] = child.victory_probabilities[P0]

        solution = solve(payoffs, verify=self.verify)
        logger.debug(
            "%s payoffs:\n%s\nvalue=%.6f p0=%s p1=%s",
            kind.value,
            payoffs,
            solution.expected_value,
            solution.strategy_p0,
            solution.strategy_p1,
        )

        strategy_p0 = solution.strategy_p0
        strategy_p1 = solution.strategy_p1
        strategy_p0.setflags(write=False)
        strategy_p1.setflags(write=False)
        value = solution.expected_value
        return tuple(children), (strategy_p0, strategy_p1), (value, 1.0 - value)

    # ─── Per-kind solving ─────────────────────────────────────────────────────

    def _solve_root(self, state: RootState) -> _Solved:
        if self.rules.protect_count > 0:
            child = self.build(VertexKind.PROTECT, ProtectState(state.wins, state.decks_remaining))
        elif self.rules.ban_count > 0:
            child = self.build(
                VertexKind.BAN, BanState(state.wins, state.decks_remaining, ((), ()))
            )
        else:
            child = self.build(
                VertexKind.DECK_CHOICE,
                DeckChoiceState(state.wins, state.decks_remaining, None, None),
            )
        return (child.index,), None, child.victory_probabilities

    def _solve_protect(self, state: ProtectState) -> _Solved:
        remaining = state.decks_remaining
        p0_options, p1_options = decision_options(self.rules, VertexKind.PROTECT, state)

        def make_child(p0_protect: Decks, p1_protect: Decks) -> Vertex:
            if self.rules.ban_count > 0:
                return self.build(
                    VertexKind.BAN, BanState(state.wins, remaining, (p0_protect, p1_protect))
                )
            return self.build(
                VertexKind.DECK_CHOICE, DeckChoiceState(state.wins, remaining, None, None)
            )

        return self._solve_choices(VertexKind.PROTECT, p0_options, p1_options, make_child)

    def _solve_ban(self, state: BanState) -> _Solved:
        remaining = state.decks_remaining
        p0_options, p1_options = decision_options(self.rules, VertexKind.BAN, state)

        def make_child(p0_ban: Decks, p1_ban: Decks) -> Vertex:
            after_bans = (_without(remaining[P0], p1_ban), _without(remaining[P1], p0_ban))
            return self.build(
                VertexKind.DECK_CHOICE, DeckChoiceState(state.wins, after_bans, None, None)
            )

        return self._solve_choices(VertexKind.BAN, p0_options, p1_options, make_child)

    def _solve_deck_choice(self, state: DeckChoiceState) -> _Solved:
        p0_options, p1_options = decision_options(self.rules, VertexKind.DECK_CHOICE, state)

        def make_child(p0_deck: int, p1_deck: int) -> Vertex:
            return self.build(
                VertexKind.GAME, GameState(state.wins, state.decks_remaining, (p0_deck, p1_deck))
            )

        return self._solve_choices(VertexKind.DECK_CHOICE, p0_options, p1_options, make_child)

    def _solve_game(self, state: GameState) -> _Solved:
        current = state.current_decks
        children: list[Vertex] = []
        for winner in PLAYERS:
            loser = opponent(winner)
            wins = list(state.wins)
            wins[winner] += 1
            remaining = list(state.decks_remaining)
            if self.rules.remove_winner_deck:
                remaining[winner] = _without(remaining[winner], (current[winner],))
            if self.rules.remove_loser_deck:
                remaining[loser] = _without(remaining[loser], (current[loser],))

            if wins[winner] >= self.rules.games_to_win:
                child = self.build(
                    VertexKind.OUTCOME, OutcomeState((wins[0], wins[1]), tuple(remaining), winner)
                )
            else:
                child = self.build(
                    VertexKind.DECK_CHOICE,
                    DeckChoiceState((wins[0], wins[1]), tuple(remaining), current, winner),
                )
            children.append(child)

        p0_game_win = self.meta.winrate(current[P0], current[P1])
        p0_wins_vp = children[P0].victory_probabilities
        p1_wins_vp = children[P1].victory_probabilities
        victory_probabilities = (
            p0_game_win * p0_wins_vp[P0] + (1.0 - p0_game_win) * p1_wins_vp[P0],
            p0_game_win * p0_wins_vp[P1] + (1.0 - p0_game_win) * p1_wins_vp[P1],
        )
        return tuple(c.index for c in children), None, victory_probabilities

    def _solve_outcome(self, state: OutcomeState) -> _Solved:
        victory_probabilities = (1.0, 0.0) if state.winner == P0 else (0.0, 1.0)
        return (), None, victory_probabilities


# ─── Public API ───────────────────────────────────────────────────────────────


def _check_starting_decks(
    decks: Sequence[Sequence[int]],
    rules: FormatRules,
    meta: MetaModel,
) -> DeckPair:
    """Validate and normalise starting decks into a pair of int tuples.

    Raises:
        EvaluationPreconditionError: Wrong player count, wrong deck count,
                                     out-of-range, non-integer or repeated
                                     deck indices.
    """
    try:
        per_player = [tuple(player_decks) for player_decks in decks]
    except TypeError as exc:
        raise EvaluationPreconditionError(
            "Must input a list of decks for each player."
        ) from exc
    if len(per_player) != 2:
        raise EvaluationPreconditionError(
            f"Must input a list of decks for each of 2 players, got {len(per_player)}."
        )

    n_decks = meta.n_decks
    normalised = []
    for player, player_decks in enumerate(per_player):
        if len(player_decks) != rules.decks_per_player:
            raise EvaluationPreconditionError(
                f"Player {player} has {len(player_decks)} decks; the format "
                f"requires {rules.decks_per_player}."
            )
        for deck in player_decks:
            if isinstance(deck, bool) or not isinstance(deck, (int, np.integer)):
                raise EvaluationPreconditionError(
                    f"Deck index {deck!r} for player {player} is not an integer."
                )
            if not 0 <= deck < n_decks:
                raise EvaluationPreconditionError(
                    f"Deck index {deck} for player {player} exceeds winrate matrix "
                    f"size {n_decks}."
                )
        if len(set(player_decks)) != len(player_decks):
            raise EvaluationPreconditionError(
                f"Player {player} lists the same deck more than once: {player_decks}."
            )
        normalised.append(tuple(int(d) for d in player_decks))
    return normalised[P0], normalised[P1]


def evaluate(
    decks: Sequence[Sequence[int]],
    rules: FormatRules,
    meta: MetaModel,
    verify: bool = False,
) -> MatchRoot:
    """Build the match tree for two deck lists and solve it bottom-up.

    Args:
        decks:  [player 0 decks, player 1 decks]; each a list of
                rules.decks_per_player distinct indices into meta.winrates.
        rules:  Match format.
        meta:   Winrate matrix.
        verify: Run the solver's optimality check at every decision vertex.

    Returns:
        MatchRoot holding every unique solved vertex.

    Raises:
        EvaluationPreconditionError: Malformed starting decks (nothing built).
        SolverInternalError:         A nested matrix game could not be solved.

    Example:
        >>> rules = FormatRules(True, False, True, True, 0, 0, 1, 1)
        >>> meta = MetaModel([[0.5, 0.75], [0.25, 0.5]])
        >>> evaluate([[0], [1]], rules, meta).victory_probabilities
        (0.75, 0.25)
    """
    starting_decks = _check_starting_decks(decks, rules, meta)

    builder = _TreeBuilder(rules, meta, verify)
    builder.build(VertexKind.ROOT, RootState((0, 0), starting_decks))
    match = MatchRoot(rules=rules, meta=meta, vertices=tuple(builder.vertices))

    logger.debug(
        "Evaluated %s with decks %s: %d unique vertices, P(P0 wins)=%.6f",
        rules,
        starting_decks,
        len(match),
        match.victory_probabilities[P0],
    )
    return match

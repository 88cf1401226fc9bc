"""Tests for src/engine/match_tree.py — tree construction and solving.

    TestShieldConquest      — protect + ban + best-of-3 reference match
    TestSingleGame          — one deck, one game: the forced matchup
    TestSolvedTreeInvariants — probabilities, arena order, memoisation
    TestSwitchRules         — decks locked by winner/loser switch flags
    TestDecisionOptions     — protect/ban/deck-choice option enumeration
    TestStartingDecks       — EvaluationPreconditionError cases
    TestRecords             — flattened index-addressed export
"""

from __future__ import annotations

import numpy as np
import pytest

from src.engine.errors import EvaluationPreconditionError
from src.engine.match_tree import (
    BanState,
    DeckChoiceState,
    GameState,
    MatchRoot,
    ProtectState,
    VertexKind,
    decision_options,
    evaluate,
    subsets,
)
from src.engine.meta import MetaModel
from src.engine.settings import P0, P1


def _first_path_kinds(match: MatchRoot) -> list[VertexKind]:
    kinds = []
    vertex = match.root
    while True:
        kinds.append(vertex.kind)
        if not vertex.children:
            return kinds
        vertex = match.vertex(vertex.children[0])


# ─── Reference match ──────────────────────────────────────────────────────────


class TestShieldConquest:
    def test_victory_probabilities_sum_to_one(self, shield_match):
        vp = shield_match.victory_probabilities
        assert vp[P0] + vp[P1] == pytest.approx(1.0, abs=1e-7)
        assert 0.0 < vp[P0] < 1.0

    def test_level_order(self, shield_match):
        kinds = _first_path_kinds(shield_match)
        assert kinds[:5] == [
            VertexKind.ROOT,
            VertexKind.PROTECT,
            VertexKind.BAN,
            VertexKind.DECK_CHOICE,
            VertexKind.GAME,
        ]
        assert kinds[-1] is VertexKind.OUTCOME

    def test_every_leaf_is_a_finished_outcome(self, shield_match):
        leaves = [v for v in shield_match.iter_vertices() if not v.children]
        assert leaves
        for leaf in leaves:
            assert leaf.kind is VertexKind.OUTCOME
            assert leaf.wins[leaf.state.winner] == 2
            assert leaf.wins[1 - leaf.state.winner] < 2

    def test_depth(self, shield_match):
        # root, protect, ban, then up to three deck-choice/game pairs.
        assert shield_match.depth() == 9

    def test_starting_decks(self, shield_match):
        assert shield_match.decks == ((1, 2, 3), (0, 1, 2))

    def test_protect_strategies(self, shield_match):
        protect = shield_match.vertex(shield_match.root.children[0])
        assert protect.kind is VertexKind.PROTECT
        assert len(protect.strategies[P0]) == 3
        assert len(protect.strategies[P1]) == 3
        assert len(protect.children) == 9

    def test_ban_excludes_protected_decks(self, shield_match):
        for vertex in shield_match.iter_vertices():
            if vertex.kind is not VertexKind.BAN:
                continue
            p0_bans, p1_bans = decision_options(shield_match.rules, vertex.kind, vertex.state)
            protected = vertex.state.decks_protected
            assert all(ban[0] not in protected[P1] for ban in p0_bans)
            assert all(ban[0] not in protected[P0] for ban in p1_bans)
            assert len(p0_bans) == len(p1_bans) == 2

    def test_one_deck_left_in_deciding_game(self, shield_match):
        for vertex in shield_match.iter_vertices():
            if vertex.kind is VertexKind.DECK_CHOICE and vertex.wins == (1, 1):
                assert len(vertex.decks_remaining[P0]) == 1
                assert len(vertex.decks_remaining[P1]) == 1

    def test_all_kinds_present(self, shield_match):
        counts = shield_match.kind_counts()
        assert counts[VertexKind.ROOT] == 1
        assert counts[VertexKind.PROTECT] == 1
        for kind in (VertexKind.BAN, VertexKind.DECK_CHOICE, VertexKind.GAME, VertexKind.OUTCOME):
            assert counts[kind] > 0
        assert sum(counts.values()) == len(shield_match)

    def test_verify_does_not_change_result(self, shield_match, shield_conquest_bo3, reference_meta):
        checked = evaluate([[1, 2, 3], [0, 1, 2]], shield_conquest_bo3, reference_meta, verify=True)
        assert checked.victory_probabilities == shield_match.victory_probabilities

    def test_deterministic(self, shield_match, shield_conquest_bo3, reference_meta):
        again = evaluate([[1, 2, 3], [0, 1, 2]], shield_conquest_bo3, reference_meta)
        assert again is not shield_match
        assert again.victory_probabilities == shield_match.victory_probabilities
        assert len(again) == len(shield_match)
        for a, b in zip(again.iter_vertices(), shield_match.iter_vertices()):
            assert a.state == b.state
            assert a.victory_probabilities == b.victory_probabilities


# ─── Single forced game ───────────────────────────────────────────────────────


class TestSingleGame:
    def test_collapses_to_deck_choice_game_outcome(self, rules, reference_meta):
        match = evaluate([[0], [1]], rules(), reference_meta)
        assert _first_path_kinds(match) == [
            VertexKind.ROOT,
            VertexKind.DECK_CHOICE,
            VertexKind.GAME,
            VertexKind.OUTCOME,
        ]
        assert len(match) == 5
        assert match.depth() == 3

    def test_exact_forced_matchup(self, rules):
        meta = MetaModel([[0.5, 0.75], [0.25, 0.5]])
        match = evaluate([[0], [1]], rules(), meta)
        assert match.victory_probabilities == (0.75, 0.25)

    def test_forced_matchup_reference_meta(self, rules, reference_meta):
        match = evaluate([[3], [2]], rules(), reference_meta)
        assert match.victory_probabilities[P0] == pytest.approx(0.45, abs=1e-15)
        assert match.victory_probabilities[P1] == pytest.approx(0.55, abs=1e-15)

    def test_mirror_match(self, rules, reference_meta):
        match = evaluate([[2], [2]], rules(), reference_meta)
        assert match.victory_probabilities == (0.5, 0.5)

    def test_excess_decks_solve_a_choice(self, rules, reference_meta):
        # P0 picks 0 or 1 against P1's 2 or 3; deck 1 dominates and P1 answers with 3.
        match = evaluate([[0, 1], [2, 3]], rules(decks=2, allow_excess_decks=True), reference_meta)
        assert match.victory_probabilities[P0] == pytest.approx(0.55)
        choice = match.vertex(match.root.children[0])
        np.testing.assert_allclose(choice.strategies[P1], [0.0, 1.0], atol=1e-9)


# ─── Invariants ───────────────────────────────────────────────────────────────


class TestSolvedTreeInvariants:
    def test_every_vertex_sums_to_one(self, shield_match, conquest_bo3_match):
        for match in (shield_match, conquest_bo3_match):
            for vertex in match.iter_vertices():
                assert sum(vertex.victory_probabilities) == pytest.approx(1.0, abs=1e-7)

    def test_children_precede_parents(self, shield_match):
        for vertex in shield_match.iter_vertices():
            assert all(c < vertex.index for c in vertex.children)
        assert shield_match.root.index == len(shield_match) - 1
        assert shield_match.root.kind is VertexKind.ROOT

    def test_arena_index_matches_position(self, shield_match):
        for position, vertex in enumerate(shield_match.vertices):
            assert vertex.index == position

    def test_states_are_unique(self, shield_match):
        keys = [(v.kind, v.state) for v in shield_match.iter_vertices()]
        assert len(keys) == len(set(keys))

    def test_decision_strategies_are_distributions(self, shield_match):
        for vertex in shield_match.iter_vertices():
            if vertex.is_decision:
                s0, s1 = vertex.strategies
                assert s0.sum() == pytest.approx(1.0, abs=1e-7)
                assert s1.sum() == pytest.approx(1.0, abs=1e-7)
                assert len(vertex.children) == s0.size * s1.size
            else:
                assert vertex.strategies is None

    def test_strategies_read_only(self, shield_match):
        protect = shield_match.vertex(shield_match.root.children[0])
        with pytest.raises(ValueError):
            protect.strategies[P0][0] = 1.0

    def test_decision_value_matches_children(self, conquest_bo3_match):
        match = conquest_bo3_match
        for vertex in match.iter_vertices():
            if not vertex.is_decision:
                continue
            s0, s1 = vertex.strategies
            child_values = np.array([match.vertex(c).victory_probabilities[P0] for c in vertex.children])
            payoffs = child_values.reshape(s0.size, s1.size)
            assert float(s0 @ payoffs @ s1) == pytest.approx(vertex.victory_probabilities[P0], abs=1e-7)

    def test_game_mixes_children_by_winrate(self, conquest_bo3_match):
        match = conquest_bo3_match
        for vertex in match.iter_vertices():
            if vertex.kind is not VertexKind.GAME:
                continue
            d0, d1 = vertex.state.current_decks
            p = match.meta.winrate(d0, d1)
            p0_wins, p1_wins = match.children(vertex)
            expected = p * p0_wins.victory_probabilities[P0] + (1 - p) * p1_wins.victory_probabilities[P0]
            assert vertex.victory_probabilities[P0] == pytest.approx(expected)

    def test_conquest_removes_winning_deck(self, conquest_bo3_match):
        match = conquest_bo3_match
        for vertex in match.iter_vertices():
            if vertex.kind is not VertexKind.GAME:
                continue
            p0_wins, p1_wins = match.children(vertex)
            d0, d1 = vertex.state.current_decks
            assert d0 not in p0_wins.decks_remaining[P0]
            assert p0_wins.decks_remaining[P1] == vertex.decks_remaining[P1]
            assert d1 not in p1_wins.decks_remaining[P1]

    def test_outcomes_are_one_hot(self, shield_match):
        for vertex in shield_match.iter_vertices():
            if vertex.is_terminal:
                expected = (1.0, 0.0) if vertex.state.winner == P0 else (0.0, 1.0)
                assert vertex.victory_probabilities == expected

    def test_protect_without_ban_goes_to_deck_choice(self, rules, reference_meta):
        match = evaluate([[0, 1], [2, 3]], rules(protect=1, games=2, decks=2), reference_meta)
        protect = match.vertex(match.root.children[0])
        assert protect.kind is VertexKind.PROTECT
        children = match.children(protect)
        assert {c.kind for c in children} == {VertexKind.DECK_CHOICE}
        # Protecting changes nothing without bans, so every choice shares one child.
        assert len(set(protect.children)) == 1

    def test_ban_only_format(self, conquest_bo3_match):
        assert _first_path_kinds(conquest_bo3_match)[:3] == [
            VertexKind.ROOT,
            VertexKind.BAN,
            VertexKind.DECK_CHOICE,
        ]

    def test_vertex_flags(self, shield_match):
        root = shield_match.root
        assert not root.is_decision
        assert not root.is_terminal
        assert root.strategies is None


# ─── Switch rules ─────────────────────────────────────────────────────────────


class TestSwitchRules:
    def test_winner_locked_in_last_hero_standing(self, rules, reference_meta):
        lhs = rules(
            games=2, decks=2, remove_winner=False, remove_loser=True, winner_switch=False
        )
        match = evaluate([[0, 1], [2, 3]], lhs, reference_meta)
        locked = 0
        for vertex in match.iter_vertices():
            if vertex.kind is not VertexKind.DECK_CHOICE or vertex.state.previous_winner is None:
                continue
            winner = vertex.state.previous_winner
            options = decision_options(match.rules, vertex.kind, vertex.state)
            assert options[winner] == [vertex.state.previous_decks[winner]]
            assert vertex.strategies[winner] == pytest.approx([1.0])
            locked += 1
        assert locked > 0

    def test_loser_deck_removed(self, rules, reference_meta):
        lhs = rules(
            games=2, decks=2, remove_winner=False, remove_loser=True, winner_switch=False
        )
        match = evaluate([[0, 1], [2, 3]], lhs, reference_meta)
        for vertex in match.iter_vertices():
            if vertex.kind is not VertexKind.GAME:
                continue
            p0_wins, _ = match.children(vertex)
            d0, d1 = vertex.state.current_decks
            assert d1 not in p0_wins.decks_remaining[P1]
            assert d0 in p0_wins.decks_remaining[P0]

    def test_no_switch_keeps_both_decks(self, rules, reference_meta):
        fixed = rules(
            games=2, decks=1, remove_winner=False, winner_switch=False, loser_switch=False
        )
        match = evaluate([[0], [1]], fixed, reference_meta)
        p = 0.6
        expected = p * p + 2 * p * p * (1 - p)
        assert match.victory_probabilities[P0] == pytest.approx(expected)


# ─── Options ──────────────────────────────────────────────────────────────────


class TestDecisionOptions:
    def test_subsets(self):
        assert subsets((1, 2, 3), 2) == [(1, 2), (1, 3), (2, 3)]
        assert subsets((1, 2), 0) == [()]
        assert subsets((1, 2), 3) == []
        assert subsets((1, 2), -1) == []

    def test_protect_options(self, shield_conquest_bo3):
        state = ProtectState((0, 0), ((1, 2, 3), (0, 1, 2)))
        p0, p1 = decision_options(shield_conquest_bo3, VertexKind.PROTECT, state)
        assert p0 == [(1,), (2,), (3,)]
        assert p1 == [(0,), (1,), (2,)]

    def test_ban_options_target_opponent(self, shield_conquest_bo3):
        state = BanState((0, 0), ((1, 2, 3), (0, 1, 2)), ((3,), (0,)))
        p0, p1 = decision_options(shield_conquest_bo3, VertexKind.BAN, state)
        assert p0 == [(1,), (2,)]
        assert p1 == [(1,), (2,)]

    def test_first_deck_choice_uses_remaining(self, shield_conquest_bo3):
        state = DeckChoiceState((0, 0), ((1, 3), (0, 2)), None, None)
        p0, p1 = decision_options(shield_conquest_bo3, VertexKind.DECK_CHOICE, state)
        assert p0 == [1, 3]
        assert p1 == [0, 2]

    def test_game_has_no_options(self, shield_conquest_bo3):
        state = GameState((0, 0), ((1,), (0,)), (1, 0))
        with pytest.raises(ValueError):
            decision_options(shield_conquest_bo3, VertexKind.GAME, state)


# ─── Starting decks ───────────────────────────────────────────────────────────


class TestStartingDecks:
    @pytest.mark.parametrize(
        "decks",
        [
            [[0, 1, 2]],
            [[0, 1, 2], [0, 1, 2], [0, 1, 2]],
            [[0, 1], [0, 1, 2]],
            [[0, 1, 2], [0, 1, 4]],
            [[0, 1, 2], [-1, 1, 2]],
            [[0, 1, 1], [0, 1, 2]],
            [[0, 1, 2.0], [0, 1, 2]],
            [[0, 1, True], [0, 1, 2]],
            [0, 1],
        ],
        ids=[
            "one_player",
            "three_players",
            "too_few_decks",
            "index_too_large",
            "negative_index",
            "duplicate_deck",
            "float_index",
            "bool_index",
            "not_nested",
        ],
    )
    def test_rejected(self, decks, shield_conquest_bo3, reference_meta):
        with pytest.raises(EvaluationPreconditionError):
            evaluate(decks, shield_conquest_bo3, reference_meta)

    def test_precondition_error_is_value_error(self, shield_conquest_bo3, reference_meta):
        with pytest.raises(ValueError):
            evaluate([[0, 1]], shield_conquest_bo3, reference_meta)

    def test_numpy_indices_accepted(self, shield_match, shield_conquest_bo3, reference_meta):
        decks = [np.array([1, 2, 3]), np.array([0, 1, 2])]
        match = evaluate(decks, shield_conquest_bo3, reference_meta)
        assert match.decks == ((1, 2, 3), (0, 1, 2))
        assert match.victory_probabilities == shield_match.victory_probabilities

    def test_tuples_accepted(self, shield_match, shield_conquest_bo3, reference_meta):
        match = evaluate(((1, 2, 3), (0, 1, 2)), shield_conquest_bo3, reference_meta)
        assert match.victory_probabilities == shield_match.victory_probabilities


# ─── Records ──────────────────────────────────────────────────────────────────


class TestRecords:
    def test_one_record_per_vertex(self, shield_match):
        records = shield_match.to_records()
        assert len(records) == len(shield_match)
        assert [r["index"] for r in records] == list(range(len(shield_match)))

    def test_root_record(self, shield_match):
        root = shield_match.to_records()[-1]
        assert root["kind"] == "root"
        assert root["wins"] == [0, 0]
        assert root["decks_remaining"] == [[1, 2, 3], [0, 1, 2]]
        assert root["strategies"] is None
        assert root["victory_probabilities"] == list(shield_match.victory_probabilities)

    def test_children_resolve_by_index(self, shield_match):
        records = shield_match.to_records()
        for record, vertex in zip(records, shield_match.iter_vertices()):
            assert record["children"] == list(vertex.children)
            for child in record["children"]:
                assert records[child]["index"] == child

    def test_decision_record_strategies_are_lists(self, shield_match):
        records = shield_match.to_records()
        protect = records[shield_match.root.children[0]]
        assert protect["kind"] == "protect"
        assert isinstance(protect["strategies"][0], list)
        assert sum(protect["strategies"][0]) == pytest.approx(1.0)

    def test_outcome_record_has_winner(self, shield_match):
        outcomes = [r for r in shield_match.to_records() if r["kind"] == "outcome"]
        assert outcomes
        assert all(r["winner"] in (P0, P1) for r in outcomes)

"""
Shared pytest fixtures for HearthNash solver tests.

Provides the reference four-deck meta, a FormatRules factory with short
keyword names, and solved matches that several test modules reuse.
"""

from __future__ import annotations

import pytest

from src.engine.formats import FormatRules
from src.engine.match_tree import MatchRoot, evaluate
from src.engine.meta import MetaModel

# Rock-paper-scissors decks 0–2 plus a deck 3 that is slightly weaker
# against all of them.
REFERENCE_WINRATES: list[list[float]] = [
    [0.5, 0.6, 0.4, 0.55],
    [0.4, 0.5, 0.6, 0.55],
    [0.6, 0.4, 0.5, 0.55],
    [0.45, 0.45, 0.45, 0.5],
]


def make_format(
    protect: int = 0,
    ban: int = 0,
    games: int = 1,
    decks: int = 1,
    remove_winner: bool = True,
    remove_loser: bool = False,
    winner_switch: bool = True,
    loser_switch: bool = True,
    **kwargs,
) -> FormatRules:
    """Build FormatRules with Conquest-style defaults."""
    return FormatRules(
        remove_winner_deck=remove_winner,
        remove_loser_deck=remove_loser,
        winner_may_switch=winner_switch,
        loser_may_switch=loser_switch,
        protect_count=protect,
        ban_count=ban,
        games_to_win=games,
        decks_per_player=decks,
        **kwargs,
    )


@pytest.fixture(scope="session")
def rules():
    """The make_format factory, for tests that build ad-hoc formats."""
    return make_format


@pytest.fixture(scope="session")
def reference_winrates() -> list[list[float]]:
    return [list(row) for row in REFERENCE_WINRATES]


@pytest.fixture(scope="session")
def reference_meta() -> MetaModel:
    return MetaModel(REFERENCE_WINRATES)


@pytest.fixture(scope="session")
def shield_conquest_bo3() -> FormatRules:
    """protect=1, ban=1, first to 2, three decks, winner's deck removed."""
    return make_format(protect=1, ban=1, games=2, decks=3)


@pytest.fixture(scope="session")
def shield_match(shield_conquest_bo3: FormatRules, reference_meta: MetaModel) -> MatchRoot:
    return evaluate([[1, 2, 3], [0, 1, 2]], shield_conquest_bo3, reference_meta)


@pytest.fixture(scope="session")
def conquest_bo3_match(reference_meta: MetaModel) -> MatchRoot:
    return evaluate([[0, 1, 2], [1, 2, 3]], make_format(ban=1, games=2, decks=3), reference_meta)

"""
Match format rules: how many decks each player brings, how many are
protected and banned, how many games win the match, and what happens to a
deck after it wins or loses a game.

A FormatRules value validates itself on construction and is immutable
afterwards. Deck-count consistency:

    protects + bans                       ≤ decks_per_player
    bans + (games_to_win − 1) · removals  < decks_per_player

where ``removals`` counts how many of {winner deck, loser deck} are removed
after each game. In strict mode (the default) the second bound must also be
tight, i.e. both players are down to exactly one deck for the deciding game.
"""

from __future__ import annotations

from dataclasses import dataclass

from .errors import ConfigurationError


# ─── FormatRules ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FormatRules:
    """Immutable description of a match structure.

    Attributes:
        remove_winner_deck: The deck that won a game is removed from its
                            owner's remaining decks (Conquest).
        remove_loser_deck:  The deck that lost a game is removed from its
                            owner's remaining decks (Last Hero Standing).
        winner_may_switch:  The previous game's winner may pick a different
                            deck for the next game.
        loser_may_switch:   The previous game's loser may pick a different
                            deck for the next game.
        protect_count:      Decks each player protects from bans (≥ 0).
        ban_count:          Opponent decks each player bans (≥ 0).
        games_to_win:       Game wins needed to win the match (> 0).
        decks_per_player:   Decks each player starts with (> 0).
        name:               Display name; empty for ad-hoc formats.
        allow_excess_decks: Relax the strict check that no player has more
                            than one deck left for the deciding game.

    Raises:
        ConfigurationError: If the counts are inconsistent (see module doc).

    Example:
        >>> rules = FormatRules(True, False, True, True, 0, 1, 2, 3, "Conquest BO3")
        >>> rules.max_match_length
        3
    """

    remove_winner_deck: bool
    remove_loser_deck: bool
    winner_may_switch: bool
    loser_may_switch: bool
    protect_count: int
    ban_count: int
    games_to_win: int
    decks_per_player: int
    name: str = ""
    allow_excess_decks: bool = False

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        label = self.name or "<unnamed>"
        counts = (self.protect_count, self.ban_count, self.games_to_win, self.decks_per_player)
        if not all(isinstance(c, int) and not isinstance(c, bool) for c in counts):
            raise ConfigurationError(
                f"Format {label!r}: protect/ban/games/deck counts must be integers."
            )

        if (
            self.games_to_win <= 0
            or self.decks_per_player <= 0
            or self.protect_count < 0
            or self.ban_count < 0
        ):
            raise ConfigurationError(
                f"Format {label!r} has an invalid games_to_win, decks_per_player, "
                f"protect_count or ban_count value."
            )

        if self.protect_count + self.ban_count > self.decks_per_player:
            raise ConfigurationError(
                f"Format {label!r}: not enough decks to fulfil the protect and ban phases."
            )

        eliminations = self.max_deck_eliminations
        if eliminations >= self.decks_per_player:
            raise ConfigurationError(
                f"Format {label!r}: not enough decks to always allow "
                f"{self.games_to_win} game wins."
            )
        if not self.allow_excess_decks and eliminations + 1 != self.decks_per_player:
            raise ConfigurationError(
                f"Format {label!r} has excess decks per player: both players may "
                f"choose between more than one deck for the final game. "
                f"Pass allow_excess_decks=True to accept this."
            )

    # ─── Derived quantities ───────────────────────────────────────────────────

    @property
    def max_deck_eliminations(self) -> int:
        """Worst-case decks a player loses to bans and game removals."""
        max_wins_each = self.games_to_win - 1
        win_elims = max_wins_each if self.remove_winner_deck else 0
        loss_elims = max_wins_each if self.remove_loser_deck else 0
        return self.ban_count + win_elims + loss_elims

    @property
    def max_match_length(self) -> int:
        """Longest possible match in games: 2 · games_to_win − 1."""
        return 2 * self.games_to_win - 1

    def __str__(self) -> str:
        if self.name:
            return self.name
        return (
            f"{_b2s(self.remove_winner_deck)}{_b2s(self.remove_loser_deck)} "
            f"{_b2s(self.winner_may_switch)}{_b2s(self.loser_may_switch)}"
            f" - P{self.protect_count}B{self.ban_count}"
            f" G{self.games_to_win}D{self.decks_per_player}"
        )


def _b2s(flag: bool) -> str:
    return "T" if flag else "F"


# ─── Core formats ─────────────────────────────────────────────────────────────
# (remove_winner, remove_loser, winner_switch, loser_switch, protects, bans,
#  games_to_win, decks_per_player, name)
# Specialist uses a sideboard system and has no entry here.

CORE_FORMATS: dict[str, FormatRules] = {
    "ONE_GAME_NO_BAN": FormatRules(True, False, True, True, 0, 0, 1, 1, "1 Game No Bans"),
    "ONE_GAME_ONE_BAN": FormatRules(True, False, True, True, 0, 1, 1, 2, "1 Game 1 Ban"),
    "CONQUEST_BO3": FormatRules(True, False, True, True, 0, 1, 2, 3, "Conquest BO3"),
    "CONQUEST_BO5": FormatRules(True, False, True, True, 0, 1, 3, 4, "Conquest BO5"),
    "SHIELD_PHASE_CONQUEST_BO3": FormatRules(
        True, False, True, True, 1, 1, 2, 3, "Shield Phase Conquest BO3"
    ),
    "SHIELD_PHASE_CONQUEST_BO5": FormatRules(
        True, False, True, True, 1, 1, 3, 4, "Shield Phase Conquest BO5"
    ),
    "LAST_HERO_STANDING_BO3": FormatRules(
        False, True, False, True, 0, 1, 2, 3, "Last Hero Standing BO3"
    ),
    "LAST_HERO_STANDING_BO5": FormatRules(
        False, True, False, True, 0, 1, 3, 4, "Last Hero Standing BO5"
    ),
    "SHIELD_PHASE_LAST_HERO_STANDING_BO3": FormatRules(
        False, True, False, True, 1, 1, 2, 3, "Shield Phase Last Hero Standing BO3"
    ),
    "SHIELD_PHASE_LAST_HERO_STANDING_BO5": FormatRules(
        False, True, False, True, 1, 1, 3, 4, "Shield Phase Last Hero Standing BO5"
    ),
    "CONQUEST_NO_BANS_BO3": FormatRules(True, False, True, True, 0, 0, 2, 2, "Conquest No Bans BO3"),
    "CONQUEST_NO_BANS_BO5": FormatRules(True, False, True, True, 0, 0, 3, 3, "Conquest No Bans BO5"),
    "LAST_HERO_STANDING_NO_BANS_BO3": FormatRules(
        False, True, False, True, 0, 0, 2, 2, "Last Hero Standing No Bans BO3"
    ),
    "LAST_HERO_STANDING_NO_BANS_BO5": FormatRules(
        False, True, False, True, 0, 0, 3, 3, "Last Hero Standing No Bans BO5"
    ),
}


def get_format(key: str) -> FormatRules:
    """Look up a core format by key (case-insensitive).

    Raises:
        KeyError: If no core format has that key.

    Examples:
        >>> get_format("conquest_bo3").name
        'Conquest BO3'
    """
    try:
        return CORE_FORMATS[key.upper()]
    except KeyError:
        raise KeyError(f"Unknown format {key!r}. Known formats: {sorted(CORE_FORMATS)}") from None

"""
Meta model: the winrate matrix between deck archetypes.

    winrates[a][b] = probability that deck ``a`` beats deck ``b`` in one game

A valid matrix is square and non-empty, every entry lies in [0, 1], and
winrates[a][b] + winrates[b][a] == 1 within WINRATE_COMPLEMENT_TOLERANCE
(so every diagonal entry is ~0.5).

Real metas come from an external ingestion step; this module only generates
synthetic ones (MetaType.PURE_RANDOM) for aggregate metrics.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import NamedTuple, Sequence

import numpy as np

from .errors import MetaValidationError
from .settings import WINRATE_COMPLEMENT_TOLERANCE


class MetaType(IntEnum):
    """Source of a winrate matrix."""

    PURE_RANDOM = 0
    LEGEND_RANK10 = 1
    RANK11_RANK20 = 2


class DeckArchetype(NamedTuple):
    """Identity of one deck in the winrate matrix.

    Attributes:
        id:           External archetype id.
        name:         Display name, e.g. "Highlander Priest".
        player_class: Hero class the archetype belongs to.
    """

    id: int
    name: str
    player_class: str


# ─── MetaModel ────────────────────────────────────────────────────────────────


@dataclass(frozen=True, eq=False)
class MetaModel:
    """Validated, read-only winrate matrix plus deck identities.

    Attributes:
        winrates:   (N, N) float64 array, write-protected after validation.
        archetypes: Length-N tuple of DeckArchetype (or None when unknown).
        meta_type:  MetaType (or -1) describing where the matrix came from.

    Raises:
        MetaValidationError: If the matrix breaks any invariant in the module
                             doc, or archetypes has the wrong length.
    """

    winrates: np.ndarray
    archetypes: tuple[DeckArchetype | None, ...] | None = None
    meta_type: int = -1

    def __post_init__(self) -> None:
        matrix = _as_winrate_matrix(self.winrates)
        matrix.setflags(write=False)
        object.__setattr__(self, "winrates", matrix)

        n = matrix.shape[0]
        if self.archetypes is None:
            object.__setattr__(self, "archetypes", (None,) * n)
        else:
            archetypes = tuple(self.archetypes)
            if len(archetypes) != n:
                raise MetaValidationError(
                    f"archetypes has length {len(archetypes)} but winrates is {n}x{n}."
                )
            object.__setattr__(self, "archetypes", archetypes)

    @property
    def n_decks(self) -> int:
        return int(self.winrates.shape[0])

    def winrate(self, deck: int, opposing_deck: int) -> float:
        """Probability that ``deck`` beats ``opposing_deck`` in one game."""
        return float(self.winrates[deck, opposing_deck])

    def deck_name(self, deck: int) -> str:
        """Archetype name for a deck index, or ``"Deck <i>"`` if unknown."""
        archetype = self.archetypes[deck]
        return archetype.name if archetype is not None else f"Deck {deck}"


def _as_winrate_matrix(winrates: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Convert and validate a winrate matrix; always returns a fresh copy."""
    if isinstance(winrates, np.ndarray):
        if winrates.ndim != 2:
            raise MetaValidationError("winrates must be a 2-D matrix.")
        rows = winrates.tolist()
    else:
        try:
            rows = [list(row) for row in winrates]
        except TypeError as exc:
            raise MetaValidationError("winrates must be a 2-D matrix.") from exc

    n = len(rows)
    if n < 1:
        raise MetaValidationError("winrates matrix must be non-empty.")
    if any(len(row) != n for row in rows):
        raise MetaValidationError("winrates is not a square matrix.")

    try:
        matrix = np.array(rows, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise MetaValidationError(f"winrates must be numeric: {exc}") from exc
    if not np.all(np.isfinite(matrix)):
        raise MetaValidationError("winrates must be finite numbers.")
    if np.any(matrix < 0.0) or np.any(matrix > 1.0):
        raise MetaValidationError("winrates must fall in the range [0, 1].")

    drift = np.abs(matrix + matrix.T - 1.0)
    if np.any(drift > WINRATE_COMPLEMENT_TOLERANCE):
        r, c = np.unravel_index(int(np.argmax(drift)), drift.shape)
        raise MetaValidationError(
            f"winrates[a][b] and winrates[b][a] must sum to 1 "
            f"(a={r}, b={c}: {matrix[r, c]} + {matrix[c, r]})."
        )
    return matrix


# ─── Synthetic metas ──────────────────────────────────────────────────────────


def random_winrate_matrix(n: int, rng: np.random.Generator) -> np.ndarray:
    """Return a uniformly random, valid n×n winrate matrix.

    Diagonal entries are 0.5; each upper-triangle entry is drawn from
    U[0, 1) and mirrored as its complement below the diagonal.

    Examples:
        >>> w = random_winrate_matrix(4, np.random.default_rng(0))
        >>> bool(np.allclose(w + w.T, 1.0))
        True
    """
    upper = np.triu(rng.random((n, n)), k=1)
    lower = np.tril(1.0 - upper.T, k=-1)
    return upper + lower + np.eye(n) * 0.5


def winrate_matrix_set(
    n: int,
    n_matrices: int,
    meta_type: MetaType,
    rng: np.random.Generator,
) -> list[np.ndarray]:
    """Return ``n_matrices`` winrate matrices of size n×n for a meta type.

    Only MetaType.PURE_RANDOM can be generated here; real-data metas are
    built by the ingestion step and passed in as MetaModel values.

    Raises:
        ValueError: For any meta type other than PURE_RANDOM.
    """
    if meta_type != MetaType.PURE_RANDOM:
        raise ValueError(f"No winrate matrix generator for meta type {meta_type!r}.")
    return [random_winrate_matrix(n, rng) for _ in range(n_matrices)]

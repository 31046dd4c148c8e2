"""Turn compromised-membership probabilities into keep/discard flags."""

from __future__ import annotations

import numbers

import numpy as np

from .errors import ValidationError

DEFAULT_POSTERIOR_CUTOFF = 0.75


def validate_cutoff(cutoff: float, name: str = "posterior_cutoff") -> float:
    """Return ``cutoff`` as a float, raising :class:`ValidationError` unless it lies in [0, 1]."""
    if isinstance(cutoff, bool) or not isinstance(cutoff, numbers.Real):
        raise ValidationError(f"{name} must be a real number in [0, 1], got {cutoff!r}.")
    value = float(cutoff)
    if not (0.0 <= value <= 1.0):
        raise ValidationError(f"{name} must lie in [0, 1], got {value}.")
    return value


def classify(posteriors: np.ndarray, compromised_index: int, cutoff: float) -> np.ndarray:
    """
    Keep cells whose compromised probability is strictly below ``cutoff``.

    ``cutoff`` is a tolerance for compromised probability, not a keep
    probability: 0 keeps nothing, 1 keeps every cell (including posteriors
    that saturated to exactly 1.0).

    Parameters
    ----------
    posteriors:
        ``(n_cells, 2)`` membership probabilities, or a 1-D vector that already
        holds the compromised-component probability.
    compromised_index:
        Column of ``posteriors`` that belongs to the compromised component.
    cutoff:
        Value in [0, 1].
    """
    cutoff = validate_cutoff(cutoff)
    posteriors = np.asarray(posteriors, dtype=float)
    if posteriors.ndim == 2:
        if compromised_index not in (0, 1):
            raise ValidationError(f"compromised_index must be 0 or 1, got {compromised_index!r}.")
        prob = posteriors[:, compromised_index]
    elif posteriors.ndim == 1:
        prob = posteriors
    else:
        raise ValidationError(f"posteriors must be 1-D or (n, 2), got shape {posteriors.shape}.")
    if cutoff >= 1.0:
        return np.ones(prob.shape[0], dtype=bool)
    return prob < cutoff


def rescue_below_boundary(
    prob_compromised: np.ndarray,
    damage: np.ndarray,
    intact_prediction: np.ndarray,
) -> np.ndarray:
    """Zero the compromised probability of cells lying below the intact fit."""
    out = np.array(prob_compromised, dtype=float, copy=True)
    out[np.asarray(damage) < np.asarray(intact_prediction)] = 0.0
    return out


def enforce_left_cutoff(
    prob_compromised: np.ndarray,
    damage: np.ndarray,
    complexity: np.ndarray,
    cutoff: float,
) -> np.ndarray:
    """
    Discard everything up and to the left of the least-damaged discarded cell.

    The discarded cell with the lowest damage sets a corner ``(c*, d*)``; any
    cell with complexity <= ``c*`` and damage >= ``d*`` gets probability 1 so
    low-complexity, high-damage cells are never kept.
    """
    cutoff = validate_cutoff(cutoff)
    out = np.array(prob_compromised, dtype=float, copy=True)
    damage = np.asarray(damage, dtype=float)
    complexity = np.asarray(complexity, dtype=float)
    discarded = ~classify(out, 0, cutoff)
    if not discarded.any():
        return out
    candidates = np.flatnonzero(discarded)
    corner = candidates[np.argmin(damage[candidates])]
    min_discard = damage[corner]
    out[(complexity <= complexity[corner]) & (damage >= min_discard)] = 1.0
    return out

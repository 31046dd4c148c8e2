"""Per-cell QC metric vectors consumed by the mixture classifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Sequence

import anndata as ad
import numpy as np
import pandas as pd

from .errors import ValidationError

DEFAULT_DAMAGE_KEY = "pct_counts_mt"
DEFAULT_COMPLEXITY_KEY = "n_genes_by_counts"


def _as_metric_vector(values: Any, name: str) -> np.ndarray:
    try:
        arr = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"'{name}' must be numeric.") from exc
    if arr.ndim != 1:
        raise ValidationError(f"'{name}' must be one-dimensional, got shape {arr.shape}.")
    if not np.isfinite(arr).all():
        n_bad = int((~np.isfinite(arr)).sum())
        raise ValidationError(f"'{name}' contains {n_bad} non-finite values.")
    if (arr < 0).any():
        raise ValidationError(f"'{name}' must be non-negative.")
    arr = arr.copy()
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class MetricPair:
    """Aligned damage / complexity vectors for a set of cells.

    ``damage`` is conventionally the percentage of reads from mitochondrial
    (or other stress-marker) genes; ``complexity`` is the number of detected
    features per cell. Both arrays are read-only.
    """

    damage: np.ndarray
    complexity: np.ndarray
    cell_ids: pd.Index

    def __len__(self) -> int:
        return int(self.damage.shape[0])

    @property
    def n_cells(self) -> int:
        return len(self)

    @classmethod
    def from_arrays(
        cls,
        damage: Sequence[float],
        complexity: Sequence[float],
        cell_ids: Optional[Sequence[Any]] = None,
    ) -> "MetricPair":
        """Validate and wrap two aligned numeric vectors."""
        damage_arr = _as_metric_vector(damage, "damage")
        complexity_arr = _as_metric_vector(complexity, "complexity")
        if damage_arr.shape[0] != complexity_arr.shape[0]:
            raise ValidationError(
                "Length of damage does not match complexity: "
                f"{damage_arr.shape[0]} != {complexity_arr.shape[0]}."
            )
        if damage_arr.shape[0] == 0:
            raise ValidationError("At least one cell is required.")
        if cell_ids is None:
            index = pd.RangeIndex(damage_arr.shape[0], name="cell")
        else:
            index = pd.Index(list(cell_ids))
            if len(index) != damage_arr.shape[0]:
                raise ValidationError("cell_ids must match the number of cells.")
        return cls(damage=damage_arr, complexity=complexity_arr, cell_ids=index)

    @classmethod
    def from_obs(
        cls,
        obs: pd.DataFrame,
        *,
        damage_key: str = DEFAULT_DAMAGE_KEY,
        complexity_key: str = DEFAULT_COMPLEXITY_KEY,
    ) -> "MetricPair":
        """Read the two metric columns from a per-cell metadata frame."""
        missing = [key for key in (damage_key, complexity_key) if key not in obs.columns]
        if missing:
            raise ValidationError(f"Metadata missing required QC columns: {missing}")
        return cls.from_arrays(
            obs[damage_key].to_numpy(),
            obs[complexity_key].to_numpy(),
            cell_ids=obs.index,
        )

    @classmethod
    def from_anndata(
        cls,
        adata: ad.AnnData,
        *,
        damage_key: str = DEFAULT_DAMAGE_KEY,
        complexity_key: str = DEFAULT_COMPLEXITY_KEY,
    ) -> "MetricPair":
        """Read QC metrics from ``adata.obs`` without modifying the object."""
        return cls.from_obs(adata.obs, damage_key=damage_key, complexity_key=complexity_key)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"damage": self.damage, "complexity": self.complexity},
            index=self.cell_ids,
        )

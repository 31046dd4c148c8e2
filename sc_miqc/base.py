"""Result containers returned by :func:`sc_miqc.workflow.filter_cells`.

A run ends in exactly one of two variants:

* :class:`MixtureClassification`: two populations were identified and cells
  were classified from their posterior probability.
* :class:`BackupClassification`: the mixture was degenerate and a backup rule
  (``percentile``, ``percent`` or ``pass``) made the decision.

Both expose the same per-cell arrays, so downstream code can annotate a
dataset from either, but the ``kind`` tag (and the type) forces callers that
care about the model to handle the degenerate case explicitly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .mixture import DegenerateFit
from .posterior import LabeledModel


@dataclass(kw_only=True)
class QCResult(ABC):
    """Per-cell decisions shared by both result variants."""

    kind: ClassVar[str] = "result"

    cell_ids: pd.Index
    keep: np.ndarray
    posterior_compromised: np.ndarray

    @property
    @abstractmethod
    def degenerate(self) -> bool:
        ...

    @property
    def n_cells(self) -> int:
        return int(self.keep.shape[0])

    @property
    def n_kept(self) -> int:
        return int(np.count_nonzero(self.keep))

    @property
    def n_discarded(self) -> int:
        return self.n_cells - self.n_kept

    @property
    def summary(self) -> Mapping[str, int]:
        return {"kept": self.n_kept, "discarded": self.n_discarded}

    @abstractmethod
    def metadata(self) -> Dict[str, Any]:
        ...

    def _columns(self) -> Dict[str, np.ndarray]:
        return {
            "posterior_compromised": self.posterior_compromised,
            "keep": self.keep,
        }

    def to_dataframe(
        self,
        *,
        prefix: str = "",
        columns: Optional[Sequence[str]] = None,
    ) -> pd.DataFrame:
        """
        Return per-cell results indexed by cell id, ready to merge into ``obs``.

        Parameters
        ----------
        prefix:
            Optional prefix applied to the returned column names.
        columns:
            Subset of columns (before prefixing) to extract. Defaults to all.
        """
        data = self._columns()
        selected = columns if columns is not None else list(data)
        missing = [col for col in selected if col not in data]
        if missing:
            raise KeyError(f"Unknown result columns: {missing}")
        df = pd.DataFrame({col: data[col] for col in selected}, index=self.cell_ids)
        if prefix:
            df = df.add_prefix(prefix)
        return df


@dataclass(kw_only=True)
class MixtureClassification(QCResult):
    """Cells classified from the fitted two-component mixture."""

    kind: ClassVar[str] = "mixture"

    model: LabeledModel
    adjusted_posterior: np.ndarray
    intact_prediction: np.ndarray
    posterior_cutoff: float = 0.75
    parameters: Mapping[str, Any] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    @property
    def degenerate(self) -> bool:
        return False

    def metadata(self) -> Dict[str, Any]:
        out = self.model.parameters()
        out["posterior_cutoff"] = self.posterior_cutoff
        out["warnings"] = list(self.warnings)
        return out

    def _columns(self) -> Dict[str, np.ndarray]:
        cols = super()._columns()
        cols["adjusted_posterior"] = self.adjusted_posterior
        cols["intact_prediction"] = self.intact_prediction
        return cols


@dataclass(kw_only=True)
class BackupClassification(QCResult):
    """Cells classified by a backup rule after a degenerate mixture fit."""

    kind: ClassVar[str] = "backup"

    diagnostic: DegenerateFit
    backup_option: str = "percentile"
    threshold: Optional[float] = None
    parameters: Mapping[str, Any] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()

    @property
    def degenerate(self) -> bool:
        return True

    def metadata(self) -> Dict[str, Any]:
        out = self.diagnostic.parameters()
        out["backup_option"] = self.backup_option
        out["threshold"] = self.threshold
        out["warnings"] = list(self.warnings)
        return out

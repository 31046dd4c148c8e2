"""Fallback decision rules used when no two-population mixture could be fit."""

from __future__ import annotations

import logging
import numbers
import warnings
from typing import Any, Dict, Optional

import numpy as np

from .base import BackupClassification
from .classify import validate_cutoff
from .errors import DegenerateModelWarning, HaltError, ValidationError
from .metrics import MetricPair
from .mixture import DegenerateFit

logger = logging.getLogger(__name__)

BACKUP_OPTIONS = ("percentile", "percent", "pass", "halt")
DEFAULT_BACKUP_OPTION = "percentile"
DEFAULT_BACKUP_PERCENTILE = 0.99


def validate_backup_options(
    backup_option: str,
    *,
    backup_percentile: Optional[float] = None,
    backup_percent: Optional[float] = None,
) -> Dict[str, Any]:
    """Check the backup choice and its required parameter up front."""
    if backup_option not in BACKUP_OPTIONS:
        raise ValidationError(
            "backup_option must be one of: " + ", ".join(BACKUP_OPTIONS) + f" (got {backup_option!r})."
        )
    params: Dict[str, Any] = {"backup_option": backup_option}
    if backup_option == "percentile":
        if backup_percentile is None:
            raise ValidationError("backup_percentile is required when backup_option='percentile'.")
        params["backup_percentile"] = validate_cutoff(backup_percentile, name="backup_percentile")
    elif backup_option == "percent":
        if backup_percent is None:
            raise ValidationError("backup_percent is required when backup_option='percent'.")
        if isinstance(backup_percent, bool) or not isinstance(backup_percent, numbers.Real):
            raise ValidationError(f"backup_percent must be a real number, got {backup_percent!r}.")
        if not np.isfinite(backup_percent):
            raise ValidationError(f"backup_percent must be finite, got {backup_percent!r}.")
        params["backup_percent"] = float(backup_percent)
    return params


def apply_backup(
    metrics: MetricPair,
    diagnostic: DegenerateFit,
    backup_option: str,
    *,
    backup_percentile: Optional[float] = None,
    backup_percent: Optional[float] = None,
    parameters: Optional[Dict[str, Any]] = None,
) -> BackupClassification:
    """
    Decide keep/discard without a mixture model.

    ``percentile`` drops cells whose damage exceeds the given quantile of the
    observed damage distribution, ``percent`` drops cells above an absolute
    damage value, ``pass`` keeps everything, and ``halt`` raises
    :class:`HaltError`. Every non-halting option emits a
    :class:`DegenerateModelWarning` naming the failed two-population assumption.
    """
    opts = validate_backup_options(
        backup_option,
        backup_percentile=backup_percentile,
        backup_percent=backup_percent,
    )
    if backup_option == "halt":
        raise HaltError(
            diagnostic.message
            + " backup_option='halt' was chosen: choose another backup option or filter manually."
        )

    messages = [diagnostic.message]
    damage = metrics.damage
    threshold: Optional[float] = None
    if backup_option == "percentile":
        threshold = float(np.quantile(damage, opts["backup_percentile"]))
        keep = damage <= threshold
        messages[0] += f" Falling back to the {opts['backup_percentile']:g} damage quantile ({threshold:.4g})."
    elif backup_option == "percent":
        threshold = opts["backup_percent"]
        keep = damage <= threshold
        messages[0] += f" Falling back to a fixed damage cutoff of {threshold:g}."
    else:
        keep = np.ones(metrics.n_cells, dtype=bool)
        messages.append("backup_option='pass': QC filtering was skipped and all cells were kept.")

    for message in messages:
        warnings.warn(message, DegenerateModelWarning, stacklevel=2)
    logger.info(
        "Backup '%s' applied: kept %d of %d cells", backup_option, int(keep.sum()), metrics.n_cells
    )

    params = dict(parameters or {})
    params.update(opts)
    return BackupClassification(
        cell_ids=metrics.cell_ids,
        keep=np.asarray(keep, dtype=bool),
        posterior_compromised=np.full(metrics.n_cells, np.nan),
        diagnostic=diagnostic,
        backup_option=backup_option,
        threshold=threshold,
        parameters=params,
        warnings=tuple(messages),
    )

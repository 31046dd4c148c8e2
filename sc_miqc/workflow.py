"""High-level orchestration: metrics -> mixture fit -> posteriors -> decisions."""

from __future__ import annotations

import dataclasses
import logging
import warnings
from typing import Any, Dict, Optional, Sequence, Union

import anndata as ad

from .backup import (
    DEFAULT_BACKUP_OPTION,
    DEFAULT_BACKUP_PERCENTILE,
    apply_backup,
    validate_backup_options,
)
from .base import BackupClassification, MixtureClassification
from .classify import (
    DEFAULT_POSTERIOR_CUTOFF,
    classify,
    enforce_left_cutoff as apply_left_cutoff,
    rescue_below_boundary,
    validate_cutoff,
)
from .errors import ConvergenceWarning, ValidationError
from .metrics import DEFAULT_COMPLEXITY_KEY, DEFAULT_DAMAGE_KEY, MetricPair
from .mixture import (
    DegenerateFit,
    FitSettings,
    build_bases,
    fit_mixture_model,
    validate_seed,
)
from .posterior import compute_posteriors, label_model

logger = logging.getLogger(__name__)


def _resolve_settings(
    settings: Optional[FitSettings],
    restart_count: Optional[int],
    n_jobs: Optional[int],
) -> FitSettings:
    overrides: Dict[str, Any] = {}
    if restart_count is not None:
        overrides["restart_count"] = restart_count
    if n_jobs is not None:
        overrides["n_jobs"] = n_jobs
    base = settings if settings is not None else FitSettings()
    return dataclasses.replace(base, **overrides).validate()


def filter_cells(
    metrics: MetricPair,
    *,
    posterior_cutoff: float = DEFAULT_POSTERIOR_CUTOFF,
    model_type: Union[str, Sequence[str]] = "linear",
    polynomial_degree: int = 2,
    spline_knots: int = 2,
    spline_degree: int = 3,
    backup_option: str = DEFAULT_BACKUP_OPTION,
    backup_percentile: Optional[float] = DEFAULT_BACKUP_PERCENTILE,
    backup_percent: Optional[float] = None,
    restart_count: Optional[int] = None,
    random_seed: int = 0,
    n_jobs: Optional[int] = None,
    keep_all_below_boundary: bool = False,
    enforce_left_cutoff: bool = False,
    settings: Optional[FitSettings] = None,
) -> Union[MixtureClassification, BackupClassification]:
    """
    Classify cells as intact or compromised from their damage/complexity metrics.

    Every parameter is validated before any fitting work starts. A
    two-component mixture of regressions is then fit; when it identifies two
    populations each cell gets the posterior probability of the compromised
    component and is kept when that probability is below ``posterior_cutoff``.
    When the mixture is degenerate the ``backup_option`` rule decides instead
    (``halt`` raises :class:`~sc_miqc.errors.HaltError`).

    Parameters
    ----------
    metrics:
        Damage / complexity vectors, e.g. from :meth:`MetricPair.from_anndata`.
    posterior_cutoff:
        Tolerated compromised probability in [0, 1]; 1 keeps every cell.
    model_type:
        Basis name or sequence of names (see :data:`sc_miqc.basis.BASES`).
    backup_option, backup_percentile, backup_percent:
        Fallback rule and its threshold, only consulted on degenerate fits.
    restart_count, n_jobs:
        Override the matching :class:`FitSettings` fields.
    random_seed:
        Seeds every restart; identical inputs and seed give identical results.
    keep_all_below_boundary:
        Keep any cell whose damage lies below the intact component's curve.
    enforce_left_cutoff:
        Discard low-complexity cells at or above the least-damaged discarded cell.
    settings:
        Full EM configuration; defaults to :class:`FitSettings`.
    """
    cutoff = validate_cutoff(posterior_cutoff)
    backup_params = validate_backup_options(
        backup_option,
        backup_percentile=backup_percentile,
        backup_percent=backup_percent,
    )
    random_seed = validate_seed(random_seed)
    fit_settings = _resolve_settings(settings, restart_count, n_jobs)
    bases = build_bases(
        model_type,
        polynomial_degree=polynomial_degree,
        spline_knots=spline_knots,
        spline_degree=spline_degree,
    )
    if not isinstance(metrics, MetricPair):
        raise ValidationError(
            f"metrics must be a MetricPair (see MetricPair.from_arrays), got {type(metrics).__name__}."
        )

    parameters: Dict[str, Any] = {
        "posterior_cutoff": cutoff,
        "model_type": [b.name for b in bases],
        "random_seed": random_seed,
        "restart_count": fit_settings.restart_count,
        "max_iter": fit_settings.max_iter,
        "tol": fit_settings.tol,
        "init": fit_settings.init,
        "n_jobs": fit_settings.n_jobs,
        "keep_all_below_boundary": bool(keep_all_below_boundary),
        "enforce_left_cutoff": bool(enforce_left_cutoff),
    }
    parameters.update(backup_params)

    fit = fit_mixture_model(
        metrics,
        model_type,
        random_seed=random_seed,
        settings=fit_settings,
        polynomial_degree=polynomial_degree,
        spline_knots=spline_knots,
        spline_degree=spline_degree,
    )
    if isinstance(fit, DegenerateFit):
        return apply_backup(
            metrics,
            fit,
            backup_option,
            backup_percentile=backup_percentile,
            backup_percent=backup_percent,
            parameters=parameters,
        )

    labeled = label_model(fit)
    posteriors = compute_posteriors(fit, metrics)
    prob_compromised = posteriors[:, labeled.compromised_index]
    intact_prediction = fit.predict(metrics.complexity)[:, labeled.intact_index]

    adjusted = prob_compromised
    if keep_all_below_boundary:
        adjusted = rescue_below_boundary(adjusted, metrics.damage, intact_prediction)
    if enforce_left_cutoff:
        adjusted = apply_left_cutoff(adjusted, metrics.damage, metrics.complexity, cutoff)
    keep = classify(adjusted, labeled.compromised_index, cutoff)

    messages = []
    if not fit.converged:
        message = (
            f"EM stopped after {fit.n_iter} iterations without reaching tol={fit_settings.tol:g}; "
            "posteriors come from the last iterate."
        )
        warnings.warn(message, ConvergenceWarning, stacklevel=2)
        messages.append(message)

    logger.info(
        "Kept %d of %d cells (posterior_cutoff=%g, compromised component %d)",
        int(keep.sum()),
        metrics.n_cells,
        cutoff,
        labeled.compromised_index,
    )
    return MixtureClassification(
        cell_ids=metrics.cell_ids,
        keep=keep,
        posterior_compromised=prob_compromised,
        model=labeled,
        adjusted_posterior=adjusted,
        intact_prediction=intact_prediction,
        posterior_cutoff=cutoff,
        parameters=parameters,
        warnings=tuple(messages),
    )


def filter_anndata(
    adata: ad.AnnData,
    *,
    damage_key: str = DEFAULT_DAMAGE_KEY,
    complexity_key: str = DEFAULT_COMPLEXITY_KEY,
    **kwargs: Any,
) -> Union[MixtureClassification, BackupClassification]:
    """
    Run :func:`filter_cells` on QC metrics stored in ``adata.obs``.

    ``adata`` is only read; annotate or subset it from the returned
    result (``result.to_dataframe()`` is indexed by ``adata.obs_names``).
    """
    metrics = MetricPair.from_anndata(adata, damage_key=damage_key, complexity_key=complexity_key)
    return filter_cells(metrics, **kwargs)


"""Two-component mixture-of-regressions fitting for the damage covariate.

The fitter regresses damage on an expansion of complexity (see
:mod:`sc_miqc.basis`) with two Gaussian components and runs several
independently seeded EM restarts on a worker pool:

  1. Initialize responsibilities (k-means on the standardized metric pair, or
     a random hard partition).
  2. Alternate weighted least squares M-steps with log-space E-steps until the
     relative change in log-likelihood drops below ``tol`` or ``max_iter`` is hit.
  3. Reject restarts that collapse or whose components are not separable.
  4. Reduce the surviving restarts to the highest log-likelihood fit.

When nothing survives, a :class:`DegenerateFit` diagnostic is returned instead
of a model so the caller has to pick a backup rule.
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from scipy.special import logsumexp
from scipy.stats import norm
from sklearn.cluster import KMeans

from .basis import Basis, make_basis
from .errors import FitFailure, ValidationError
from .metrics import MetricPair

logger = logging.getLogger(__name__)

DEFAULT_RESTART_COUNT = 10
DEFAULT_MAX_ITER = 200
DEFAULT_TOL = 1e-6
MIN_MIXING_WEIGHT = 1e-3
MIN_SEPARATION = 0.1
VARIANCE_FLOOR_RATIO = 1e-4
MIN_RECORDS_PER_COMPONENT = 5
INIT_METHODS = ("kmeans", "random")

# Relative log-likelihood difference under which two restarts count as tied.
_TIE_RTOL = 1e-9


def _effective_n_jobs(n_jobs: Optional[int]) -> int:
    """Normalize parallelism requests (0 -> all CPUs, negative offsets allowed)."""
    total = os.cpu_count() or 1
    if n_jobs is None:
        return 1
    if n_jobs == 0:
        return total
    if n_jobs < 0:
        return max(1, total + 1 + int(n_jobs))
    return max(1, int(n_jobs))


@dataclass(frozen=True)
class FitSettings:
    """EM tuning knobs shared by every restart.

    Parameters
    ----------
    restart_count:
        Number of independently seeded EM restarts per basis.
    max_iter:
        Iteration bound for a single restart. Hitting it is reported, not fatal.
    tol:
        Relative log-likelihood change that counts as converged.
    min_weight:
        Mixing weights below this mark the fit as degenerate.
    min_separation:
        Minimum largest gap between the two fitted curves, in units of the
        pooled residual standard deviation.
    variance_floor_ratio:
        Component variances are floored at this fraction of ``var(damage)``.
    require_bic_support:
        When True the two-component fit must have a lower BIC than a
        one-component regression on the same basis.
    init:
        ``"kmeans"`` or ``"random"``.
    n_jobs:
        Worker count for restarts (0 -> all CPUs, None/1 -> in-thread).
    """

    restart_count: int = DEFAULT_RESTART_COUNT
    max_iter: int = DEFAULT_MAX_ITER
    tol: float = DEFAULT_TOL
    min_weight: float = MIN_MIXING_WEIGHT
    min_separation: float = MIN_SEPARATION
    variance_floor_ratio: float = VARIANCE_FLOOR_RATIO
    require_bic_support: bool = True
    init: str = "kmeans"
    n_jobs: Optional[int] = 0

    def validate(self) -> "FitSettings":
        if isinstance(self.restart_count, bool) or not isinstance(self.restart_count, (int, np.integer)):
            raise ValidationError(f"restart_count must be an integer, got {self.restart_count!r}.")
        if self.restart_count <= 0:
            raise ValidationError(f"restart_count must be > 0, got {self.restart_count}.")
        if isinstance(self.max_iter, bool) or not isinstance(self.max_iter, (int, np.integer)) or self.max_iter <= 0:
            raise ValidationError(f"max_iter must be a positive integer, got {self.max_iter!r}.")
        if not (self.tol > 0):
            raise ValidationError(f"tol must be > 0, got {self.tol!r}.")
        if not (0 < self.min_weight < 0.5):
            raise ValidationError(f"min_weight must lie in (0, 0.5), got {self.min_weight!r}.")
        if self.min_separation < 0:
            raise ValidationError(f"min_separation must be >= 0, got {self.min_separation!r}.")
        if not (self.variance_floor_ratio > 0):
            raise ValidationError(f"variance_floor_ratio must be > 0, got {self.variance_floor_ratio!r}.")
        if self.init not in INIT_METHODS:
            raise ValidationError("init must be one of: " + ", ".join(INIT_METHODS) + f" (got {self.init!r}).")
        if self.n_jobs is not None and (
            isinstance(self.n_jobs, bool) or not isinstance(self.n_jobs, (int, np.integer))
        ):
            raise ValidationError(f"n_jobs must be an integer or None, got {self.n_jobs!r}.")
        return self


@dataclass(frozen=True)
class ComponentFit:
    """Regression coefficients, residual variance, and mixing weight of one component."""

    coefficients: np.ndarray
    variance: float
    weight: float

    @property
    def sd(self) -> float:
        return float(np.sqrt(self.variance))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "coefficients": [float(c) for c in self.coefficients],
            "variance": float(self.variance),
            "weight": float(self.weight),
        }


@dataclass(frozen=True)
class MixtureModel:
    """A converged (or iteration-bounded), non-degenerate two-component fit."""

    basis: Basis
    components: Tuple[ComponentFit, ComponentFit]
    log_likelihood: float
    converged: bool
    n_iter: int
    restart_index: int
    n_obs: int
    single_component_bic: float
    degenerate: bool = field(default=False, init=False)

    @property
    def model_type(self) -> str:
        return self.basis.name

    @property
    def weights(self) -> np.ndarray:
        return np.array([c.weight for c in self.components])

    @property
    def variances(self) -> np.ndarray:
        return np.array([c.variance for c in self.components])

    @property
    def coefficients(self) -> np.ndarray:
        return np.vstack([c.coefficients for c in self.components])

    @property
    def n_parameters(self) -> int:
        # two regressions, two variances, one free mixing weight
        return 2 * self.basis.n_columns + 3

    @property
    def bic(self) -> float:
        return float(-2.0 * self.log_likelihood + self.n_parameters * np.log(self.n_obs))

    def predict(self, complexity: Union[float, Sequence[float], np.ndarray]) -> np.ndarray:
        """Expected damage under each component, shape ``(n, 2)``."""
        return self.basis.transform(complexity) @ self.coefficients.T

    def parameters(self) -> Dict[str, Any]:
        return {
            "basis": self.basis.describe(),
            "components": [c.to_dict() for c in self.components],
            "log_likelihood": float(self.log_likelihood),
            "bic": self.bic,
            "single_component_bic": float(self.single_component_bic),
            "converged": bool(self.converged),
            "n_iter": int(self.n_iter),
            "restart_index": int(self.restart_index),
            "degenerate": False,
        }

    def to_dataframe(self) -> pd.DataFrame:
        """One row per component with weight, variance and coefficients."""
        rows = []
        for idx, comp in enumerate(self.components):
            row: Dict[str, Any] = {"component": idx, "weight": comp.weight, "variance": comp.variance}
            for j, coef in enumerate(comp.coefficients):
                row[f"coef_{j}"] = float(coef)
            rows.append(row)
        return pd.DataFrame(rows).set_index("component")


@dataclass(frozen=True)
class DegenerateFit:
    """Diagnostic returned when no restart produced two separable populations."""

    model_types: Tuple[str, ...]
    best_log_likelihood: float
    reasons: Mapping[str, int]
    n_restarts: int
    degenerate: bool = field(default=True, init=False)

    @property
    def message(self) -> str:
        reasons = ", ".join(f"{k}={v}" for k, v in sorted(self.reasons.items())) or "none"
        return (
            "Unable to identify two distributions of damage vs. complexity "
            f"(model_type={'/'.join(self.model_types)}, {self.n_restarts} restarts; "
            f"failures: {reasons}). Inspect the QC metrics to confirm the two-population assumption."
        )

    def parameters(self) -> Dict[str, Any]:
        return {
            "model_types": list(self.model_types),
            "best_log_likelihood": float(self.best_log_likelihood),
            "reasons": dict(self.reasons),
            "n_restarts": int(self.n_restarts),
            "degenerate": True,
        }


@dataclass(frozen=True)
class _RestartOutcome:
    restart_index: int
    model: Optional[MixtureModel]
    reason: Optional[str]
    log_likelihood: float


def min_records_required(basis: Basis) -> int:
    return 2 * max(MIN_RECORDS_PER_COMPONENT, basis.n_columns + 1)


def component_log_densities(
    design: np.ndarray,
    damage: np.ndarray,
    coefficients: np.ndarray,
    variances: np.ndarray,
    weights: np.ndarray,
) -> np.ndarray:
    """``log(weight_k) + log N(damage | design @ beta_k, var_k)`` for both components."""
    means = design @ np.asarray(coefficients).T
    sds = np.sqrt(np.asarray(variances, dtype=float))
    return np.log(np.asarray(weights, dtype=float))[None, :] + norm.logpdf(
        damage[:, None], loc=means, scale=sds[None, :]
    )


def _initial_responsibilities(
    complexity: np.ndarray,
    damage: np.ndarray,
    seed: np.random.SeedSequence,
    init: str,
) -> np.ndarray:
    n = damage.shape[0]
    if init == "kmeans":
        feats = np.column_stack([complexity, damage]).astype(float)
        scale = feats.std(axis=0)
        scale[scale == 0] = 1.0
        feats = (feats - feats.mean(axis=0)) / scale
        if np.unique(feats, axis=0).shape[0] < 2:
            # KMeans cannot split a single distinct point
            raise FitFailure(
                "every record sits at the same (complexity, damage) point", reason="collapsed_component"
            )
        random_state = int(seed.generate_state(1)[0])
        labels = KMeans(n_clusters=2, n_init=1, random_state=random_state).fit_predict(feats)
    else:
        rng = np.random.default_rng(seed)
        labels = rng.integers(0, 2, size=n)
    resp = np.zeros((n, 2))
    resp[np.arange(n), labels] = 1.0
    return resp


def _m_step(
    design: np.ndarray,
    damage: np.ndarray,
    resp: np.ndarray,
    variance_floor: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    n_cols = design.shape[1]
    mass = resp.sum(axis=0)
    if mass.min() < n_cols:
        raise FitFailure(
            f"component collapsed (posterior mass {mass.min():.3g} < {n_cols} basis columns)",
            reason="collapsed_component",
        )
    coefficients = np.empty((2, n_cols))
    variances = np.empty(2)
    for k in range(2):
        w = resp[:, k]
        sw = np.sqrt(w)
        coef, _, _, _ = np.linalg.lstsq(design * sw[:, None], damage * sw, rcond=None)
        resid = damage - design @ coef
        coefficients[k] = coef
        variances[k] = max(float(np.dot(w, resid ** 2) / mass[k]), variance_floor)
    weights = mass / mass.sum()
    weights[1] = 1.0 - weights[0]
    return coefficients, variances, weights


def _run_em(
    design: np.ndarray,
    damage: np.ndarray,
    resp: np.ndarray,
    settings: FitSettings,
    variance_floor: float,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, float, bool, int]:
    ll_prev: Optional[float] = None
    converged = False
    n_iter = 0
    for n_iter in range(1, settings.max_iter + 1):
        coefficients, variances, weights = _m_step(design, damage, resp, variance_floor)
        if weights.min() < settings.min_weight:
            raise FitFailure(
                f"mixing weight {weights.min():.3g} below {settings.min_weight:g}",
                reason="low_mixing_weight",
            )
        log_dens = component_log_densities(design, damage, coefficients, variances, weights)
        ll_rows = logsumexp(log_dens, axis=1)
        ll = float(ll_rows.sum())
        if not np.isfinite(ll):
            raise FitFailure("non-finite log-likelihood", reason="non_finite_likelihood")
        resp = np.exp(log_dens - ll_rows[:, None])
        if ll_prev is not None and abs(ll - ll_prev) <= settings.tol * abs(ll_prev):
            converged = True
            break
        ll_prev = ll
    return coefficients, variances, weights, ll, converged, n_iter


def _single_component_bic(design: np.ndarray, damage: np.ndarray, variance_floor: float) -> float:
    coef, _, _, _ = np.linalg.lstsq(design, damage, rcond=None)
    resid = damage - design @ coef
    variance = max(float(np.mean(resid ** 2)), variance_floor)
    ll = float(norm.logpdf(resid, scale=np.sqrt(variance)).sum())
    n_params = design.shape[1] + 1
    return -2.0 * ll + n_params * np.log(damage.shape[0])


def _check_degeneracy(model: MixtureModel, design: np.ndarray, settings: FitSettings) -> None:
    """Raise :class:`FitFailure` when the fitted components are not separable."""
    if model.weights.min() < settings.min_weight:
        raise FitFailure(
            f"mixing weight {model.weights.min():.3g} below {settings.min_weight:g}",
            reason="low_mixing_weight",
        )
    curves = design @ model.coefficients.T
    gap = float(np.max(np.abs(curves[:, 0] - curves[:, 1])))
    pooled_sd = float(np.sqrt(np.dot(model.weights, model.variances)))
    if gap < settings.min_separation * pooled_sd:
        raise FitFailure(
            f"component curves indistinguishable (max gap {gap:.3g}, pooled sd {pooled_sd:.3g})",
            reason="inseparable_curves",
        )
    if settings.require_bic_support and not model.bic < model.single_component_bic:
        raise FitFailure(
            f"no support for a second component (BIC {model.bic:.1f} >= {model.single_component_bic:.1f})",
            reason="no_bic_support",
        )


def _fit_restart(
    basis: Basis,
    design: np.ndarray,
    metrics: MetricPair,
    restart_index: int,
    seed: np.random.SeedSequence,
    settings: FitSettings,
    variance_floor: float,
    single_component_bic: float,
) -> _RestartOutcome:
    """One EM run. Pure given its seed; safe to run concurrently."""
    try:
        resp = _initial_responsibilities(metrics.complexity, metrics.damage, seed, settings.init)
        coefficients, variances, weights, ll, converged, n_iter = _run_em(
            design, metrics.damage, resp, settings, variance_floor
        )
    except FitFailure as exc:
        logger.debug("%s restart %d failed: %s", basis.name, restart_index, exc)
        return _RestartOutcome(restart_index, None, exc.reason, np.nan)

    model = MixtureModel(
        basis=basis,
        components=(
            ComponentFit(coefficients[0].copy(), float(variances[0]), float(weights[0])),
            ComponentFit(coefficients[1].copy(), float(variances[1]), float(weights[1])),
        ),
        log_likelihood=ll,
        converged=converged,
        n_iter=n_iter,
        restart_index=restart_index,
        n_obs=metrics.n_cells,
        single_component_bic=single_component_bic,
    )
    try:
        _check_degeneracy(model, design, settings)
    except FitFailure as exc:
        logger.debug("%s restart %d degenerate: %s", basis.name, restart_index, exc)
        return _RestartOutcome(restart_index, None, exc.reason, ll)
    logger.debug(
        "%s restart %d: loglik=%.4f iter=%d converged=%s", basis.name, restart_index, ll, n_iter, converged
    )
    return _RestartOutcome(restart_index, model, None, ll)


def _select_best(outcomes: Sequence[_RestartOutcome]) -> Optional[MixtureModel]:
    """Highest log-likelihood; ties go to fewer iterations, then the lower restart index."""
    best: Optional[MixtureModel] = None
    for outcome in sorted(outcomes, key=lambda o: o.restart_index):
        model = outcome.model
        if model is None:
            continue
        if best is None:
            best = model
            continue
        diff = model.log_likelihood - best.log_likelihood
        if abs(diff) <= _TIE_RTOL * max(abs(best.log_likelihood), 1.0):
            if model.n_iter < best.n_iter:
                best = model
        elif diff > 0:
            best = model
    return best


def _fit_basis(
    metrics: MetricPair,
    basis: Basis,
    random_seed: int,
    settings: FitSettings,
) -> Tuple[Optional[MixtureModel], List[_RestartOutcome]]:
    design = basis.fit_transform(metrics.complexity)
    variance_floor = max(settings.variance_floor_ratio * float(np.var(metrics.damage)), 1e-12)
    single_bic = _single_component_bic(design, metrics.damage, variance_floor)
    seeds = np.random.SeedSequence(random_seed).spawn(settings.restart_count)
    tasks = list(enumerate(seeds))

    def compute(restart_index: int, seed: np.random.SeedSequence) -> _RestartOutcome:
        return _fit_restart(
            basis, design, metrics, restart_index, seed, settings, variance_floor, single_bic
        )

    outcomes: List[_RestartOutcome] = []
    workers = _effective_n_jobs(settings.n_jobs)
    if workers == 1 or len(tasks) <= 1:
        for restart_index, seed in tasks:
            outcomes.append(compute(restart_index, seed))
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(tasks))) as executor:
            future_map = {
                executor.submit(compute, restart_index, seed): restart_index for restart_index, seed in tasks
            }
            for future in as_completed(future_map):
                outcomes.append(future.result())
    outcomes.sort(key=lambda o: o.restart_index)
    return _select_best(outcomes), outcomes


def _normalize_model_types(model_type: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(model_type, str):
        types = (model_type,)
    else:
        try:
            types = tuple(model_type)
        except TypeError as exc:
            raise ValidationError(f"model_type must be a string or a sequence of strings, got {model_type!r}.") from exc
    if not types:
        raise ValidationError("At least one model_type is required.")
    if any(not isinstance(t, str) for t in types):
        raise ValidationError(f"model_type entries must be strings, got {types!r}.")
    return tuple(dict.fromkeys(types))


def build_bases(
    model_type: Union[str, Sequence[str]] = "linear",
    *,
    polynomial_degree: int = 2,
    spline_knots: int = 2,
    spline_degree: int = 3,
) -> List[Basis]:
    """Instantiate (unfitted) bases for one or more requested model types."""
    return [
        make_basis(
            t,
            polynomial_degree=polynomial_degree,
            spline_knots=spline_knots,
            spline_degree=spline_degree,
        )
        for t in _normalize_model_types(model_type)
    ]


def validate_seed(random_seed: Any) -> int:
    if isinstance(random_seed, bool) or not isinstance(random_seed, (int, np.integer)):
        raise ValidationError(f"random_seed must be an integer, got {random_seed!r}.")
    if random_seed < 0:
        raise ValidationError(f"random_seed must be non-negative, got {random_seed}.")
    return int(random_seed)


def fit_mixture_model(
    metrics: MetricPair,
    model_type: Union[str, Sequence[str]] = "linear",
    *,
    random_seed: int = 0,
    settings: Optional[FitSettings] = None,
    polynomial_degree: int = 2,
    spline_knots: int = 2,
    spline_degree: int = 3,
) -> Union[MixtureModel, DegenerateFit]:
    """
    Fit a two-component mixture of regressions of damage on complexity.

    Parameters
    ----------
    metrics:
        Validated damage / complexity vectors.
    model_type:
        ``"linear"`` (default), ``"polynomial"``, ``"spline"``, ``"one_dimensional"``,
        or a sequence of these. With several types each is fit with the same
        restarts and the non-degenerate fit with the lowest BIC wins (ties go
        to the basis with fewer columns).
    random_seed:
        Seed for all restart initializations; identical inputs and seed give
        identical fits regardless of ``settings.n_jobs``.
    settings:
        :class:`FitSettings`; defaults are used when omitted.

    Returns
    -------
    MixtureModel or DegenerateFit
        ``DegenerateFit`` when every restart of every basis was rejected.
    """
    settings = (settings or FitSettings()).validate()
    random_seed = validate_seed(random_seed)
    bases = build_bases(
        model_type,
        polynomial_degree=polynomial_degree,
        spline_knots=spline_knots,
        spline_degree=spline_degree,
    )
    for basis in bases:
        basis.fit(metrics.complexity)
        required = min_records_required(basis)
        if metrics.n_cells < required:
            raise ValidationError(
                f"Too few cells for a two-component {basis.name} fit: "
                f"n_cells={metrics.n_cells}, need at least {required}."
            )

    candidates: List[MixtureModel] = []
    reasons: Counter = Counter()
    best_failed_ll = -np.inf
    for basis in sorted(bases, key=lambda b: b.n_columns):
        best, outcomes = _fit_basis(metrics, basis, random_seed, settings)
        for outcome in outcomes:
            if outcome.reason is not None:
                reasons[outcome.reason] += 1
            if np.isfinite(outcome.log_likelihood):
                best_failed_ll = max(best_failed_ll, outcome.log_likelihood)
        if best is None:
            logger.info("%s mixture: all %d restarts degenerate", basis.name, settings.restart_count)
            continue
        candidates.append(best)

    if not candidates:
        return DegenerateFit(
            model_types=tuple(b.name for b in bases),
            best_log_likelihood=float(best_failed_ll) if np.isfinite(best_failed_ll) else float("nan"),
            reasons=dict(reasons),
            n_restarts=settings.restart_count * len(bases),
        )

    chosen = candidates[0]
    for model in candidates[1:]:
        if model.bic < chosen.bic - _TIE_RTOL * max(abs(chosen.bic), 1.0):
            chosen = model
    logger.info(
        "Selected %s mixture (restart %d): loglik=%.4f, weights=%s, converged=%s",
        chosen.model_type,
        chosen.restart_index,
        chosen.log_likelihood,
        np.round(chosen.weights, 4).tolist(),
        chosen.converged,
    )
    return chosen

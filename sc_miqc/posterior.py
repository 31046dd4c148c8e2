"""Posterior membership probabilities and compromised-component labeling."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

import numpy as np
from scipy.special import logsumexp

from .metrics import MetricPair
from .mixture import MixtureModel, component_log_densities


@dataclass(frozen=True)
class LabeledModel:
    """A fitted mixture plus the index of the component holding compromised cells."""

    model: MixtureModel
    compromised_index: int

    @property
    def intact_index(self) -> int:
        return 1 - self.compromised_index

    @property
    def compromised(self):
        return self.model.components[self.compromised_index]

    @property
    def intact(self):
        return self.model.components[self.intact_index]

    def parameters(self) -> Dict[str, Any]:
        out = self.model.parameters()
        out["compromised_index"] = int(self.compromised_index)
        return out


def compute_posteriors(model: MixtureModel, metrics: MetricPair) -> np.ndarray:
    """
    Per-cell posterior membership probabilities, shape ``(n_cells, 2)``.

    Densities are accumulated in log space and normalized with ``logsumexp``
    so cells far from both regression curves still get finite probabilities.
    """
    design = model.basis.transform(metrics.complexity)
    log_dens = component_log_densities(
        design, metrics.damage, model.coefficients, model.variances, model.weights
    )
    post = np.exp(log_dens - logsumexp(log_dens, axis=1, keepdims=True))
    return np.clip(post, 0.0, 1.0)


def label_compromised_component(model: MixtureModel) -> int:
    """
    Index of the component representing compromised cells.

    Both fitted curves are evaluated at the lowest observed complexity; the
    one predicting higher damage is compromised. Exact ties fall back to the
    higher mean prediction across the observed range, then to the smaller
    mixing weight. Depends only on the fitted parameters, never on the
    component order EM happened to produce.
    """
    low = model.predict(model.basis.x_min)[0]
    if low[0] != low[1]:
        return int(np.argmax(low))
    grid = np.linspace(model.basis.x_min, model.basis.x_max, num=64)
    mean_pred = model.predict(grid).mean(axis=0)
    if mean_pred[0] != mean_pred[1]:
        return int(np.argmax(mean_pred))
    return int(np.argmin(model.weights))


def label_model(model: MixtureModel) -> LabeledModel:
    return LabeledModel(model=model, compromised_index=label_compromised_component(model))

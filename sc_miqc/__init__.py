"""Adaptive, mixture-model based QC filtering of single-cell metrics."""

from ._version import __version__
from .backup import BACKUP_OPTIONS, apply_backup
from .base import BackupClassification, MixtureClassification, QCResult
from .basis import BASES, make_basis
from .classify import classify, enforce_left_cutoff, rescue_below_boundary, validate_cutoff
from .errors import (
    ConvergenceWarning,
    DegenerateModelWarning,
    FitFailure,
    HaltError,
    ValidationError,
)
from .metrics import MetricPair
from .mixture import DegenerateFit, FitSettings, MixtureModel, fit_mixture_model
from .posterior import LabeledModel, compute_posteriors, label_compromised_component, label_model
from .workflow import filter_anndata, filter_cells

__all__ = [
    "__version__",
    "BACKUP_OPTIONS",
    "BASES",
    "MetricPair",
    "FitSettings",
    "MixtureModel",
    "DegenerateFit",
    "LabeledModel",
    "QCResult",
    "MixtureClassification",
    "BackupClassification",
    "ValidationError",
    "FitFailure",
    "HaltError",
    "DegenerateModelWarning",
    "ConvergenceWarning",
    "make_basis",
    "fit_mixture_model",
    "compute_posteriors",
    "label_compromised_component",
    "label_model",
    "classify",
    "validate_cutoff",
    "rescue_below_boundary",
    "enforce_left_cutoff",
    "apply_backup",
    "filter_cells",
    "filter_anndata",
]

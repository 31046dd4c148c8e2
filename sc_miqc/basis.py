"""Regression bases that expand the complexity covariate into design columns.

Every basis shares the same EM loop in :mod:`sc_miqc.mixture`; they differ only
in how ``complexity`` is turned into a design matrix. A basis is fit once on
the observed complexity values (recording scaling and range) and can then be
evaluated on any grid, which the component labeler and plotting consumers use.
"""

from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence, Union

import numpy as np
from sklearn.preprocessing import SplineTransformer

from .errors import ValidationError


def _is_int(value: object) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


class Basis(object):
    """Base class; subclasses implement ``_fit`` and ``_transform``."""

    name = "basis"

    def __init__(self) -> None:
        self.x_min: Optional[float] = None
        self.x_max: Optional[float] = None

    @property
    def is_fitted(self) -> bool:
        return self.x_min is not None

    @property
    def n_columns(self) -> int:
        raise NotImplementedError

    def fit(self, x: np.ndarray) -> "Basis":
        x = np.asarray(x, dtype=float)
        self.x_min = float(np.min(x))
        self.x_max = float(np.max(x))
        self._fit(x)
        return self

    def transform(self, x: Union[float, Sequence[float], np.ndarray]) -> np.ndarray:
        if not self.is_fitted:
            raise RuntimeError(f"{type(self).__name__} must be fit before transform().")
        x = np.atleast_1d(np.asarray(x, dtype=float))
        return self._transform(x)

    def fit_transform(self, x: np.ndarray) -> np.ndarray:
        return self.fit(x).transform(x)

    def describe(self) -> Dict[str, object]:
        return {"type": self.name, "n_columns": self.n_columns}

    def _fit(self, x: np.ndarray) -> None:
        pass

    def _transform(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class OneDimensionalBasis(Basis):
    """Intercept only: a two-component mixture over the damage covariate alone."""

    name = "one_dimensional"

    @property
    def n_columns(self) -> int:
        return 1

    def _transform(self, x: np.ndarray) -> np.ndarray:
        return np.ones((x.shape[0], 1))


class PolynomialBasis(Basis):
    """Intercept plus powers of the standardized covariate up to ``degree``."""

    name = "polynomial"

    def __init__(self, degree: int = 2) -> None:
        super().__init__()
        if not _is_int(degree) or degree < 1:
            raise ValidationError(f"Polynomial degree must be a positive integer, got {degree!r}.")
        self.degree = int(degree)
        self._center = 0.0
        self._scale = 1.0

    @property
    def n_columns(self) -> int:
        return self.degree + 1

    def _fit(self, x: np.ndarray) -> None:
        self._center = float(np.mean(x))
        scale = float(np.std(x))
        # Constant covariate: leave unscaled, lstsq handles the rank deficiency.
        self._scale = scale if scale > 0 else 1.0

    def _transform(self, x: np.ndarray) -> np.ndarray:
        z = (x - self._center) / self._scale
        return np.vander(z, N=self.degree + 1, increasing=True)

    def describe(self) -> Dict[str, object]:
        out = super().describe()
        out["degree"] = self.degree
        return out


class LinearBasis(PolynomialBasis):
    """Intercept plus the (standardized) covariate."""

    name = "linear"

    def __init__(self) -> None:
        super().__init__(degree=1)

    def describe(self) -> Dict[str, object]:
        return Basis.describe(self)


class SplineBasis(Basis):
    """Intercept plus a B-spline expansion over the observed covariate range.

    With the defaults (two knots at the range ends, cubic pieces) this spans the
    same space as an intercept plus a three degree-of-freedom cubic B-spline.
    """

    name = "spline"

    def __init__(self, n_knots: int = 2, degree: int = 3) -> None:
        super().__init__()
        if not _is_int(n_knots) or n_knots < 2:
            raise ValidationError(f"Spline n_knots must be an integer >= 2, got {n_knots!r}.")
        if not _is_int(degree) or degree < 1:
            raise ValidationError(f"Spline degree must be a positive integer, got {degree!r}.")
        self.n_knots = int(n_knots)
        self.degree = int(degree)
        self._transformer: Optional[SplineTransformer] = None

    @property
    def n_columns(self) -> int:
        # n_knots + degree - 1 splines, one dropped for the explicit intercept
        return self.n_knots + self.degree - 1

    def _fit(self, x: np.ndarray) -> None:
        if self.x_min == self.x_max:
            raise ValidationError("Spline basis requires complexity values that vary across cells.")
        self._transformer = SplineTransformer(
            n_knots=self.n_knots,
            degree=self.degree,
            knots="uniform",
            extrapolation="linear",
            include_bias=False,
        )
        self._transformer.fit(x.reshape(-1, 1))

    def _transform(self, x: np.ndarray) -> np.ndarray:
        splines = self._transformer.transform(x.reshape(-1, 1))
        return np.column_stack([np.ones(x.shape[0]), splines])

    def describe(self) -> Dict[str, object]:
        out = super().describe()
        out["n_knots"] = self.n_knots
        out["degree"] = self.degree
        return out


BASES: Dict[str, Callable[..., Basis]] = {
    "linear": lambda **kw: LinearBasis(),
    "polynomial": lambda **kw: PolynomialBasis(degree=kw.get("polynomial_degree", 2)),
    "spline": lambda **kw: SplineBasis(
        n_knots=kw.get("spline_knots", 2),
        degree=kw.get("spline_degree", 3),
    ),
    "one_dimensional": lambda **kw: OneDimensionalBasis(),
}


def make_basis(
    model_type: str,
    *,
    polynomial_degree: int = 2,
    spline_knots: int = 2,
    spline_degree: int = 3,
) -> Basis:
    """Build an unfitted basis from its registry name."""
    if model_type not in BASES:
        raise ValidationError(
            "model_type must be one of: " + ", ".join(sorted(BASES.keys())) + f" (got {model_type!r})."
        )
    return BASES[model_type](
        polynomial_degree=polynomial_degree,
        spline_knots=spline_knots,
        spline_degree=spline_degree,
    )

import numpy as np
import pytest


def _two_population(n_intact=900, n_compromised=100, seed=0):
    """Intact cells: low damage, high complexity. Compromised: the reverse."""
    from sc_miqc.metrics import MetricPair

    rng = np.random.default_rng(seed)
    intact_complexity = np.clip(rng.normal(3000.0, 500.0, n_intact), 500.0, None)
    intact_damage = np.clip(2.0 + 0.0005 * intact_complexity + rng.normal(0.0, 1.0, n_intact), 0.0, None)
    comp_complexity = np.clip(rng.normal(800.0, 200.0, n_compromised), 100.0, None)
    comp_damage = np.clip(rng.normal(40.0, 5.0, n_compromised), 0.0, None)
    truth = np.r_[np.zeros(n_intact, dtype=bool), np.ones(n_compromised, dtype=bool)]
    metrics = MetricPair.from_arrays(
        np.r_[intact_damage, comp_damage],
        np.r_[intact_complexity, comp_complexity],
        cell_ids=[f"cell_{i}" for i in range(n_intact + n_compromised)],
    )
    return metrics, truth


def _single_population(n=600, seed=0):
    from sc_miqc.metrics import MetricPair

    rng = np.random.default_rng(seed)
    complexity = np.clip(rng.normal(3000.0, 500.0, n), 500.0, None)
    damage = np.clip(5.0 + rng.normal(0.0, 1.5, n), 0.0, None)
    return MetricPair.from_arrays(damage, complexity)


@pytest.fixture
def two_population():
    return _two_population


@pytest.fixture
def single_population():
    return _single_population

import warnings

import numpy as np
import pytest


def _forced_degenerate(monkeypatch):
    """Make the workflow see a degenerate fit without running EM."""
    import sc_miqc.workflow as wf
    from sc_miqc.mixture import DegenerateFit

    diagnostic = DegenerateFit(
        model_types=("linear",),
        best_log_likelihood=-1234.5,
        reasons={"no_bic_support": 10},
        n_restarts=10,
    )

    def fake_fit(metrics, model_type="linear", **kwargs):
        return diagnostic

    monkeypatch.setattr(wf, "fit_mixture_model", fake_fit)
    return diagnostic


def _metrics():
    from sc_miqc.metrics import MetricPair

    rng = np.random.default_rng(0)
    damage = rng.gamma(2.0, 2.5, size=400)
    complexity = rng.normal(2500.0, 400.0, size=400).clip(100.0, None)
    return MetricPair.from_arrays(damage, complexity)


def test_percentile_backup_discards_above_quantile(monkeypatch):
    from sc_miqc import BackupClassification, filter_cells
    from sc_miqc.errors import DegenerateModelWarning

    _forced_degenerate(monkeypatch)
    metrics = _metrics()
    with pytest.warns(DegenerateModelWarning, match="two distributions"):
        result = filter_cells(metrics, backup_option="percentile", backup_percentile=0.9)

    threshold = np.quantile(metrics.damage, 0.9)
    assert isinstance(result, BackupClassification)
    assert result.kind == "backup"
    assert result.degenerate
    assert result.threshold == pytest.approx(threshold)
    np.testing.assert_array_equal(result.keep, metrics.damage <= threshold)
    assert np.isnan(result.posterior_compromised).all()
    assert any("two distributions" in w for w in result.warnings)


def test_percent_backup_discards_above_absolute_value(monkeypatch):
    from sc_miqc import filter_cells
    from sc_miqc.errors import DegenerateModelWarning

    _forced_degenerate(monkeypatch)
    metrics = _metrics()
    with pytest.warns(DegenerateModelWarning):
        result = filter_cells(metrics, backup_option="percent", backup_percent=10.0)
    np.testing.assert_array_equal(result.keep, metrics.damage <= 10.0)
    assert result.n_discarded == int((metrics.damage > 10.0).sum())
    assert result.metadata()["backup_option"] == "percent"
    assert result.metadata()["degenerate"] is True


def test_pass_backup_keeps_everything_with_skip_warning(monkeypatch):
    from sc_miqc import filter_cells
    from sc_miqc.errors import DegenerateModelWarning

    _forced_degenerate(monkeypatch)
    metrics = _metrics()
    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always")
        result = filter_cells(metrics, backup_option="pass")
    messages = [str(w.message) for w in caught if issubclass(w.category, DegenerateModelWarning)]
    assert result.keep.all()
    assert any("two distributions" in m for m in messages)
    assert any("skipped" in m for m in messages)
    assert len(result.warnings) == 2


def test_halt_backup_raises_and_returns_nothing(monkeypatch):
    from sc_miqc import filter_cells
    from sc_miqc.errors import HaltError

    _forced_degenerate(monkeypatch)
    with pytest.raises(HaltError) as excinfo:
        filter_cells(_metrics(), backup_option="halt")
    assert "halt" in str(excinfo.value)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"backup_option": "median"},
        {"backup_option": "percent"},
        {"backup_option": "percent", "backup_percent": float("inf")},
        {"backup_option": "percentile", "backup_percentile": None},
        {"backup_option": "percentile", "backup_percentile": 95},
    ],
)
def test_backup_parameters_validated_before_fitting(monkeypatch, kwargs):
    import sc_miqc.workflow as wf
    from sc_miqc import filter_cells
    from sc_miqc.errors import ValidationError

    def must_not_fit(*args, **kw):
        raise AssertionError("fitting should not start")

    monkeypatch.setattr(wf, "fit_mixture_model", must_not_fit)
    with pytest.raises(ValidationError):
        filter_cells(_metrics(), **kwargs)


def test_single_population_triggers_backup_end_to_end(single_population):
    from sc_miqc import BackupClassification, DegenerateFit, FitSettings, filter_cells, fit_mixture_model
    from sc_miqc.errors import DegenerateModelWarning

    for seed in range(5):
        metrics = single_population(seed=seed)
        fit = fit_mixture_model(metrics, random_seed=0, settings=FitSettings(n_jobs=1))
        if isinstance(fit, DegenerateFit):
            break
    else:
        pytest.fail("no single-population draw was reported as degenerate")

    with pytest.warns(DegenerateModelWarning):
        result = filter_cells(metrics, backup_option="percentile", backup_percentile=0.95, n_jobs=1)
    assert isinstance(result, BackupClassification)
    assert result.metadata()["reasons"] == dict(fit.reasons)
    assert result.n_kept == int((metrics.damage <= np.quantile(metrics.damage, 0.95)).sum())

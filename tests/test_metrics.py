import numpy as np
import pandas as pd
import pytest


def test_from_arrays_rejects_mismatched_lengths():
    from sc_miqc.errors import ValidationError
    from sc_miqc.metrics import MetricPair

    with pytest.raises(ValidationError) as excinfo:
        MetricPair.from_arrays([1.0, 2.0, 3.0], [100, 200])
    msg = str(excinfo.value)
    assert "damage" in msg
    assert "complexity" in msg


@pytest.mark.parametrize(
    "damage",
    [
        [1.0, np.nan, 3.0],
        [1.0, np.inf, 3.0],
        [1.0, -0.5, 3.0],
        [[1.0, 2.0, 3.0]],
    ],
)
def test_from_arrays_rejects_bad_values(damage):
    from sc_miqc.errors import ValidationError
    from sc_miqc.metrics import MetricPair

    with pytest.raises(ValidationError):
        MetricPair.from_arrays(damage, [100, 200, 300])


def test_validation_error_is_a_value_error():
    from sc_miqc.errors import ValidationError
    from sc_miqc.metrics import MetricPair

    with pytest.raises(ValueError):
        MetricPair.from_arrays([], [])
    assert issubclass(ValidationError, ValueError)


def test_arrays_are_read_only_copies():
    from sc_miqc.metrics import MetricPair

    damage = np.array([1.0, 2.0, 3.0])
    metrics = MetricPair.from_arrays(damage, [10, 20, 30], cell_ids=["a", "b", "c"])
    damage[0] = 99.0
    assert metrics.damage[0] == 1.0
    with pytest.raises(ValueError):
        metrics.damage[0] = 5.0
    assert list(metrics.cell_ids) == ["a", "b", "c"]
    assert len(metrics) == 3


def test_from_obs_reads_scanpy_columns_and_reports_missing():
    from sc_miqc.errors import ValidationError
    from sc_miqc.metrics import MetricPair

    obs = pd.DataFrame(
        {"pct_counts_mt": [1.0, 20.0], "n_genes_by_counts": [2500, 300]},
        index=["AAAC-1", "AAAG-1"],
    )
    metrics = MetricPair.from_obs(obs)
    np.testing.assert_array_equal(metrics.damage, [1.0, 20.0])
    np.testing.assert_array_equal(metrics.complexity, [2500.0, 300.0])
    assert list(metrics.to_dataframe().index) == ["AAAC-1", "AAAG-1"]

    with pytest.raises(ValidationError) as excinfo:
        MetricPair.from_obs(obs, damage_key="subsets_mito_percent")
    assert "subsets_mito_percent" in str(excinfo.value)


def test_from_anndata_does_not_modify_obs():
    ad = pytest.importorskip("anndata")
    from sc_miqc.metrics import MetricPair

    adata = ad.AnnData(X=np.zeros((3, 2), dtype=np.float32))
    adata.obs["pct_counts_mt"] = [2.0, 3.0, 50.0]
    adata.obs["n_genes_by_counts"] = [3000, 2800, 400]
    before = adata.obs.copy()

    metrics = MetricPair.from_anndata(adata)
    assert metrics.n_cells == 3
    assert list(metrics.cell_ids) == list(adata.obs_names)
    pd.testing.assert_frame_equal(adata.obs, before)

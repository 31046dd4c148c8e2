import numpy as np
import pytest


@pytest.mark.parametrize("cutoff", [-0.1, 1.5, float("nan"), "0.5", None, True])
def test_validate_cutoff_rejects_out_of_range(cutoff):
    from sc_miqc.classify import validate_cutoff
    from sc_miqc.errors import ValidationError

    with pytest.raises(ValidationError):
        validate_cutoff(cutoff)


def test_classify_keeps_cells_strictly_below_cutoff():
    from sc_miqc.classify import classify

    post = np.array([[0.9, 0.1], [0.25, 0.75], [0.2, 0.8], [1.0, 0.0]])
    keep = classify(post, compromised_index=1, cutoff=0.75)
    np.testing.assert_array_equal(keep, [True, False, False, True])

    # Same posteriors, other labeling: the compromised column is now 0.
    keep = classify(post, compromised_index=0, cutoff=0.75)
    np.testing.assert_array_equal(keep, [False, True, True, False])


def test_cutoff_edges_and_saturated_posteriors():
    from sc_miqc.classify import classify

    prob = np.array([0.0, 1e-300, 0.5, 1.0])
    assert classify(prob, 0, 1.0).all()
    assert not classify(prob, 0, 0.0).any()


def test_kept_count_is_monotone_in_cutoff():
    from sc_miqc.classify import classify

    rng = np.random.default_rng(0)
    p = rng.beta(0.3, 0.3, size=500)
    p[:5] = 0.0
    p[5:10] = 1.0
    post = np.column_stack([1.0 - p, p])
    counts = [int(classify(post, 1, c).sum()) for c in np.linspace(0.0, 1.0, 41)]
    assert counts == sorted(counts)
    assert counts[0] == 0
    assert counts[-1] == 500


def test_rescue_below_boundary_zeroes_cells_under_intact_curve():
    from sc_miqc.classify import rescue_below_boundary

    prob = np.array([0.9, 0.9, 0.1])
    damage = np.array([2.0, 8.0, 1.0])
    intact = np.array([5.0, 5.0, 5.0])
    out = rescue_below_boundary(prob, damage, intact)
    np.testing.assert_array_equal(out, [0.0, 0.9, 0.0])
    np.testing.assert_array_equal(prob, [0.9, 0.9, 0.1])


def test_enforce_left_cutoff_discards_up_and_left_of_least_damaged_discard():
    from sc_miqc.classify import enforce_left_cutoff

    damage = np.array([30.0, 12.0, 20.0, 25.0, 40.0, 4.0])
    complexity = np.array([900.0, 1500.0, 1000.0, 2000.0, 600.0, 500.0])
    prob = np.array([0.99, 0.9, 0.2, 0.1, 0.3, 0.01])
    out = enforce_left_cutoff(prob, damage, complexity, cutoff=0.75)
    # Least-damaged discarded cell is index 1 (damage 12, complexity 1500):
    # cells 2 and 4 sit at lower complexity with damage >= 12.
    np.testing.assert_array_equal(out, [1.0, 1.0, 1.0, 0.1, 1.0, 0.01])


def test_enforce_left_cutoff_without_discards_is_identity():
    from sc_miqc.classify import enforce_left_cutoff

    prob = np.array([0.1, 0.2])
    out = enforce_left_cutoff(prob, np.array([1.0, 2.0]), np.array([10.0, 20.0]), cutoff=0.75)
    np.testing.assert_array_equal(out, prob)

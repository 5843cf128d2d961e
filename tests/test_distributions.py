import sys
from pathlib import Path

import numpy as np
import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from distributions import BinTableError, build_bin_table, pdf_values


def test_bin_table_scales_most_probable_bin_to_one():
    table = build_bin_table([0.0, 100.0, 200.0], [1.0, 3.0])

    np.testing.assert_allclose(table.probabilities, [0.0, 1.0 / 3.0, 1.0, 0.0])
    assert table.edges[0] == -np.inf
    assert table.edges[-1] == np.inf
    np.testing.assert_allclose(table.finite_edges, [0.0, 100.0, 200.0])


def test_density_integrates_to_one():
    edges = [0.0, 50.0, 250.0, 1000.0]
    density = pdf_values(edges, [2.0, 1.0, 1.0])
    assert np.sum(density * np.diff(edges)) == pytest.approx(1.0)


def test_single_bin_accepts_everything_inside_with_unit_weight():
    table = build_bin_table([0.0, 500.0], [1.0])

    assert table.accepts(250.0, 0.999)
    assert table.importance_weight(250.0) == pytest.approx(1.0)


def test_bin_lookup_is_right_open():
    table = build_bin_table([0.0, 100.0, 200.0], [1.0, 3.0])

    assert table.acceptance_probability(0.0) == pytest.approx(1.0 / 3.0)
    assert table.acceptance_probability(100.0) == pytest.approx(1.0)
    # The upper edge belongs to the +inf sentinel bin.
    assert table.acceptance_probability(200.0) == 0.0
    assert table.acceptance_probability(-1.0) == 0.0


def test_accepts_uses_inclusive_draw_comparison():
    table = build_bin_table([0.0, 100.0, 200.0], [1.0, 3.0])
    p = table.acceptance_probability(50.0)

    assert table.accepts(50.0, p)
    assert not table.accepts(50.0, 0.5)
    assert not table.accepts(500.0, 0.0)


def test_nan_is_never_accepted():
    table = build_bin_table([0.0, 100.0], [1.0])
    assert table.acceptance_probability(float("nan")) == 0.0
    assert not table.accepts(float("nan"), 0.0)


def test_importance_weight_is_inverse_probability():
    table = build_bin_table([0.0, 100.0, 200.0], [1.0, 3.0])
    assert table.importance_weight(50.0) == pytest.approx(3.0)

    with pytest.raises(BinTableError):
        table.importance_weight(1000.0)


@pytest.mark.parametrize(
    "edges, proportions",
    [
        ([0.0, 100.0, 200.0], [1.0]),
        ([0.0, 100.0, 100.0], [1.0, 1.0]),
        ([0.0, 100.0], [0.0]),
        ([0.0, 100.0], [-1.0]),
        ([0.0], []),
    ],
)
def test_invalid_inputs_raise(edges, proportions):
    with pytest.raises(BinTableError):
        build_bin_table(edges, proportions)


def test_bin_table_arrays_are_read_only():
    table = build_bin_table([0.0, 100.0], [1.0])
    with pytest.raises(ValueError):
        table.probabilities[1] = 0.5

"""
Test per-node summaries and binning utilities.
"""

import numpy as np
import pandas as pd
import pytest

from scbranch.utils import (
    mean_of_logs,
    output_uniform,
    summarize_by_node,
    binned_means,
    normalize_to_unit
)


class TestMeanOfLogs:
    """Test averaging of log-transformed expression."""

    def test_uniform_values(self):
        assert mean_of_logs([1.0, 1.0]) == pytest.approx(1.0)

    def test_averages_in_linear_space(self):
        # 2**0 - 1 = 0 and 2**2 - 1 = 3, mean 1.5
        assert mean_of_logs([0.0, 2.0]) == pytest.approx(np.log2(2.5))

    def test_other_base(self):
        assert mean_of_logs([np.log(3.0)], base=np.e) == pytest.approx(np.log(3.0))


class TestOutputUniform:
    """Test uniform-value detection for discrete labels."""

    def test_uniform(self):
        assert output_uniform(["a", "a", "a"]) == "a"

    def test_mixed(self):
        assert output_uniform(["a", "b"]) is None

    def test_values_returned_as_strings(self):
        assert output_uniform([3, 3]) == "3"

    def test_missing_counts_as_value(self):
        assert output_uniform(["a", np.nan]) is None

    def test_missing_ignored(self):
        assert output_uniform(["a", np.nan, None], ignore_na=True) == "a"


class TestSummarizeByNode:
    """Test node-level aggregation."""

    def test_continuous(self):
        summary = summarize_by_node(
            values=[1.0, 1.0, 0.0, 2.0],
            nodes=["n1", "n1", "n2", "n2"]
        )

        assert summary.loc["n1", "value"] == pytest.approx(1.0)
        assert summary.loc["n2", "value"] == pytest.approx(np.log2(2.5))
        assert summary.loc["n1", "n"] == 2

    def test_discrete(self):
        summary = summarize_by_node(
            values=["stage1", "stage1", "stage1", "stage2"],
            nodes=["n1", "n1", "n2", "n2"],
            discrete=True
        )

        assert summary.loc["n1", "value"] == "stage1"
        assert pd.isna(summary.loc["n2", "value"])

    def test_length_mismatch(self):
        with pytest.raises(ValueError, match="same length"):
            summarize_by_node([1.0, 2.0], ["n1"])


class TestBinning:
    """Test normalization and binned means."""

    def test_normalize_constant(self):
        normalized, vmin, vmax = normalize_to_unit(np.array([2.0, 2.0]))

        assert np.allclose(normalized, 0.5)
        assert vmin == vmax == 2.0

    def test_binned_means(self):
        x = np.arange(12, dtype=float)
        expression = pd.DataFrame({"g": np.repeat([1.0, 2.0, 3.0], 4)}, index=[f"c{i}" for i in range(12)])

        x_binned, expr_binned = binned_means(x, expression, n_bins=3)

        assert len(x_binned) == 3
        assert np.allclose(x_binned, [1.5, 5.5, 9.5])
        assert np.allclose(expr_binned["g"], [1.0, 2.0, 3.0])

    def test_binned_means_drops_missing_x(self):
        """Cells without x are left out instead of collapsing the bin edges."""
        x = np.arange(13, dtype=float)
        x[12] = np.nan
        expression = pd.DataFrame({"g": np.append(np.repeat([1.0, 2.0, 3.0], 4), 100.0)})

        x_binned, expr_binned = binned_means(x, expression, n_bins=3)

        assert np.allclose(x_binned, [1.5, 5.5, 9.5])
        assert np.allclose(expr_binned["g"], [1.0, 2.0, 3.0])

    def test_binned_means_all_missing(self):
        with pytest.raises(ValueError, match="no finite values"):
            binned_means(np.full(3, np.nan), pd.DataFrame({"g": [1.0, 2.0, 3.0]}), n_bins=2)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

"""Tests for reference-grid construction."""

import numpy as np
import pandas as pd
import pytest

from margins import (
    USE_DATA,
    EmptyGridError,
    GridPolicy,
    LevelMix,
    MarginsConfig,
    UnknownPredictorError,
    UnsupportedPredictorError,
    build_grid,
    datagrid,
)


class TestCounterfactual:
    """Test counterfactual grids."""

    def test_size_is_rows_times_values(self, mixed_data):
        """One full dataset copy per explicit value."""
        grid = build_grid(mixed_data, {"g": ["a", "b", "c"]}, "counterfactual")

        assert len(grid) == len(mixed_data) * 3
        assert grid.policy is GridPolicy.COUNTERFACTUAL
        assert grid.frame.index.name == "rowid"

    def test_only_fixed_predictor_overwritten(self, mixed_data):
        """Other predictors keep each observation's values."""
        grid = build_grid(mixed_data, {"x": [0.0, 1.0]}, "counterfactual")
        frame = grid.frame

        np.testing.assert_array_equal(frame["z"].to_numpy(),
                                      np.tile(mixed_data["z"].to_numpy(), 2))
        assert (frame["x"].iloc[:60] == 0.0).all()
        assert (frame["x"].iloc[60:] == 1.0).all()
        np.testing.assert_array_equal(frame.index.to_numpy(),
                                      np.tile(np.arange(60), 2))

    def test_two_fixed_predictors_cross(self, mixed_data):
        """Fixed predictors are crossed."""
        grid = build_grid(mixed_data, {"x": [0, 1], "g": ["a", "c"]},
                          "counterfactual")

        assert len(grid) == 60 * 4
        assert grid.keys == ("x", "g")

    def test_empty_dataset_raises(self):
        """No rows to copy."""
        empty = pd.DataFrame({"x": pd.Series([], dtype=float)})

        with pytest.raises(EmptyGridError):
            build_grid(empty, {"x": [1.0]}, "counterfactual")


class TestTypical:
    """Test typical-value grids."""

    def test_numeric_collapse_to_mean(self, mixed_data):
        """Unspecified numeric predictors take their mean."""
        grid = build_grid(mixed_data, {"x": [0.0, 1.0]}, "typical")

        assert len(grid) == 2
        assert grid.frame["z"].iloc[0] == pytest.approx(mixed_data["z"].mean())
        assert grid.frame["x"].tolist() == [0.0, 1.0]

    def test_median_option(self, mixed_data):
        """numeric_typical='median' uses the median."""
        config = MarginsConfig(numeric_typical="median")
        grid = build_grid(mixed_data, {}, "typical", config=config)

        assert grid.frame["z"].iloc[0] == pytest.approx(mixed_data["z"].median())

    def test_categorical_proportional_default(self, mixed_data):
        """Factors collapse to their observed level shares by default."""
        grid = build_grid(mixed_data, {}, "typical")
        mix = grid.frame["g"].iloc[0]

        assert len(grid) == 1
        assert isinstance(mix, LevelMix)
        assert mix.weight("a") == pytest.approx(1 / 3)
        assert mix.weight("c") == pytest.approx(1 / 3)

    def test_categorical_reference_option(self, mixed_data):
        """categorical_typical='reference' picks the first level."""
        config = MarginsConfig(categorical_typical="reference")
        grid = build_grid(mixed_data, {}, "typical", config=config)

        assert grid.frame["g"].iloc[0] == "a"

    def test_categorical_mode_option(self):
        """categorical_typical='mode' picks the most frequent level."""
        data = pd.DataFrame({"g": ["u", "v", "v"], "x": [1.0, 2.0, 3.0]})
        config = MarginsConfig(categorical_typical="mode")
        grid = build_grid(data, {}, "typical", config=config)

        assert grid.frame["g"].iloc[0] == "v"

    def test_use_data_expands_levels(self, mixed_data):
        """USE_DATA takes every observed level, in order."""
        grid = build_grid(mixed_data, {"g": USE_DATA}, "typical")

        assert grid.frame["g"].tolist() == ["a", "b", "c"]

    def test_cross_product_order(self, mixed_data):
        """Rows follow the order of the keyword values."""
        grid = datagrid(mixed_data, x=[0, 1], g=["a", "b"])

        assert list(zip(grid.frame["x"], grid.frame["g"])) == [
            (0.0, "a"), (0.0, "b"), (1.0, "a"), (1.0, "b"),
        ]

    def test_scales_come_from_dataset(self, mixed_data):
        """Numeric ranges are kept for step sizing."""
        grid = build_grid(mixed_data, {}, "typical")

        span = mixed_data["x"].max() - mixed_data["x"].min()
        assert grid.scales["x"] == pytest.approx(span)

    def test_empty_value_list_raises(self, mixed_data):
        """An explicit empty list leaves nothing to evaluate."""
        with pytest.raises(EmptyGridError):
            build_grid(mixed_data, {"x": []}, "typical")


class TestValidation:
    """Test grid failures and the as-is policy."""

    def test_unknown_predictor(self, mixed_data):
        """Spec names must be dataset columns."""
        with pytest.raises(UnknownPredictorError) as info:
            build_grid(mixed_data, {"w": [1]}, "typical")

        assert info.value.name == "w"
        assert "build_grid" in str(info.value)

    def test_as_is_is_unchanged(self, mixed_data):
        """The as-is grid is the dataset."""
        grid = build_grid(mixed_data, None, "as-is")

        pd.testing.assert_frame_equal(grid.frame, mixed_data)

    def test_as_is_rejects_fixed_values(self, mixed_data):
        """Fixed values need a typical or counterfactual grid."""
        with pytest.raises(ValueError):
            build_grid(mixed_data, {"x": 1.0}, "as-is")

    def test_iteration_yields_rows(self, mixed_data):
        """Grids iterate as covariate rows."""
        grid = datagrid(mixed_data, x=[0.5])
        rows = list(grid)

        assert len(rows) == 1
        assert rows[0]["x"] == 0.5


class TestUnsummarisableColumns:
    """Test typical grids on data with columns that have no typical value."""

    @pytest.fixture
    def dated(self):
        return pd.DataFrame({
            "x": np.linspace(0, 1, 6),
            "g": ["a", "b"] * 3,
            "date": pd.date_range("2024-01-01", periods=6),
        })

    def test_unreferenced_column_is_dropped(self, dated):
        """Only the named predictors are collapsed."""
        grid = build_grid(dated, {}, "typical", predictors=["x"])

        assert grid.columns == ["x"]
        assert grid.frame["x"].iloc[0] == pytest.approx(0.5)

    def test_spec_columns_are_kept(self, dated):
        grid = build_grid(dated, {"g": USE_DATA}, "typical", predictors=["x"])

        assert grid.columns == ["x", "g"]
        assert len(grid) == 2

    def test_dates_dropped_without_predictor_list(self, dated):
        grid = build_grid(dated, {}, "typical")

        assert "date" not in grid.columns
        assert "g" in grid.columns

    def test_required_date_raises_taxonomy_error(self, dated):
        with pytest.raises(UnsupportedPredictorError) as info:
            build_grid(dated, {}, "typical", predictors=["x", "date"])

        assert info.value.name == "date"
        assert info.value.code == "UNSUPPORTED_PREDICTOR"

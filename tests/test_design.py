"""Tests for formula parsing, design matrices and model wrappers."""

import numpy as np
import pandas as pd
import pytest

from margins import (
    Design,
    FittedModel,
    LevelMix,
    MissingPredictorError,
    UnknownPredictorError,
    get_link,
)

from conftest import LINEAR_PARAMS


@pytest.fixture
def small():
    return pd.DataFrame({
        "x": [1.0, 2.0, 3.0, 4.0],
        "z": [0.5, 0.0, -1.0, 2.0],
        "g": ["b", "a", "c", "a"],
    })


class TestFormula:
    """Test the R-like formula parser."""

    def test_columns_in_order(self, small):
        design = Design.from_formula("y ~ x + I(x^2) + C(g)", small)

        assert design.column_names == [
            "Intercept", "x", "I(x^2)", "C(g)[T.b]", "C(g)[T.c]",
        ]
        assert design.predictors == ("x", "g")
        assert design.categorical == {"g": ["a", "b", "c"]}

    def test_star_expands_to_interaction(self, small):
        design = Design.from_formula("x * z", small)

        assert design.column_names == ["Intercept", "x", "z", "x:z"]
        X = design.matrix(small)
        np.testing.assert_allclose(X[:, 3], small["x"] * small["z"])

    def test_no_intercept_and_reference(self, small):
        """'0 +' drops the intercept; ref= moves the reference level."""
        design = Design.from_formula("0 + x + C(g, ref='b')", small)

        assert design.column_names == ["x", "C(g)[T.a]", "C(g)[T.c]"]

    def test_minus_one_drops_intercept(self, small):
        design = Design.from_formula("x - 1", small)

        assert design.column_names == ["x"]

    def test_power_spellings(self, small):
        a = Design.from_formula("x + x**2", small)
        b = Design.from_formula("x + x^2", small)

        assert a.column_names == b.column_names == ["Intercept", "x", "I(x^2)"]

    def test_string_column_is_categorical(self, small):
        design = Design.from_formula("g", small)

        assert design.column_names == ["Intercept", "C(g)[T.b]", "C(g)[T.c]"]

    def test_categorical_interaction_columns(self, small):
        design = Design.from_formula("x:C(g)", small)

        assert design.column_names == [
            "Intercept", "x:C(g)[T.b]", "x:C(g)[T.c]",
        ]
        X = design.matrix(small)
        np.testing.assert_allclose(X[:, 1], [1.0, 0.0, 0.0, 0.0])
        np.testing.assert_allclose(X[:, 2], [0.0, 0.0, 3.0, 0.0])

    def test_unknown_column(self, small):
        with pytest.raises(UnknownPredictorError) as info:
            Design.from_formula("x + w", small)

        assert info.value.name == "w"

    def test_unparseable_term(self, small):
        with pytest.raises(ValueError):
            Design.from_formula("x + log(z)", small)


class TestDesignMatrix:
    """Test dummy coding on data and on collapsed grids."""

    def test_dummy_coding(self, small):
        X = Design.from_formula("C(g)", small).matrix(small)

        np.testing.assert_allclose(X, [[1, 1, 0], [1, 0, 0], [1, 0, 1], [1, 0, 0]])

    def test_level_mix_uses_shares(self, small):
        """A LevelMix row puts the level shares in the dummy columns."""
        design = Design.from_formula("C(g)", small)
        mix = LevelMix.from_series(small["g"])
        grid = pd.DataFrame({"g": pd.Series([mix], dtype=object)})

        np.testing.assert_allclose(design.matrix(grid), [[1.0, 0.25, 0.25]])

    def test_unknown_level(self, small):
        design = Design.from_formula("C(g)", small)

        with pytest.raises(ValueError):
            design.matrix(pd.DataFrame({"g": ["d"]}))

    def test_level_mix_is_hashable_and_normalised(self):
        mix = LevelMix({"a": 2, "b": 6})

        assert mix.weight("b") == pytest.approx(0.75)
        assert mix == LevelMix({"a": 1, "b": 3})
        assert hash(mix) == hash(LevelMix({"a": 1, "b": 3}))
        with pytest.raises(AttributeError):
            mix.extra = 1


class TestFittedModel:
    """Test the fitted-model wrapper."""

    def test_predict_scales(self, logit_model, mixed_data):
        eta = logit_model.predict(mixed_data, scale="link")
        mu = logit_model.predict(mixed_data)

        np.testing.assert_allclose(mu, 1 / (1 + np.exp(-eta)))
        with pytest.raises(ValueError):
            logit_model.predict(mixed_data, scale="odds")

    def test_params_are_read_only_copies(self, mixed_data):
        params = np.array(LINEAR_PARAMS)
        model = FittedModel.from_formula("x + z + C(g)", mixed_data, params,
                                         np.eye(5))

        params[0] = 99.0
        assert model.params[0] == 1.0
        with pytest.raises(ValueError):
            model.params[0] = 5.0

    def test_shape_checks(self, mixed_data):
        with pytest.raises(ValueError):
            FittedModel.from_formula("x + z", mixed_data, [1.0, 2.0], np.eye(2))
        with pytest.raises(ValueError):
            FittedModel.from_formula("x + z", mixed_data, [1.0, 2.0, 3.0], np.eye(2))

    def test_missing_values_rejected(self, linear_model, mixed_data):
        data = mixed_data.copy()
        data.loc[3, "x"] = np.nan

        with pytest.raises(MissingPredictorError) as info:
            linear_model.check_predictors(data)
        assert info.value.n_missing == 1
        assert isinstance(info.value, UnknownPredictorError)

    def test_coefficient_lookup(self, linear_model):
        assert linear_model.coefficient("C(g)[T.b]") == 0.5
        with pytest.raises(KeyError):
            linear_model.coefficient("w")


class TestLinks:
    @pytest.mark.parametrize("name", ["identity", "logit", "probit", "log", "cloglog"])
    def test_inverse_and_derivative(self, name):
        """linkinv inverts linkfun and mu_eta is its derivative."""
        link = get_link(name)
        eta = np.linspace(-1.5, 1.5, 7)
        h = 1e-6

        np.testing.assert_allclose(link.linkfun(link.linkinv(eta)), eta, atol=1e-8)
        numeric = (link.linkinv(eta + h) - link.linkinv(eta - h)) / (2 * h)
        np.testing.assert_allclose(link.mu_eta(eta), numeric, rtol=1e-5)

    def test_unknown_link(self):
        with pytest.raises(ValueError):
            get_link("tobit")

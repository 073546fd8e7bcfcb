"""Tests for pairwise and expression contrasts."""

import numpy as np
import pandas as pd
import pytest

from margins import (
    FittedModel,
    IncompatibleEstimatesError,
    UnknownTermError,
    UnsupportedExpressionError,
    contrast,
    linear_combination,
    marginal_means,
    pairwise,
    slopes,
)


@pytest.fixture
def factorial():
    """2x2 design with cell means a,u = 1; a,v = 4; b,u = 3; b,v = 10."""
    data = pd.DataFrame({
        "f1": ["a", "a", "b", "b"] * 5,
        "f2": ["u", "v", "u", "v"] * 5,
    })
    vcov = np.diag([0.04, 0.09, 0.16, 0.25])
    vcov[0, 1] = vcov[1, 0] = 0.01
    model = FittedModel.from_formula("C(f1) * C(f2)", data, [1.0, 2.0, 3.0, 4.0],
                                     vcov, df_resid=16)
    return model, data


@pytest.fixture
def cell_means(factorial):
    model, data = factorial
    return marginal_means(model, data, ["f1", "f2"])


class TestPairwise:
    """Test all-pairs and ordered comparisons of estimates."""

    def test_emm_pairwise(self, linear_model, mixed_data):
        """Three pairs for three levels, later minus earlier."""
        emms = marginal_means(linear_model, mixed_data, "g")
        pairs = pairwise(emms)

        assert [p.contrast for p in pairs] == [
            "g=b - g=a", "g=c - g=a", "g=c - g=b",
        ]
        np.testing.assert_allclose([p.estimate for p in pairs], [0.5, 0.25, -0.25])

    def test_pairwise_se_uses_covariance(self, linear_model, mixed_data):
        """SE comes from the combined gradient, not independent SEs."""
        emms = marginal_means(linear_model, mixed_data, "g")
        diff = pairwise(emms)[2]
        g = emms[2].gradient - emms[1].gradient
        V = linear_model.vcov

        assert diff.std_error == pytest.approx(np.sqrt(g @ V @ g))
        np.testing.assert_allclose(g, [0, 0, 0, -1, 1], atol=1e-12)

    def test_revpairwise_flips_signs(self, cell_means):
        """revpairwise is earlier minus later."""
        fwd = pairwise(cell_means)
        rev = pairwise(cell_means, "revpairwise")

        assert len(fwd) == len(rev) == 6
        np.testing.assert_allclose([r.estimate for r in rev],
                                   [-f.estimate for f in fwd])

    def test_reference_and_sequential(self, cell_means):
        """Against the first estimate, or against the previous one."""
        ref = pairwise(cell_means, "reference")
        seq = pairwise(cell_means, "sequential")

        np.testing.assert_allclose([r.estimate for r in ref], [3.0, 2.0, 9.0])
        np.testing.assert_allclose([s.estimate for s in seq], [3.0, -1.0, 7.0])

    def test_single_estimate_has_no_pairs(self, cell_means):
        assert pairwise(cell_means[:1]) == []

    def test_unknown_method(self, cell_means):
        with pytest.raises(ValueError):
            pairwise(cell_means, "all")


class TestExpressions:
    """Test contrast expressions over positional and labelled estimates."""

    def test_interaction_contrast(self, factorial, cell_means):
        """(b4 - b3) - (b2 - b1) isolates the interaction coefficient."""
        model, _ = factorial
        est = contrast(cell_means, "(b4 - b3) - (b2 - b1)")

        assert est.estimate == pytest.approx(4.0)
        assert est.std_error == pytest.approx(np.sqrt(model.vcov[3, 3]))
        np.testing.assert_allclose(est.gradient, [0, 0, 0, 1], atol=1e-12)
        assert est.rows == (1, 2, 3, 4)

    def test_equation_is_difference(self, cell_means):
        """'lhs = rhs' is evaluated as lhs - rhs."""
        a = contrast(cell_means, "b2 = b1")
        b = contrast(cell_means, "b2 - b1")

        assert a.estimate == pytest.approx(b.estimate)
        assert a.std_error == pytest.approx(b.std_error)

    def test_constants_scale_and_shift(self, cell_means):
        """Numeric constants multiply, divide and shift."""
        est = contrast(cell_means, "(b1 + b2 + b3 + b4) / 4 - 1")

        assert est.estimate == pytest.approx((1 + 4 + 3 + 10) / 4 - 1)
        np.testing.assert_allclose(est.gradient, [1, 0.5, 0.5, 0.25])

    def test_identifier_labels(self, logit_model, mixed_data):
        """Estimates whose labels are identifiers can be named directly."""
        ame = slopes(logit_model, mixed_data, "x")[0]
        single = linear_combination([ame], [1.0], label="single")
        double = linear_combination([ame], [2.0], label="double")

        assert double.contrast == "double"
        est = contrast([single, double], "double - single")
        assert est.estimate == pytest.approx(ame.estimate)
        assert est.std_error == pytest.approx(ame.std_error)

    def test_linear_combination_matches_expression(self, cell_means):
        by_weights = linear_combination(cell_means, [1, -1, -1, 1])
        by_expr = contrast(cell_means, "b1 - b2 - b3 + b4")

        assert by_weights.estimate == pytest.approx(by_expr.estimate)
        assert by_weights.std_error == pytest.approx(by_expr.std_error)

    def test_linear_combination_weight_count(self, cell_means):
        with pytest.raises(ValueError):
            linear_combination(cell_means, [1, -1])


class TestExpressionErrors:
    """Test rejected expressions."""

    def test_unknown_term(self, cell_means):
        with pytest.raises(UnknownTermError) as info:
            contrast(cell_means, "b5 - b1")

        assert info.value.name == "b5"
        assert info.value.code == "UNKNOWN_TERM"

    @pytest.mark.parametrize("expression", [
        "b1 * b2",
        "b1 / b2",
        "b1 / 0",
        "b1 ** 2",
        "log(b1)",
        "2 + 3",
        "b1 = b2 = b3",
        "b1 -",
    ])
    def test_unsupported(self, cell_means, expression):
        with pytest.raises(UnsupportedExpressionError):
            contrast(cell_means, expression)

    def test_estimates_from_different_models(self, factorial, cell_means):
        model, data = factorial
        other = FittedModel.from_formula("C(f1) * C(f2)", data, model.params,
                                         np.eye(4))
        foreign = marginal_means(other, data, ["f1", "f2"])

        with pytest.raises(IncompatibleEstimatesError):
            linear_combination([cell_means[0], foreign[1]], [1, -1])

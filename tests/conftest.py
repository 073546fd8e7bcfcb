"""Shared fixtures: simulated datasets and models with known coefficients."""

import numpy as np
import pandas as pd
import pytest

from margins import FittedModel, set_config


LOGIT_PARAMS = [-0.5, 1.2, -0.8, 0.9, 0.4, -0.6]
LINEAR_PARAMS = [1.0, 2.0, -1.5, 0.5, 0.25]


def random_vcov(k, seed):
    rng = np.random.default_rng(seed)
    A = rng.normal(size=(k, k))
    return 0.01 * (A @ A.T) + 0.01 * np.eye(k)


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts from the default configuration."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def mixed_data():
    """Two numeric predictors, one three-level factor, a binary outcome."""
    rng = np.random.default_rng(7)
    n = 60
    x = rng.normal(0, 1, n)
    z = rng.uniform(0, 2, n)
    g = np.array(["a", "b", "c"])[np.arange(n) % 3]
    eta = (-0.5 + 1.2 * x - 0.8 * z + 0.9 * x * z
           + np.where(g == "b", 0.4, 0.0) + np.where(g == "c", -0.6, 0.0))
    y = (rng.uniform(size=n) < 1 / (1 + np.exp(-eta))).astype(float)
    return pd.DataFrame({"x": x, "z": z, "g": g, "y": y})


@pytest.fixture
def logit_model(mixed_data):
    """Logit with an x:z interaction; columns Int, x, z, x:z, g[b], g[c]."""
    return FittedModel.from_formula(
        "x * z + C(g)", mixed_data, LOGIT_PARAMS, random_vcov(6, 1),
        link="logit", name="logit",
    )


@pytest.fixture
def linear_model(mixed_data):
    """Linear model; columns Int, x, z, g[b], g[c]."""
    return FittedModel.from_formula(
        "x + z + C(g)", mixed_data, LINEAR_PARAMS, random_vcov(5, 2),
        link="identity", df_resid=55, name="ols",
    )


@pytest.fixture
def quadratic_data():
    """20 rows of y = 1.5 + 3x - 0.5x^2 + small noise."""
    rng = np.random.default_rng(11)
    x = np.linspace(0, 5, 20)
    y = 1.5 + 3 * x - 0.5 * x ** 2 + rng.normal(0, 0.05, 20)
    return pd.DataFrame({"x": x, "y": y})


@pytest.fixture
def disclose_data():
    """Binary disclosure outcome driven by a corruption index."""
    rng = np.random.default_rng(3)
    n = 400
    corruption = rng.uniform(0, 1, n)
    p = 1 / (1 + np.exp(-(-1.0 + 2.5 * corruption)))
    disclose = (rng.uniform(size=n) < p).astype(float)
    return pd.DataFrame({"corruption": corruption, "disclose": disclose})

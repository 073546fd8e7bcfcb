"""
Shared utility functions used across the margins modules.
"""

import numpy as np
import pandas as pd
from pandas.api import types as ptypes


def ols_fit(X, y):
    """
    OLS estimation via least squares.

    Parameters
    ----------
    X : ndarray, shape (n, k)
        Design matrix (should include a constant column if an intercept is desired).
    y : ndarray, shape (n,)
        Outcome vector.

    Returns
    -------
    b : ndarray, shape (k,)
        Coefficient estimates  beta_hat = (X'X)^{-1} X'y.
    cov : ndarray, shape (k, k)
        Homoskedastic covariance  s2 * (X'X)^{-1}.
    e : ndarray, shape (n,)
        Residuals  y - X @ b.
    s2 : float
        Estimated error variance  e'e / (n - k).
    """
    n, k = X.shape
    b = np.linalg.lstsq(X, y, rcond=None)[0]
    e = y - X @ b
    s2 = (e @ e) / (n - k)
    cov = s2 * np.linalg.pinv(X.T @ X)
    return b, cov, e, s2


def as_frame(data):
    """
    Coerce a dataset to a pandas DataFrame.

    Accepts a DataFrame (copied), a mapping of column -> values, or a
    sequence of row mappings.
    """
    if isinstance(data, pd.DataFrame):
        return data.copy()
    if isinstance(data, dict):
        return pd.DataFrame({k: np.atleast_1d(v) for k, v in data.items()})
    return pd.DataFrame(list(data))


def is_categorical(series):
    """True for object, string, boolean and pandas categorical columns."""
    return (
        isinstance(series.dtype, pd.CategoricalDtype)
        or ptypes.is_object_dtype(series)
        or ptypes.is_string_dtype(series)
        or ptypes.is_bool_dtype(series)
    )


def sorted_levels(series):
    """
    Levels of a categorical column in their natural order.

    Pandas categoricals keep their declared category order; anything
    else is sorted.
    """
    if isinstance(series.dtype, pd.CategoricalDtype):
        return list(series.cat.categories)
    values = pd.unique(series.dropna())
    try:
        return sorted(values)
    except TypeError:
        return sorted(values, key=str)


def unique_values(series):
    """Sorted unique observed values of a column (levels for categoricals)."""
    if is_categorical(series):
        return sorted_levels(series)
    return sorted(pd.unique(series.dropna()))

"""
Delta-method uncertainty propagation.

For an estimate theta = f(beta) the first-order approximation

    Var(theta_hat) ~= grad f(beta)' V grad f(beta)

gives its standard error from the parameter covariance V.  Gradients
come from the caller (closed form) or from central finite differences
on the parameters.
"""

import numpy as np
from scipy import stats

from .exceptions import IllConditionedCovarianceError


def check_covariance(cov, tol=1e-10):
    """
    Validate a covariance matrix for delta-method use.

    Singularity is judged on the correlation matrix D^-1/2 V D^-1/2
    (D = diag(V)), so coefficients on very different scales do not make
    a well-identified fit look singular.

    Parameters
    ----------
    cov : ndarray, shape (k, k)
    tol : float
        Correlation-matrix eigenvalues below ``tol`` count as zero.

    Raises
    ------
    IllConditionedCovarianceError
        Not square, non-finite, asymmetric, not positive semi-definite,
        or singular.
    """
    cov = np.asarray(cov, dtype=float)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise IllConditionedCovarianceError(f"not square: shape {cov.shape}")
    if not np.all(np.isfinite(cov)):
        raise IllConditionedCovarianceError("non-finite entries")
    scale = np.abs(cov).max() if cov.size else 0.0
    if not np.allclose(cov, cov.T, rtol=1e-8, atol=tol * max(scale, 1e-300)):
        raise IllConditionedCovarianceError("not symmetric")
    if scale == 0.0:
        raise IllConditionedCovarianceError("singular (all entries zero)")
    var = np.diag(cov)
    if np.any(var < 0):
        raise IllConditionedCovarianceError(
            f"not positive semi-definite (negative variance {var.min():.3g})"
        )
    if np.any(var == 0):
        raise IllConditionedCovarianceError(
            f"singular (zero variance for parameter {int(np.argmin(var))})"
        )
    inv_sd = 1 / np.sqrt(var)
    eig = np.linalg.eigvalsh((cov + cov.T) / 2 * np.outer(inv_sd, inv_sd))
    if eig.min() < -tol:
        raise IllConditionedCovarianceError(
            f"not positive semi-definite (min correlation eigenvalue {eig.min():.3g})"
        )
    if eig.min() <= tol:
        raise IllConditionedCovarianceError(
            f"singular (min correlation eigenvalue {eig.min():.3g})"
        )


def critical_value(conf_level=0.95, df=None):
    """
    Two-sided critical value: normal when ``df`` is None or infinite,
    Student t with ``df`` degrees of freedom otherwise.
    """
    q = 1 - (1 - conf_level) / 2
    if df is None or not np.isfinite(df):
        return float(stats.norm.ppf(q))
    return float(stats.t.ppf(q, df))


def p_value(statistic, df=None):
    """Two-sided p-value for a z (or t with ``df``) statistic."""
    statistic = np.abs(np.asarray(statistic, dtype=float))
    if df is None or not np.isfinite(df):
        return 2 * stats.norm.sf(statistic)
    return 2 * stats.t.sf(statistic, df)


def numerical_jacobian(fn, params, rel_step=1e-6):
    """
    Central-difference Jacobian of a vector function of the parameters.

    Parameters
    ----------
    fn : callable
        params -> scalar or ndarray of shape (m,).
    params : ndarray, shape (k,)
    rel_step : float
        Step for parameter j is ``rel_step * max(|params[j]|, 1)``.

    Returns
    -------
    J : ndarray, shape (m, k)
    """
    params = np.asarray(params, dtype=float)
    base = np.atleast_1d(np.asarray(fn(params), dtype=float))
    J = np.empty((base.size, params.size))
    for j in range(params.size):
        h = rel_step * max(abs(params[j]), 1.0)
        up = params.copy()
        dn = params.copy()
        up[j] += h
        dn[j] -= h
        J[:, j] = (np.atleast_1d(fn(up)) - np.atleast_1d(fn(dn))) / (2 * h)
    return J


def delta_method(values, jacobian, cov, conf_level=0.95, df=None, tol=1e-10):
    """
    Standard errors, test statistics and confidence intervals for a
    vector of estimates with known gradients.

    Parameters
    ----------
    values : ndarray, shape (m,)
    jacobian : ndarray, shape (m, k)
        Row i is the gradient of estimate i w.r.t. the parameters.
    cov : ndarray, shape (k, k)
    conf_level : float
    df : float or None
        Degrees of freedom for t intervals (None: normal).

    Returns
    -------
    dict with keys:
        se         : standard errors
        statistic  : values / se (test of zero)
        p_value    : two-sided p-values
        conf_low   : lower confidence bounds
        conf_high  : upper confidence bounds

    Raises
    ------
    IllConditionedCovarianceError
    """
    check_covariance(cov, tol=tol)
    values = np.asarray(values, dtype=float)
    J = np.atleast_2d(np.asarray(jacobian, dtype=float))
    var = np.einsum("ij,jk,ik->i", J, np.asarray(cov, dtype=float), J)
    se = np.sqrt(np.clip(var, 0.0, None))
    crit = critical_value(conf_level, df)
    with np.errstate(divide="ignore", invalid="ignore"):
        stat = np.where(se > 0, values / se, np.nan)
    return dict(
        se=se,
        statistic=stat,
        p_value=p_value(stat, df),
        conf_low=values - crit * se,
        conf_high=values + crit * se,
    )


def delta_se(gradient_fn, params, cov_matrix, conf_level=0.95, df=None,
             gradient=None, rel_step=1e-6):
    """
    Delta-method inference for one scalar function of the parameters.

    Parameters
    ----------
    gradient_fn : callable
        params -> scalar estimate (the function whose gradient is used).
    params : ndarray, shape (k,)
    cov_matrix : ndarray, shape (k, k)
    conf_level : float
    df : float or None
    gradient : ndarray or None
        Closed-form gradient at ``params``; finite differences otherwise.

    Returns
    -------
    (point, se, ci_low, ci_high)

    Raises
    ------
    IllConditionedCovarianceError
    """
    params = np.asarray(params, dtype=float)
    point = float(np.asarray(gradient_fn(params), dtype=float).reshape(()))
    if gradient is None:
        gradient = numerical_jacobian(gradient_fn, params, rel_step)[0]
    out = delta_method([point], np.atleast_2d(gradient), cov_matrix,
                       conf_level=conf_level, df=df)
    return (point, float(out["se"][0]), float(out["conf_low"][0]),
            float(out["conf_high"][0]))

"""
Model fitting -- OLS, Logit and Probit

Thin estimators that turn (formula, data, response) into a FittedModel:
OLS by least squares, logit and probit by BFGS maximum likelihood with
the covariance taken from the observed Fisher information.  They sit
on the caller's side of the engine boundary; the marginal-effects code
only ever sees the resulting FittedModel.
"""

import numpy as np
from loguru import logger
from scipy import stats
from scipy.optimize import approx_fprime, minimize

from .design import Design
from .exceptions import UnknownPredictorError
from .links import logistic
from .models import FittedModel
from .utils import as_frame, ols_fit


def _nll_logit(b, X, y):
    """Negative log-likelihood for logit."""
    p = np.clip(logistic(X @ b), 1e-12, 1 - 1e-12)
    return -np.sum(y * np.log(p) + (1 - y) * np.log(1 - p))


def _nll_probit(b, X, y):
    """Negative log-likelihood for probit."""
    p = np.clip(stats.norm.cdf(X @ b), 1e-12, 1 - 1e-12)
    return -np.sum(y * np.log(p) + (1 - y) * np.log(1 - p))


def _prepare(formula, data, response):
    data = as_frame(data)
    if response not in data.columns:
        raise UnknownPredictorError(response, operation="fit",
                                    available=list(data.columns))
    design = Design.from_formula(formula, data)
    X = design.matrix(data)
    y = np.asarray(data[response], dtype=float)
    return design, X, y


def numerical_hessian(neg_log_lik, beta, args=(), eps=1e-5):
    """
    Numerical Hessian of the negative log-likelihood at beta.

    Parameters
    ----------
    neg_log_lik : callable
    beta : ndarray
    args : tuple
    eps : float

    Returns
    -------
    H : ndarray, shape (k, k)
        Symmetrised Hessian matrix.
    """
    k = len(beta)
    H = np.array([
        approx_fprime(
            beta,
            lambda b, j=j: approx_fprime(b, neg_log_lik, eps, *args)[j],
            eps,
        )
        for j in range(k)
    ])
    return (H + H.T) / 2


def _inverse_information(info):
    """Invert an information matrix, NaN-filled when singular."""
    try:
        return np.linalg.inv(info)
    except np.linalg.LinAlgError:
        logger.warning("information matrix is singular; covariance set to NaN")
        return np.full(info.shape, np.nan)


def fit_ols(formula, data, response):
    """
    OLS: beta_hat = (X'X)^{-1} X'y with homoskedastic covariance.

    Parameters
    ----------
    formula : str
        Right-hand side, e.g. ``"x + I(x^2)"`` (``"y ~ ..."`` also accepted).
    data : DataFrame or mapping
    response : str
        Outcome column.

    Returns
    -------
    FittedModel
        Identity link, ``df_resid = n - k``.
    """
    design, X, y = _prepare(formula, data, response)
    n, k = X.shape
    b, cov, _, s2 = ols_fit(X, y)
    logger.debug(f"OLS fit: n={n}, k={k}, s2={s2:.4g}")
    return FittedModel.from_design(design, b, cov, link="identity",
                                   df_resid=n - k, name="ols")


def fit_logit(formula, data, response, start=None):
    """
    Logit MLE via BFGS optimization.

    The covariance is the inverse observed Fisher information
    I(beta) = X' diag(p (1 - p)) X evaluated at the MLE.

    Parameters
    ----------
    formula : str
    data : DataFrame or mapping
    response : str
        Binary outcome (0/1).
    start : ndarray or None
        Starting values for optimization. Defaults to zeros.

    Returns
    -------
    FittedModel
        Logit link, normal-approximation inference (no residual df).
    """
    design, X, y = _prepare(formula, data, response)
    if start is None:
        start = np.zeros(X.shape[1])
    res = minimize(_nll_logit, start, args=(X, y), method="BFGS")
    if not res.success:
        logger.warning(f"logit fit did not converge: {res.message}")
    p = logistic(X @ res.x)
    fisher = X.T @ (X * (p * (1 - p))[:, None])
    return FittedModel.from_design(design, res.x, _inverse_information(fisher),
                                   link="logit", name="logit")


def fit_probit(formula, data, response, start=None):
    """
    Probit MLE via BFGS optimization.

    The covariance is the inverse of the numerical Hessian of the
    negative log-likelihood at the MLE.

    Parameters
    ----------
    formula : str
    data : DataFrame or mapping
    response : str
        Binary outcome (0/1).
    start : ndarray or None
        Starting values.

    Returns
    -------
    FittedModel
        Probit link, normal-approximation inference.
    """
    design, X, y = _prepare(formula, data, response)
    if start is None:
        start = np.zeros(X.shape[1])
    res = minimize(_nll_probit, start, args=(X, y), method="BFGS")
    if not res.success:
        logger.warning(f"probit fit did not converge: {res.message}")
    hess = numerical_hessian(_nll_probit, res.x, args=(X, y))
    return FittedModel.from_design(design, res.x, _inverse_information(hess),
                                   link="probit", name="probit")

"""
Fitted models as seen by the marginal-effects engines.

A FittedModel bundles what the engines need from an estimated
regression and nothing else: named coefficients, their covariance
matrix, a link, and a prediction function mapping (params, rows) to the
linear predictor.  It is frozen once built; engines hold references to
it and never copy or mutate it.
"""

from dataclasses import dataclass, field
from typing import Callable, Optional

import numpy as np

from .design import Design
from .exceptions import MissingPredictorError, UnknownPredictorError
from .links import Link, get_link


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Coefficients, covariance, link and prediction function of a fit.

    Exactly one of ``design`` (linear predictor X(rows) @ params) or
    ``predict_fn`` (any callable ``(params, frame) -> eta``) drives
    prediction.  Design-backed models support closed-form parameter
    gradients; callable-backed models fall back to numerical ones.
    """

    coef_names: tuple
    params: np.ndarray
    vcov: np.ndarray
    link: Link
    design: Optional[Design] = None
    predict_fn: Optional[Callable] = None
    predictor_names: tuple = ()
    categorical: dict = field(default_factory=dict)
    df_resid: Optional[float] = None
    name: str = ""

    def __post_init__(self):
        params = np.array(self.params, dtype=float).ravel()
        vcov = np.atleast_2d(np.array(self.vcov, dtype=float))
        k = len(params)
        if len(self.coef_names) != k:
            raise ValueError(
                f"{len(self.coef_names)} coefficient names for {k} parameters"
            )
        if vcov.shape != (k, k):
            raise ValueError(f"vcov has shape {vcov.shape}, expected {(k, k)}")
        if (self.design is None) == (self.predict_fn is None):
            raise ValueError("provide exactly one of design or predict_fn")
        params.setflags(write=False)
        vcov.setflags(write=False)
        object.__setattr__(self, "params", params)
        object.__setattr__(self, "vcov", vcov)
        object.__setattr__(self, "link", get_link(self.link))
        object.__setattr__(self, "coef_names", tuple(self.coef_names))
        if self.design is not None:
            object.__setattr__(self, "predictor_names", self.design.predictors)
            object.__setattr__(self, "categorical", self.design.categorical)
        else:
            object.__setattr__(self, "predictor_names", tuple(self.predictor_names))

    # -- construction -------------------------------------------------------

    @classmethod
    def from_design(cls, design, params, vcov, link="identity", df_resid=None,
                    name=""):
        return cls(
            coef_names=tuple(design.column_names),
            params=params, vcov=vcov, link=link, design=design,
            df_resid=df_resid, name=name,
        )

    @classmethod
    def from_formula(cls, formula, data, params, vcov, link="identity",
                     df_resid=None, name=""):
        """Build the design from a formula and attach known coefficients."""
        return cls.from_design(Design.from_formula(formula, data), params, vcov,
                               link=link, df_resid=df_resid, name=name)

    @classmethod
    def from_callable(cls, predict_fn, params, vcov, predictors, coef_names=None,
                      link="identity", categorical=None, df_resid=None, name=""):
        """
        Wrap an arbitrary prediction function ``predict_fn(params, frame)``
        returning the linear predictor for every row of ``frame``.
        """
        k = len(np.ravel(params))
        return cls(
            coef_names=tuple(coef_names or [f"b{j}" for j in range(k)]),
            params=params, vcov=vcov, link=link, predict_fn=predict_fn,
            predictor_names=tuple(predictors),
            categorical=dict(categorical or {}),
            df_resid=df_resid, name=name,
        )

    # -- properties ---------------------------------------------------------

    @property
    def predictors(self):
        return self.predictor_names

    @property
    def n_params(self):
        return len(self.params)

    @property
    def has_design(self):
        return self.design is not None

    def is_categorical(self, name):
        return name in self.categorical

    def levels(self, name):
        return list(self.categorical.get(name, []))

    # -- prediction ---------------------------------------------------------

    def check_predictors(self, frame, operation="predict"):
        """Every model predictor must be a column of ``frame`` with no NaNs."""
        for name in self.predictor_names:
            if name not in frame.columns:
                raise UnknownPredictorError(name, operation=operation,
                                            available=list(frame.columns))
            n_missing = int(frame[name].isna().sum())
            if n_missing:
                raise MissingPredictorError(name, operation=operation,
                                            n_missing=n_missing)

    def design_matrix(self, frame):
        if self.design is None:
            raise TypeError("model has no design; it was built from a callable")
        return self.design.matrix(frame)

    def linear_predictor(self, frame, params=None):
        """eta for every row of ``frame`` (``params`` defaults to the fit)."""
        params = self.params if params is None else np.asarray(params, dtype=float)
        if self.design is not None:
            return self.design.matrix(frame) @ params
        return np.asarray(self.predict_fn(params, frame), dtype=float).reshape(len(frame))

    def predict(self, frame, params=None, scale="response"):
        """
        Predictions on the response scale (inverse link applied) or the
        link scale (linear predictor).
        """
        eta = self.linear_predictor(frame, params)
        if scale == "link":
            return eta
        if scale == "response":
            return self.link.linkinv(eta)
        raise ValueError(f"scale must be 'response' or 'link', got {scale!r}")

    def coefficient(self, name):
        """Point estimate of a named coefficient."""
        try:
            return float(self.params[self.coef_names.index(name)])
        except ValueError:
            raise KeyError(name) from None

    def __repr__(self):
        return (f"FittedModel(name={self.name!r}, link={self.link.name}, "
                f"coefs={list(self.coef_names)})")

"""
Marginal effects and marginal means.

Implements the row-level evaluation of a fitted model on a grid
(predictions, slopes by central finite differences, first differences
for categorical predictors) and the aggregation of those rows into
Estimates under an explicit averaging policy:

  mean-of-predictions  evaluate on every observed row, then average (AME)
  prediction-at-mean   collapse covariates to typical values, then
                       evaluate once (MEM)
  prediction-on-grid   evaluate once per grid row, no averaging

For a non-identity link the first two differ: the mean of a nonlinear
function is not the function of the mean.

Every row value carries its gradient w.r.t. the model parameters, so
averaging a set of rows averages their gradients and the delta method
applies unchanged to the aggregate.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import numpy as np
import pandas as pd
from loguru import logger

from .config import resolve
from .design import LevelMix
from .estimates import Inference
from .exceptions import EmptyGridError, InvalidStepError, UnknownPredictorError
from .grid import USE_DATA, Grid, GridPolicy, build_grid
from .uncertainty import numerical_jacobian
from .utils import is_categorical, sorted_levels


class AveragingPolicy(str, Enum):
    MEAN_OF_PREDICTIONS = "mean-of-predictions"
    PREDICTION_AT_MEAN = "prediction-at-mean"
    PREDICTION_ON_GRID = "prediction-on-grid"


_POLICY_ALIASES = {
    "ame": AveragingPolicy.MEAN_OF_PREDICTIONS,
    "mem": AveragingPolicy.PREDICTION_AT_MEAN,
    "grid": AveragingPolicy.PREDICTION_ON_GRID,
}

SLOPE_LABELS = {
    "dydx": "dY/dX",
    "eyex": "eY/eX",
    "eydx": "eY/dX",
    "dyex": "dY/eX",
}


def averaging_policy(value):
    """Coerce a policy name ("ame" / "mem" / "grid" accepted) to the enum."""
    if isinstance(value, AveragingPolicy):
        return value
    key = str(value).lower()
    if key in _POLICY_ALIASES:
        return _POLICY_ALIASES[key]
    return AveragingPolicy(key)


@dataclass(eq=False)
class RowEffects:
    """
    Per-row values of one quantity over a grid.

    One entry per (contrast, grid row).  ``jacobian[i]`` is the gradient
    of ``values[i]`` w.r.t. the model parameters; ``rows[i]`` is the
    originating grid row (the observation position for counterfactual
    grids).
    """

    model: object
    term: str
    kind: str
    policy: AveragingPolicy
    frame: pd.DataFrame
    contrast: np.ndarray
    values: np.ndarray
    jacobian: np.ndarray
    rows: np.ndarray
    keys: tuple = ()
    weights: Optional[np.ndarray] = None
    step: Optional[float] = None

    def __len__(self):
        return len(self.values)


# ---------------------------------------------------------------------------
# Row-level evaluation
# ---------------------------------------------------------------------------

def _use_analytic(model, config):
    method = config.gradient_method
    if method == "numeric":
        return False
    if method == "analytic" and not model.has_design:
        raise ValueError("analytic gradients need a design-backed model")
    return model.has_design


def _predict_with_gradient(model, frame, scale, analytic, config):
    """Predictions and their Jacobian w.r.t. the parameters."""
    if analytic:
        X = model.design_matrix(frame)
        eta = X @ model.params
        if scale == "link":
            return eta, X
        return model.link.linkinv(eta), model.link.mu_eta(eta)[:, None] * X

    def fn(p):
        return model.predict(frame, params=p, scale=scale)

    return fn(model.params), numerical_jacobian(fn, model.params,
                                                config.param_rel_step)


def _with_value(frame, name, value):
    out = frame.copy()
    out[name] = value
    return out


def _difference_or_ratio(f1, J1, f0, J0, comparison):
    if comparison == "difference":
        return f1 - f0, J1 - J0
    if comparison == "ratio":
        with np.errstate(divide="ignore", invalid="ignore"):
            return f1 / f0, (J1 * f0[:, None] - f1[:, None] * J0) / (f0 ** 2)[:, None]
    raise ValueError(f"comparison must be 'difference' or 'ratio', got {comparison!r}")


def _slope(model, frame, target, h, scale, slope, analytic, config):
    x = frame[target].to_numpy(dtype=float)
    f_hi, J_hi = _predict_with_gradient(model, _with_value(frame, target, x + h),
                                        scale, analytic, config)
    f_lo, J_lo = _predict_with_gradient(model, _with_value(frame, target, x - h),
                                        scale, analytic, config)
    d = (f_hi - f_lo) / (2 * h)
    Jd = (J_hi - J_lo) / (2 * h)
    if slope == "dydx":
        return d, Jd
    if slope == "dyex":
        return d * x, Jd * x[:, None]
    f0, J0 = _predict_with_gradient(model, frame, scale, analytic, config)
    with np.errstate(divide="ignore", invalid="ignore"):
        v = d / f0
        J = (Jd * f0[:, None] - d[:, None] * J0) / (f0 ** 2)[:, None]
    if slope == "eyex":
        return v * x, J * x[:, None]
    return v, J


def _levels(model, frame, target):
    if model.is_categorical(target):
        return model.levels(target)
    first = frame[target].iloc[0] if len(frame) else None
    if isinstance(first, LevelMix):
        return list(first.weights)
    return sorted_levels(frame[target])


def default_step(grid, target, config):
    """``step_fraction`` times the target's range in the source data."""
    scale = grid.scales.get(target)
    if not scale:
        col = grid.frame[target]
        scale = float(col.max() - col.min()) if len(col) else 0.0
    if not scale:
        scale = 1.0
    return resolve(config).step_fraction * scale


def _as_grid(grid):
    return grid if isinstance(grid, Grid) else Grid.from_frame(grid)


def evaluate(model, grid, target=None, policy="mean-of-predictions", step=None,
             scale=None, slope="dydx", comparison="difference", baseline=None,
             delta=None, config=None):
    """
    Evaluate predictions, slopes or first differences on every grid row.

    Parameters
    ----------
    model : FittedModel
    grid : Grid or DataFrame
        A DataFrame is taken as-is.  Under ``prediction-at-mean`` a grid
        that is not already a typical grid is collapsed first
        (average-before-predict).
    target : str or None
        None: predictions.  Numeric predictor: slope by central finite
        difference (or a ``delta`` change when given).  Categorical
        predictor: each level against ``baseline``.
    policy : AveragingPolicy or str
    step : float or None
        Finite-difference step; defaults to ``config.step_fraction``
        times the target's range in the source data.
    scale : {"response", "link"} or None
    slope : {"dydx", "eyex", "eydx", "dyex"}
    comparison : {"difference", "ratio"}
        For categorical targets and ``delta`` changes.
    baseline : level or None
        Reference level for categorical targets (default: first level).
    delta : float or None
        For a numeric target, report f(x + delta) - f(x) instead of the slope.

    Returns
    -------
    RowEffects

    Raises
    ------
    UnknownPredictorError
        ``target`` is not a model predictor, or the grid lacks one.
    InvalidStepError
        ``step`` is not strictly positive.
    EmptyGridError
        The grid has no rows (an average over zero rows is undefined).
    """
    config = resolve(config)
    policy = averaging_policy(policy)
    scale = scale or config.scale
    operation = "evaluate"
    grid = _as_grid(grid)

    if target is not None and target not in model.predictors:
        raise UnknownPredictorError(target, operation=operation,
                                    available=model.predictors)
    if step is not None and not (np.isfinite(step) and step > 0):
        raise InvalidStepError(step, name=target or "", operation=operation)
    if policy is AveragingPolicy.PREDICTION_AT_MEAN and grid.policy is not GridPolicy.TYPICAL:
        grid = build_grid(grid.frame, {}, GridPolicy.TYPICAL,
                          categorical=model.categorical, config=config,
                          predictors=model.predictors)

    if len(grid) == 0:
        raise EmptyGridError("grid has no rows; nothing to evaluate",
                             operation=operation)
    frame = grid.frame
    rowids = frame.index.to_numpy() if frame.index.name == "rowid" else np.arange(len(frame))
    frame = frame.reset_index(drop=True)
    model.check_predictors(frame, operation=operation)
    analytic = _use_analytic(model, config)

    h = None
    keys = grid.keys
    if target is None:
        kind = "prediction"
        v, J = _predict_with_gradient(model, frame, scale, analytic, config)
        parts = [("", v, J)]
    elif model.is_categorical(target) or is_categorical(frame[target]):
        kind = "comparison"
        # every row is re-evaluated at each level, so the target cannot label rows
        keys = tuple(k for k in keys if k != target)
        levels = _levels(model, frame, target)
        base = levels[0] if baseline is None else baseline
        if base not in levels:
            raise ValueError(f"{operation}: baseline {base!r} not a level of '{target}'")
        f0, J0 = _predict_with_gradient(model, _with_value(frame, target, base),
                                        scale, analytic, config)
        sep = " - " if comparison == "difference" else " / "
        parts = []
        for lvl in levels:
            if lvl == base:
                continue
            f1, J1 = _predict_with_gradient(model, _with_value(frame, target, lvl),
                                            scale, analytic, config)
            v, J = _difference_or_ratio(f1, J1, f0, J0, comparison)
            parts.append((f"{lvl}{sep}{base}", v, J))
    elif delta is not None:
        kind = "comparison"
        x = frame[target].to_numpy(dtype=float)
        f0, J0 = _predict_with_gradient(model, frame, scale, analytic, config)
        f1, J1 = _predict_with_gradient(model, _with_value(frame, target, x + delta),
                                        scale, analytic, config)
        v, J = _difference_or_ratio(f1, J1, f0, J0, comparison)
        parts = [(f"+{delta:g}", v, J)]
    else:
        kind = "slope"
        if slope not in SLOPE_LABELS:
            raise ValueError(f"slope must be one of {list(SLOPE_LABELS)}, got {slope!r}")
        h = default_step(grid, target, config) if step is None else float(step)
        logger.debug(f"{operation}: slope of '{target}' with step {h:.3g}")
        v, J = _slope(model, frame, target, h, scale, slope, analytic, config)
        parts = [(SLOPE_LABELS[slope], v, J)]

    n = len(frame)
    return RowEffects(
        model=model,
        term=target or "prediction",
        kind=kind,
        policy=policy,
        frame=pd.concat([frame] * len(parts), ignore_index=True) if parts else frame.iloc[:0],
        contrast=np.repeat(np.array([p[0] for p in parts], dtype=object), n),
        values=np.concatenate([p[1] for p in parts]) if parts else np.empty(0),
        jacobian=(np.vstack([p[2] for p in parts]) if parts
                  else np.empty((0, model.n_params))),
        rows=np.tile(rowids, len(parts)),
        keys=tuple(keys),
        step=h,
    )


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def _py(value):
    return value.item() if isinstance(value, np.generic) else value


def _ordered(values, levels=()):
    """
    Unique values in model level order, else natural order, else in
    order of appearance.
    """
    uniq = list(dict.fromkeys(values))
    if levels:
        known = [lvl for lvl in levels if lvl in uniq]
        return known + [v for v in uniq if v not in known]
    try:
        return sorted(uniq)
    except TypeError:
        return uniq


def _groups(rows, group_by):
    """(contrast, group dict, mask) for every non-empty group, in stable order."""
    for contrast in dict.fromkeys(rows.contrast):
        cmask = rows.contrast == contrast
        if not group_by:
            yield contrast, {}, cmask
            continue
        cols = [rows.frame[g].to_numpy()[cmask] for g in group_by]
        ranks = [{v: i for i, v in enumerate(_ordered(c, rows.model.levels(g)))}
                 for g, c in zip(group_by, cols)]
        combos = sorted(dict.fromkeys(zip(*cols)),
                        key=lambda t: tuple(r[v] for r, v in zip(ranks, t)))
        for combo in combos:
            mask = cmask.copy()
            for g, value in zip(group_by, combo):
                mask &= rows.frame[g].to_numpy() == value
            yield contrast, {g: _py(v) for g, v in zip(group_by, combo)}, mask


def _as_list(names):
    if names is None:
        return []
    if isinstance(names, str):
        return [names]
    return list(names)


def aggregate(rows, policy=None, group_by=None, config=None):
    """
    Turn row-level values into Estimates.

    Parameters
    ----------
    rows : RowEffects
    policy : AveragingPolicy, str or None
        Defaults to the policy the rows were evaluated under.
        ``mean-of-predictions`` averages rows (weighted when the rows
        carry weights) within each contrast and ``group_by`` cell; the
        other two policies pass every row through.
    group_by : str, list of str or None
        Grid columns to group (or, when passing through, label) by.

    Returns
    -------
    list of Estimate
    """
    policy = rows.policy if policy is None else averaging_policy(policy)
    group_by = _as_list(group_by)
    for g in group_by:
        if g not in rows.frame.columns:
            raise UnknownPredictorError(g, operation="aggregate",
                                        available=list(rows.frame.columns))
    inference = Inference.from_model(rows.model, config)

    values, jac, meta = [], [], []
    if policy is AveragingPolicy.MEAN_OF_PREDICTIONS:
        for contrast, group, mask in _groups(rows, group_by):
            w = rows.weights[mask] if rows.weights is not None else None
            values.append(np.average(rows.values[mask], weights=w))
            jac.append(np.average(rows.jacobian[mask], axis=0, weights=w))
            meta.append(dict(term=rows.term, contrast=contrast, group=group,
                             rows=rows.rows[mask].tolist()))
    else:
        label_cols = group_by or list(rows.keys)
        single = len(np.unique(rows.rows)) == 1
        for i in range(len(rows)):
            if label_cols:
                group = {c: _py(rows.frame[c].iat[i]) for c in label_cols}
            elif single:
                group = {}
            else:
                group = {"rowid": _py(rows.rows[i])}
            values.append(rows.values[i])
            jac.append(rows.jacobian[i])
            meta.append(dict(term=rows.term, contrast=rows.contrast[i],
                             group=group, rows=[_py(rows.rows[i])]))

    if not values:
        return []
    return inference.build(np.array(values), np.vstack(jac), meta)


# ---------------------------------------------------------------------------
# User-level operations
# ---------------------------------------------------------------------------

def _prepare(model, data, averaging, grid_spec, grid_policy, by, config):
    """Grid and grouping for a request, following the averaging policy."""
    by = _as_list(by)
    if isinstance(data, Grid):
        return data, by
    spec = dict(grid_spec or {})
    if grid_policy is None:
        if averaging is AveragingPolicy.MEAN_OF_PREDICTIONS:
            grid_policy = GridPolicy.COUNTERFACTUAL if spec else GridPolicy.AS_IS
        elif averaging is AveragingPolicy.PREDICTION_AT_MEAN or spec:
            grid_policy = GridPolicy.TYPICAL
        else:
            grid_policy = GridPolicy.AS_IS
    grid_policy = GridPolicy(grid_policy)
    if grid_policy is GridPolicy.TYPICAL:
        for b in by:
            spec.setdefault(b, USE_DATA)
    grid = build_grid(data, spec, grid_policy, categorical=model.categorical,
                      config=config, predictors=model.predictors)
    return grid, by


def _default_by(by, rows, averaging):
    if by or averaging is not AveragingPolicy.MEAN_OF_PREDICTIONS:
        return by
    return list(rows.keys)


def predictions(model, data, averaging="mean-of-predictions", by=None,
                grid_spec=None, grid_policy=None, scale=None, config=None):
    """
    Predictions (estimated marginal means when averaged).

    Parameters
    ----------
    model : FittedModel
    data : DataFrame, mapping or Grid
    averaging : AveragingPolicy or str
        ``mean-of-predictions`` (default), ``prediction-at-mean`` or
        ``prediction-on-grid``.
    by : str or list of str
        Group averages (or label rows) by these predictors.
    grid_spec : dict or None
        predictor -> value(s) / ``USE_DATA`` for the grid.
    grid_policy : GridPolicy, str or None
        Defaults: counterfactual (with a spec) or as-is for
        mean-of-predictions; typical for prediction-at-mean.
    scale : {"response", "link"} or None

    Returns
    -------
    list of Estimate
    """
    config = resolve(config)
    averaging = averaging_policy(averaging)
    grid, by = _prepare(model, data, averaging, grid_spec, grid_policy, by, config)
    rows = evaluate(model, grid, None, averaging, scale=scale, config=config)
    return aggregate(rows, averaging, _default_by(by, rows, averaging), config)


def slopes(model, data, variable, averaging="mean-of-predictions", by=None,
           grid_spec=None, grid_policy=None, step=None, slope="dydx",
           scale=None, config=None):
    """
    Marginal effects of ``variable``.

    AME under ``mean-of-predictions``, MEM under ``prediction-at-mean``,
    one slope per grid row under ``prediction-on-grid``.  A categorical
    ``variable`` yields first differences against its first level.

    Returns
    -------
    list of Estimate
    """
    config = resolve(config)
    averaging = averaging_policy(averaging)
    grid, by = _prepare(model, data, averaging, grid_spec, grid_policy, by, config)
    rows = evaluate(model, grid, variable, averaging, step=step, scale=scale,
                    slope=slope, config=config)
    return aggregate(rows, averaging, _default_by(by, rows, averaging), config)


def comparisons(model, data, variable, averaging="mean-of-predictions", by=None,
                grid_spec=None, grid_policy=None, comparison="difference",
                baseline=None, delta=1.0, scale=None, config=None):
    """
    First differences (or ratios) in predictions.

    A categorical ``variable`` compares every level with ``baseline``; a
    numeric one compares x + ``delta`` with x.

    Returns
    -------
    list of Estimate
    """
    config = resolve(config)
    averaging = averaging_policy(averaging)
    grid, by = _prepare(model, data, averaging, grid_spec, grid_policy, by, config)
    rows = evaluate(model, grid, variable, averaging, scale=scale,
                    comparison=comparison, baseline=baseline, delta=delta,
                    config=config)
    return aggregate(rows, averaging, _default_by(by, rows, averaging), config)


def marginal_means(model, data, specs, by=None, weights="equal", scale=None,
                   config=None):
    """
    Estimated marginal means of categorical predictors.

    The reference grid crosses every level of every categorical model
    predictor with numeric predictors held at their typical values.
    Predictions on that grid are then averaged over the factors not in
    ``specs`` / ``by``: with equal weights, or with weights proportional
    to how often each combination of those factors occurs in ``data``.

    Parameters
    ----------
    model : FittedModel
    data : DataFrame or mapping
    specs : str or list of str
        Categorical predictors whose means are reported.
    by : str or list of str
        Further categorical predictors to condition on.
    weights : {"equal", "proportional"}

    Returns
    -------
    list of Estimate
        One per combination of ``specs`` and ``by`` levels.
    """
    config = resolve(config)
    specs = _as_list(specs)
    by = _as_list(by)
    for name in specs + by:
        if not model.is_categorical(name):
            raise UnknownPredictorError(name, operation="marginal_means",
                                        available=list(model.categorical))
    spec = {name: model.levels(name) for name in model.categorical}
    grid = build_grid(data, spec, GridPolicy.TYPICAL,
                      categorical=model.categorical, config=config,
                      predictors=model.predictors)
    rows = evaluate(model, grid, None, AveragingPolicy.PREDICTION_ON_GRID,
                    scale=scale, config=config)
    if weights == "proportional":
        rows.weights = _cell_weights(rows.frame, data, spec, specs + by)
    elif weights != "equal":
        raise ValueError(f"weights must be 'equal' or 'proportional', got {weights!r}")
    return aggregate(rows, AveragingPolicy.MEAN_OF_PREDICTIONS, specs + by, config)


def _cell_weights(frame, data, spec, kept):
    others = [name for name in spec if name not in kept]
    if not others:
        return None
    counts = pd.DataFrame(data)[others].value_counts()
    lookup = {(k if isinstance(k, tuple) else (k,)): n for k, n in counts.items()}
    return np.array([
        float(lookup.get(tuple(row), 0))
        for row in frame[others].itertuples(index=False, name=None)
    ])


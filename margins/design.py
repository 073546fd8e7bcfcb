"""
Model terms and design matrices.

A Design is an ordered list of terms (intercept, numeric, power,
categorical with treatment coding, interactions).  It turns any frame of
covariate rows -- observed data or a synthetic grid -- into the design
matrix X, so that the linear predictor is X @ beta.  Grids may carry a
LevelMix in a categorical column; its dummy columns then take the mix
weights (e.g. the observed level shares) instead of 0/1.

Formulas use a small R-like syntax:

    "x + I(x^2) + C(group) + x:C(group)"
    "treat * post"                 ->  treat + post + treat:post
    "0 + C(group, ref='b')"        ->  no intercept, reference level 'b'
"""

import re
from itertools import combinations

import numpy as np
import pandas as pd

from .exceptions import UnknownPredictorError
from .utils import is_categorical, sorted_levels


class LevelMix:
    """
    A weighted mixture of categorical levels, used as the "typical"
    value of a factor in a collapsed grid.  Immutable and hashable.
    """

    __slots__ = ("_weights",)

    def __init__(self, weights):
        total = float(sum(weights.values()))
        if total <= 0:
            raise ValueError("LevelMix weights must sum to a positive value")
        object.__setattr__(
            self, "_weights",
            tuple((lvl, float(w) / total) for lvl, w in weights.items()),
        )

    def __setattr__(self, key, value):
        raise AttributeError("LevelMix is immutable")

    @classmethod
    def from_series(cls, series):
        """Observed level shares of a column."""
        counts = series.value_counts(sort=False)
        return cls({lvl: counts.get(lvl, 0) for lvl in sorted_levels(series)})

    @property
    def weights(self):
        return dict(self._weights)

    def weight(self, level):
        for lvl, w in self._weights:
            if lvl == level:
                return w
        return 0.0

    def __eq__(self, other):
        return isinstance(other, LevelMix) and self._weights == other._weights

    def __hash__(self):
        return hash(self._weights)

    def __repr__(self):
        inner = ", ".join(f"{lvl}: {w:.3g}" for lvl, w in self._weights)
        return f"LevelMix({{{inner}}})"


# ---------------------------------------------------------------------------
# Terms
# ---------------------------------------------------------------------------

class Term:
    """A block of design-matrix columns built from one or more predictors."""

    variables = ()

    @property
    def key(self):
        return self.label

    @property
    def label(self):
        raise NotImplementedError

    def column_names(self):
        raise NotImplementedError

    def columns(self, frame):
        raise NotImplementedError

    def __repr__(self):
        return f"{type(self).__name__}({self.label!r})"


class Intercept(Term):
    label = "Intercept"

    def column_names(self):
        return ["Intercept"]

    def columns(self, frame):
        return np.ones((len(frame), 1))


class Numeric(Term):
    def __init__(self, name):
        self.name = name
        self.variables = (name,)

    @property
    def label(self):
        return self.name

    def column_names(self):
        return [self.name]

    def columns(self, frame):
        return np.asarray(frame[self.name], dtype=float)[:, None]


class Power(Term):
    def __init__(self, name, power):
        self.name = name
        self.power = int(power)
        self.variables = (name,)

    @property
    def label(self):
        return f"I({self.name}^{self.power})"

    def column_names(self):
        return [self.label]

    def columns(self, frame):
        return (np.asarray(frame[self.name], dtype=float) ** self.power)[:, None]


class Categorical(Term):
    """Treatment (dummy) coding against a reference level."""

    def __init__(self, name, levels, reference=None):
        self.name = name
        self.levels = list(levels)
        if not self.levels:
            raise ValueError(f"categorical '{name}' has no levels")
        self.reference = self.levels[0] if reference is None else reference
        if self.reference not in self.levels:
            raise ValueError(
                f"reference level {self.reference!r} not among levels of '{name}'"
            )
        self.variables = (name,)

    @property
    def label(self):
        return f"C({self.name})"

    @property
    def contrast_levels(self):
        return [lvl for lvl in self.levels if lvl != self.reference]

    def column_names(self):
        return [f"{self.label}[T.{lvl}]" for lvl in self.contrast_levels]

    def columns(self, frame):
        values = frame[self.name]
        if values.dtype == object and any(isinstance(v, LevelMix) for v in values):
            return np.array([
                [v.weight(lvl) if isinstance(v, LevelMix) else float(v == lvl)
                 for lvl in self.contrast_levels]
                for v in values
            ], dtype=float).reshape(len(frame), -1)
        unknown = set(pd.unique(values)) - set(self.levels)
        if unknown:
            raise ValueError(
                f"unknown level(s) {sorted(map(str, unknown))} for '{self.name}'"
            )
        return np.column_stack([
            (values == lvl).to_numpy(dtype=float) for lvl in self.contrast_levels
        ]) if self.contrast_levels else np.empty((len(frame), 0))


class Interaction(Term):
    """Elementwise products of the columns of each factor term."""

    def __init__(self, *factors):
        if len(factors) < 2:
            raise ValueError("an interaction needs at least two factors")
        self.factors = tuple(factors)
        seen = []
        for f in factors:
            for v in f.variables:
                if v not in seen:
                    seen.append(v)
        self.variables = tuple(seen)

    @property
    def label(self):
        return ":".join(f.label for f in self.factors)

    def column_names(self):
        names = [""]
        for f in self.factors:
            names = [f"{a}:{b}" if a else b for a in names for b in f.column_names()]
        return names

    def columns(self, frame):
        out = np.ones((len(frame), 1))
        for f in self.factors:
            cols = f.columns(frame)
            out = (out[:, :, None] * cols[:, None, :]).reshape(len(frame), -1)
        return out


# ---------------------------------------------------------------------------
# Design
# ---------------------------------------------------------------------------

class Design:
    """Ordered collection of terms mapping covariate rows to X."""

    def __init__(self, terms):
        self.terms = list(terms)
        names = self.column_names
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate design columns in {names}")

    @property
    def column_names(self):
        return [c for t in self.terms for c in t.column_names()]

    @property
    def predictors(self):
        out = []
        for t in self.terms:
            for v in t.variables:
                if v not in out:
                    out.append(v)
        return tuple(out)

    @property
    def categorical(self):
        """Mapping of categorical predictor -> ordered levels."""
        out = {}
        for t in self.terms:
            factors = t.factors if isinstance(t, Interaction) else (t,)
            for f in factors:
                if isinstance(f, Categorical):
                    out.setdefault(f.name, list(f.levels))
        return out

    def matrix(self, frame):
        """Design matrix X, shape (len(frame), n_columns)."""
        for v in self.predictors:
            if v not in frame.columns:
                raise UnknownPredictorError(v, operation="design matrix",
                                            available=list(frame.columns))
        blocks = [t.columns(frame) for t in self.terms]
        if not blocks:
            return np.empty((len(frame), 0))
        return np.column_stack(blocks)

    def __repr__(self):
        return f"Design({' + '.join(t.label for t in self.terms)})"

    @classmethod
    def from_formula(cls, formula, data):
        """
        Parse an R-like formula against ``data``.

        Categorical levels (and the default reference level, the first in
        natural order) are learned from ``data``.  Columns with a
        non-numeric dtype are treated as categorical even without C().
        """
        rhs = formula.split("~", 1)[-1]
        rhs, intercept = _strip_intercept(rhs)
        terms = [Intercept()] if intercept else []
        keys = {t.key for t in terms}
        for piece in _split_top(rhs, "+"):
            piece = piece.strip()
            if not piece or piece == "1":
                continue
            for term in _expand(piece, data):
                if term.key not in keys:
                    keys.add(term.key)
                    terms.append(term)
        return cls(terms)


_INTERCEPT_DROP = re.compile(r"(^|\+)\s*0\s*(?=\+|$)|-\s*1\s*(?=\+|-|$)")
_CATEGORICAL = re.compile(
    r"^C\(\s*(\w+)\s*(?:,\s*(?:ref|reference)\s*=\s*['\"]?([^'\")]+?)['\"]?\s*)?\)$"
)
_POWER = re.compile(r"^(?:I\(\s*(\w+)\s*(?:\*\*|\^)\s*(\d+)\s*\)|(\w+)\s*(?:\*\*|\^)\s*(\d+))$")


def _strip_intercept(rhs):
    if _INTERCEPT_DROP.search(rhs):
        rhs = _INTERCEPT_DROP.sub(r"\1", rhs)
        return rhs, False
    if re.search(r"-", _mask_parens(rhs)):
        raise ValueError(f"term removal other than '- 1' is not supported: {rhs!r}")
    return rhs, True


def _mask_parens(text):
    """Replace everything inside parentheses with spaces."""
    out, depth = [], 0
    for ch in text:
        if ch == "(":
            depth += 1
        out.append(" " if depth else ch)
        if ch == ")":
            depth -= 1
    return "".join(out)


def _split_top(text, sep):
    """Split on ``sep`` outside parentheses (``*`` is not split inside ``**``)."""
    masked = _mask_parens(text)
    parts, start, i = [], 0, 0
    while i < len(masked):
        if masked.startswith(sep, i):
            if sep == "*" and masked.startswith("**", i):
                i += 2
                continue
            parts.append(text[start:i])
            start = i + len(sep)
            i = start
            continue
        i += 1
    parts.append(text[start:])
    return parts


def _expand(piece, data):
    factors = [f.strip() for f in _split_top(piece, "*")]
    if len(factors) > 1:
        atoms = [_parse_interaction(f, data) for f in factors]
        out = []
        for r in range(1, len(atoms) + 1):
            for combo in combinations(atoms, r):
                flat = [a for group in combo for a in group]
                out.append(flat[0] if len(flat) == 1 else Interaction(*flat))
        return out
    atoms = _parse_interaction(piece, data)
    return [atoms[0] if len(atoms) == 1 else Interaction(*atoms)]


def _parse_interaction(piece, data):
    return [_parse_atom(a.strip(), data) for a in _split_top(piece, ":")]


def _parse_atom(atom, data):
    m = _CATEGORICAL.match(atom)
    if m:
        name, ref = m.group(1), m.group(2)
        levels = _levels(name, data)
        if ref is not None:
            ref = _coerce_level(ref.strip(), levels)
        return Categorical(name, levels, ref)
    m = _POWER.match(atom)
    if m:
        name = m.group(1) or m.group(3)
        power = int(m.group(2) or m.group(4))
        _require(name, data)
        return Numeric(name) if power == 1 else Power(name, power)
    if re.fullmatch(r"\w+", atom):
        _require(atom, data)
        if is_categorical(data[atom]):
            return Categorical(atom, _levels(atom, data))
        return Numeric(atom)
    raise ValueError(f"cannot parse formula term {atom!r}")


def _require(name, data):
    if name not in data.columns:
        raise UnknownPredictorError(name, operation="formula",
                                    available=list(data.columns))


def _levels(name, data):
    _require(name, data)
    return sorted_levels(data[name])


def _coerce_level(ref, levels):
    for lvl in levels:
        if str(lvl) == ref:
            return lvl
    raise ValueError(f"reference level {ref!r} not among {levels}")

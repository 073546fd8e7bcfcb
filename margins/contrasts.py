"""
Contrasts between estimates.

A contrast is a linear combination  c + sum_i w_i * theta_i  of
estimates that came from the same model.  Its gradient is the same
combination of their gradients, so the delta-method standard error
accounts for the covariance between the terms.

Expressions name estimates by position (``b1`` .. ``bk``) or by label
when the label is a valid identifier:

    contrast(emms, "b2 - b1")
    contrast(emms, "(b4 - b3) - (b2 - b1)")      # interaction contrast
    contrast(emms, "b1 = b2")                    # same as "b1 - b2"
"""

import ast

import numpy as np

from .exceptions import (
    IncompatibleEstimatesError,
    UnknownTermError,
    UnsupportedExpressionError,
)

PAIRWISE_METHODS = ("pairwise", "revpairwise", "reference", "sequential")


def _shared_inference(estimates, operation):
    first = estimates[0].inference
    for e in estimates[1:]:
        if e.inference is not first and e.inference.vcov is not first.vcov:
            raise IncompatibleEstimatesError(operation=operation)
    return first


def _names(estimates):
    """Display name of each estimate: its label if unique, else b<i>."""
    labels = [e.label for e in estimates]
    if len(set(labels)) == len(labels):
        return labels
    return [f"b{i + 1}" for i in range(len(estimates))]


def _combine(estimates, weight_rows, labels, constants, operation):
    if not estimates:
        raise ValueError(f"{operation}: no estimates given")
    inference = _shared_inference(estimates, operation)
    values = np.array([e.estimate for e in estimates])
    G = np.vstack([e.gradient for e in estimates])
    W = np.atleast_2d(np.asarray(weight_rows, dtype=float))
    meta = [
        dict(term="contrast", contrast=label,
             rows=tuple(int(i) + 1 for i in np.flatnonzero(w)))
        for w, label in zip(W, labels)
    ]
    return inference.build(W @ values + np.asarray(constants, dtype=float),
                           W @ G, meta)


def linear_combination(estimates, weights, label="", constant=0.0):
    """
    One linear combination of estimates.

    Parameters
    ----------
    estimates : sequence of Estimate
    weights : sequence of float, one per estimate
    label : str
    constant : float
        Added to the point estimate (does not affect the SE).

    Returns
    -------
    Estimate
        ``rows`` holds the 1-based positions of the estimates involved.
    """
    estimates = list(estimates)
    weights = np.asarray(weights, dtype=float)
    if weights.shape != (len(estimates),):
        raise ValueError(
            f"linear_combination: {weights.size} weights for {len(estimates)} estimates"
        )
    return _combine(estimates, [weights], [label], [constant],
                    "linear_combination")[0]


def pairwise(estimates, method="pairwise"):
    """
    Signed differences between estimates.

    Parameters
    ----------
    estimates : sequence of Estimate
        In the natural order of the levels they describe.
    method : str
        ``pairwise``     all C(k,2) pairs, later minus earlier
        ``revpairwise``  all C(k,2) pairs, earlier minus later
        ``reference``    each estimate minus the first
        ``sequential``   each estimate minus its predecessor

    Returns
    -------
    list of Estimate
    """
    estimates = list(estimates)
    if method not in PAIRWISE_METHODS:
        raise ValueError(f"method must be one of {PAIRWISE_METHODS}, got {method!r}")
    k = len(estimates)
    if method in ("pairwise", "revpairwise"):
        pairs = [(j, i) for i in range(k) for j in range(i + 1, k)]
        if method == "revpairwise":
            pairs = [(i, j) for j, i in pairs]
    elif method == "reference":
        pairs = [(j, 0) for j in range(1, k)]
    else:
        pairs = [(j, j - 1) for j in range(1, k)]
    if not pairs:
        return []

    names = _names(estimates)
    W = np.zeros((len(pairs), k))
    labels = []
    for r, (plus, minus) in enumerate(pairs):
        W[r, plus] = 1.0
        W[r, minus] = -1.0
        labels.append(f"{names[plus]} - {names[minus]}")
    return _combine(estimates, W, labels, np.zeros(len(pairs)), method)


def contrast(estimates, expression):
    """
    Evaluate a linear expression over estimates.

    Parameters
    ----------
    estimates : sequence of Estimate
    expression : str
        Linear (affine) in the named estimates: sums, differences,
        multiplication or division by numeric constants, parentheses,
        and an optional ``lhs = rhs`` (evaluated as lhs - rhs).

    Returns
    -------
    Estimate

    Raises
    ------
    UnknownTermError
        The expression names an estimate that does not exist.
    UnsupportedExpressionError
        The expression is not linear in the estimates.
    """
    estimates = list(estimates)
    operation = "contrast"
    lookup = {f"b{i + 1}": i for i in range(len(estimates))}
    labels = [e.label for e in estimates]
    if len(set(labels)) == len(labels):
        for i, lab in enumerate(labels):
            if lab.isidentifier() and lab not in lookup:
                lookup[lab] = i

    source = expression
    if "=" in expression:
        lhs, _, rhs = expression.partition("=")
        if rhs.startswith("=") or "=" in rhs:
            raise UnsupportedExpressionError(expression, "one '=' allowed",
                                             operation=operation)
        source = f"({lhs}) - ({rhs})"
    try:
        tree = ast.parse(source.strip(), mode="eval")
    except SyntaxError:
        raise UnsupportedExpressionError(expression, "invalid syntax",
                                         operation=operation) from None

    walker = _LinearForm(len(estimates), lookup, expression, operation)
    weights, constant, has_terms = walker.visit(tree.body)
    if not has_terms:
        raise UnsupportedExpressionError(expression, "no estimate referenced",
                                         operation=operation)
    return _combine(estimates, [weights], [expression], [constant], operation)[0]


class _LinearForm:
    """Reduce an expression AST to (weights, constant, has_terms)."""

    def __init__(self, k, lookup, expression, operation):
        self.k = k
        self.lookup = lookup
        self.expression = expression
        self.operation = operation

    def unsupported(self, reason):
        return UnsupportedExpressionError(self.expression, reason,
                                          operation=self.operation)

    def visit(self, node):
        if isinstance(node, ast.Name):
            if node.id not in self.lookup:
                raise UnknownTermError(node.id, operation=self.operation,
                                       available=list(self.lookup))
            w = np.zeros(self.k)
            w[self.lookup[node.id]] = 1.0
            return w, 0.0, True
        if isinstance(node, ast.Constant):
            if isinstance(node.value, bool) or not isinstance(node.value, (int, float)):
                raise self.unsupported(f"constant {node.value!r}")
            return np.zeros(self.k), float(node.value), False
        if isinstance(node, ast.UnaryOp) and isinstance(node.op, (ast.USub, ast.UAdd)):
            w, c, t = self.visit(node.operand)
            sign = -1.0 if isinstance(node.op, ast.USub) else 1.0
            return sign * w, sign * c, t
        if isinstance(node, ast.BinOp):
            lw, lc, lt = self.visit(node.left)
            rw, rc, rt = self.visit(node.right)
            if isinstance(node.op, ast.Add):
                return lw + rw, lc + rc, lt or rt
            if isinstance(node.op, ast.Sub):
                return lw - rw, lc - rc, lt or rt
            if isinstance(node.op, ast.Mult):
                if lt and rt:
                    raise self.unsupported("product of estimates")
                if lt:
                    return lw * rc, lc * rc, True
                return rw * lc, rc * lc, rt
            if isinstance(node.op, ast.Div):
                if rt:
                    raise self.unsupported("division by an estimate")
                if rc == 0:
                    raise self.unsupported("division by zero")
                return lw / rc, lc / rc, lt
            raise self.unsupported(f"operator {type(node.op).__name__}")
        raise self.unsupported(f"{type(node).__name__} not allowed")

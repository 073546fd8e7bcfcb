"""
Corruption and Disclosure -- AME versus MEM in a Logit
=======================================================

Does a higher corruption index make a firm more likely to disclose?
A logit of disclosure on corruption and sector gives a probability
model; the "marginal effect of corruption" then depends on where the
slope is evaluated:

    AME  average of dP/dx over every observed firm
    MEM  dP/dx once, at the average firm

Under the logistic link these differ, since the mean of p(1 - p) is
not p(1 - p) at the mean.  Both come out of the same fitted model.

Status: simulated data -- replace with the firm-level disclosure panel.
"""

import numpy as np
import pandas as pd
import sys
import os

# Add project root to path so margins package is importable
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from margins import (
    comparisons,
    fit_logit,
    marginal_means,
    pairwise,
    predictions,
    slopes,
    to_frame,
)
from margins.links import logistic


def simulate_disclosure_data(n=1500, seed=42):
    """
    Simulate firm-level disclosure decisions.

    DGP:
        corruption ~ U(0, 1)
        sector in {manufacturing, services, utilities}
        P(disclose) = logistic(-1 + 2.5*corruption + sector effect)

    Returns
    -------
    dict with arrays: corruption, sector, disclose
    """
    np.random.seed(seed)
    corruption = np.random.uniform(0, 1, n)
    sector = np.random.choice(["manufacturing", "services", "utilities"], n,
                              p=[0.5, 0.3, 0.2])
    effect = np.select([sector == "services", sector == "utilities"],
                       [0.4, -0.7], 0.0)
    p = logistic(-1.0 + 2.5 * corruption + effect)
    disclose = (np.random.uniform(size=n) < p).astype(float)
    return dict(corruption=corruption, sector=sector, disclose=disclose,
                true_slope=2.5)


def main():
    print("=" * 60)
    print("Corruption and Disclosure -- AME vs MEM")
    print("=" * 60)

    data = pd.DataFrame({k: v for k, v in simulate_disclosure_data().items()
                         if k != "true_slope"})

    # --- 1) Logit fit ---
    model = fit_logit("corruption + C(sector)", data, "disclose")
    se = np.sqrt(np.diag(model.vcov))
    print("\n[Logit] Coefficients (log-odds):")
    for name, b, s in zip(model.coef_names, model.params, se):
        print(f"  {name:28s} {b: .4f}  (SE {s:.4f})")

    # --- 2) Average marginal effect ---
    ame = slopes(model, data, "corruption", averaging="mean-of-predictions")[0]
    print(f"\n[AME] dP/d corruption: {ame.estimate:.4f}")
    print(f"  SE: {ame.std_error:.4f}, "
          f"CI: [{ame.conf_low:.4f}, {ame.conf_high:.4f}]")

    # --- 3) Marginal effect at the mean ---
    mem = slopes(model, data, "corruption", averaging="prediction-at-mean")[0]
    print(f"\n[MEM] dP/d corruption: {mem.estimate:.4f}")
    print(f"  SE: {mem.std_error:.4f}, "
          f"CI: [{mem.conf_low:.4f}, {mem.conf_high:.4f}]")
    print(f"  AME - MEM = {ame.estimate - mem.estimate:+.4f}")

    # --- 4) Slopes along the corruption range ---
    along = slopes(model, data, "corruption", averaging="prediction-on-grid",
                   grid_spec={"corruption": [0.0, 0.25, 0.5, 0.75, 1.0]})
    print("\n[Grid] dP/d corruption at the average firm:")
    print(to_frame(along)[["corruption", "estimate", "std_error"]]
          .to_string(index=False, float_format="%.4f"))

    # --- 5) Sector effects ---
    diffs = comparisons(model, data, "sector")
    print("\n[Sector] Average change in P(disclose) vs manufacturing:")
    for d in diffs:
        print(f"  {d.contrast:32s} {d.estimate: .4f}  (SE {d.std_error:.4f})")

    by_sector = slopes(model, data, "corruption", by="sector")
    print("\n[AME by sector]")
    for e in by_sector:
        print(f"  {e.group['sector']:16s} {e.estimate:.4f}  (SE {e.std_error:.4f})")

    # --- 6) Predicted disclosure rates ---
    avg = predictions(model, data)[0]
    emms = marginal_means(model, data, "sector")
    print(f"\n[Predictions] Average P(disclose): {avg.estimate:.4f} "
          f"(observed {data['disclose'].mean():.4f})")
    for e in emms:
        print(f"  {e.label:24s} {e.estimate:.4f}")
    print("  Pairwise:")
    for c in pairwise(emms):
        print(f"    {c.contrast:40s} {c.estimate: .4f}  (p = {c.p_value:.3f})")

    return dict(model=model, ame=ame, mem=mem)


if __name__ == "__main__":
    main()

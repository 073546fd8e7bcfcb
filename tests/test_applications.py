"""Smoke tests: the application scripts run end to end."""

import runpy
from pathlib import Path

import numpy as np
import pytest

ROOT = Path(__file__).resolve().parents[1]


def run_script(relpath):
    namespace = runpy.run_path(str(ROOT / relpath), run_name="application")
    return namespace["main"]()


class TestApplications:
    def test_disclosure_logit(self, capsys):
        out = run_script("applications/disclosure_logit/analysis.py")

        printed = capsys.readouterr().out
        assert "[AME]" in printed and "[MEM]" in printed
        assert out["ame"].estimate != pytest.approx(out["mem"].estimate, rel=1e-6)
        assert out["ame"].has_uncertainty

    def test_factorial_emm(self, capsys):
        out = run_script("applications/factorial_emm/analysis.py")

        assert "[Interaction]" in capsys.readouterr().out
        assert out["interaction"].estimate == pytest.approx(out["model"].params[3])
        assert np.isfinite(out["interaction"].std_error)
        assert len(out["cells"]) == 4

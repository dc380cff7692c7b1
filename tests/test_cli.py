"""
Tests for the Command-Line Interface
"""

import argparse
import json
import pytest
from mccormick_codegen.cli import main, parse_assignment


PRODUCT = ["relax", "x*y", "--bound", "x=-1,4", "--bound", "y=0.5,3", "--point", "x=2.5", "--point", "y=1.5"]


class TestRelaxCommand:
    """The relax subcommand."""

    def test_product(self, capsys):
        assert main(PRODUCT) == 0
        out = capsys.readouterr().out
        assert "lo = -3" in out
        assert "hi = 12" in out
        assert "cv = 1.5" in out
        assert "cc = 5.25" in out
        assert "Ordering: x_cc, x_cv, x_hi, x_lo, y_cc, y_cv, y_hi, y_lo" in out

    def test_sum_at_midpoint(self, capsys):
        assert main(["relax", "x+y", "-b", "x=-1,4", "-b", "y=0.5,3"]) == 0
        out = capsys.readouterr().out
        assert "cv = 3.25" in out

    def test_show_source(self, capsys):
        assert main(PRODUCT + ["--show-source"]) == 0
        assert "def _lambdifygenerated(" in capsys.readouterr().out

    def test_output_file(self, tmp_path, capsys):
        path = tmp_path / "result.json"
        assert main(PRODUCT + ["--output", str(path)]) == 0
        data = json.loads(path.read_text())
        assert data["lo"] == pytest.approx(-3.0)
        assert data["cc"] == pytest.approx(5.25)
        assert data["ordering"][0] == "x_cc"
        assert len(data["fingerprint"]) == 64

    def test_domain_violation(self, capsys):
        assert main(["relax", "x/y", "-b", "x=-1,4", "-b", "y=-1,3"]) == 1
        assert "Error" in capsys.readouterr().out

    def test_unsupported(self, capsys):
        assert main(["relax", "sin(x)", "-b", "x=0,1"]) == 1

    def test_missing_bounds(self, capsys):
        assert main(["relax", "x+y", "-b", "x=0,1"]) == 1
        assert "no bounds" in capsys.readouterr().out

    def test_point_outside(self, capsys):
        assert main(["relax", "x+1", "-b", "x=0,1", "-p", "x=2"]) == 1

    def test_reversed_bound(self, capsys):
        assert main(["relax", "x+1", "-b", "x=4,1"]) == 1
        assert "Error: Bound for 'x' has lo > hi" in capsys.readouterr().out

    def test_bad_bound_arity(self, capsys):
        assert main(["relax", "x+1", "-b", "x=0"]) == 1

    def test_bad_assignment(self):
        with pytest.raises(SystemExit):
            main(["relax", "x", "-b", "x"])


class TestMisc:
    """Other commands and helpers."""

    def test_version(self, capsys):
        assert main(["version"]) == 0
        assert "mccormick-codegen" in capsys.readouterr().out

    def test_no_command(self, capsys):
        assert main([]) == 0

    def test_parse_assignment(self):
        assert parse_assignment("x=-1,4") == ("x", [-1.0, 4.0])
        with pytest.raises(argparse.ArgumentTypeError):
            parse_assignment("x=a")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])

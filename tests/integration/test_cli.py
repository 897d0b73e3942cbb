"""Integration tests for the command line interface.

These tests write study files to a temporary directory and drive the
Typer application end to end, checking both the rich table output and
the ``--json`` output.
"""

import json
from pathlib import Path

import pandas as pd
import pytest
from typer.testing import CliRunner

from evsyn import __version__
from evsyn.cli.main import app

runner = CliRunner()


@pytest.fixture
def spread_studies_file(tmp_path: Path) -> Path:
    """Four heterogeneous studies as a JSON object."""
    path = tmp_path / "studies.json"
    studies = [
        {"study_id": f"S{i + 1}", "effect_size": effect, "standard_error": 0.1}
        for i, effect in enumerate([0.1, 0.9, 0.2, 1.0])
    ]
    path.write_text(json.dumps({"studies": studies}))
    return path


@pytest.fixture
def biased_studies_csv(tmp_path: Path) -> Path:
    """Five asymmetric studies as CSV, some with CIs instead of SEs."""
    path = tmp_path / "studies.csv"
    pd.DataFrame(
        {
            "study_id": ["A", "B", "C", "D", "E"],
            "effect_size": [0.12, 0.30, 0.45, 0.65, 0.80],
            "standard_error": [0.1, 0.2, 0.3, None, None],
            "ci_lower": [None, None, None, 0.65 - 1.96 * 0.4, 0.80 - 1.96 * 0.5],
            "ci_upper": [None, None, None, 0.65 + 1.96 * 0.4, 0.80 + 1.96 * 0.5],
            "sample_size": [400, 100, 45, 25, 16],
        }
    ).to_csv(path, index=False)
    return path


@pytest.fixture
def grade_file(tmp_path: Path) -> Path:
    """A GRADE assessment for randomized evidence with two serious concerns."""
    path = tmp_path / "grade.json"
    path.write_text(
        json.dumps(
            {
                "outcome": "all-cause mortality",
                "study_design": "randomized_trial",
                "downgrading": {
                    "risk_of_bias": {"downgrade": "serious", "overall_risk": "high"},
                    "imprecision": {"downgrade": "serious"},
                },
                "recommendation_inputs": {
                    "balance_of_benefits_and_harms": "probably_favors",
                    "values_and_preferences": "consistent",
                    "resource_use": "moderate",
                },
            }
        )
    )
    return path


@pytest.mark.integration
def test_heterogeneity_json(spread_studies_file):
    """Test heterogeneity statistics printed as JSON."""
    result = runner.invoke(app, ["heterogeneity", str(spread_studies_file), "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["n_studies"] == 4
    assert data["i_squared"] == pytest.approx(95.4)
    assert data["recommended_model"] == "random"


@pytest.mark.integration
def test_heterogeneity_table(spread_studies_file):
    """Test the rich table output for heterogeneity."""
    result = runner.invoke(app, ["heterogeneity", str(spread_studies_file)])
    assert result.exit_code == 0, result.output
    assert "Heterogeneity (4 studies)" in result.output
    assert "random" in result.output


@pytest.mark.integration
def test_bias_from_csv(biased_studies_csv):
    """Test publication bias on CSV input mixing SEs and CIs."""
    result = runner.invoke(app, ["bias", str(biased_studies_csv), "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["n_studies"] == 5
    assert data["overall_assessment"]["bias_detected"] is True
    assert data["trim_and_fill"]["n_trimmed"] == 3


@pytest.mark.integration
def test_bias_without_trim_and_fill(biased_studies_csv):
    """Test that --no-trim-fill omits trim-and-fill."""
    result = runner.invoke(app, ["bias", str(biased_studies_csv), "--no-trim-fill", "--json"])
    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["trim_and_fill"] is None


@pytest.mark.integration
def test_pool_fixed(biased_studies_csv):
    """Test fixed-effect pooling with weights in input order."""
    result = runner.invoke(app, ["pool", str(biased_studies_csv), "--method", "fixed", "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["model"] == "fixed"
    assert data["total_sample_size"] == 586
    assert [w["study_id"] for w in data["weights"]] == ["A", "B", "C", "D", "E"]


@pytest.mark.integration
def test_pool_rejects_unknown_method(spread_studies_file):
    """Test that an unknown pooling method exits with an error."""
    result = runner.invoke(app, ["pool", str(spread_studies_file), "--method", "bayesian"])
    assert result.exit_code == 1


@pytest.mark.integration
def test_grade(grade_file):
    """Test a GRADE rating with a recommendation."""
    result = runner.invoke(app, ["grade", str(grade_file), "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["final_quality"] == "low"
    assert data["recommendation"]["strength"] == "weak"


@pytest.mark.integration
def test_grade_invalid_design(tmp_path):
    """Test that an unknown study design exits with an error."""
    path = tmp_path / "grade.json"
    path.write_text(json.dumps({"study_design": "anecdote", "downgrading": {}}))
    result = runner.invoke(app, ["grade", str(path)])
    assert result.exit_code == 1


@pytest.mark.integration
def test_study_without_precision_fails(tmp_path):
    """Test that a study without SE or CI names the study in the error."""
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([{"study_id": "X", "effect_size": 0.3}]))
    result = runner.invoke(app, ["heterogeneity", str(path)])
    assert result.exit_code == 1
    assert "Study X" in result.output


@pytest.mark.integration
def test_empty_study_list_fails(tmp_path):
    """Test that an empty study list exits with an error."""
    path = tmp_path / "empty.json"
    path.write_text("[]")
    result = runner.invoke(app, ["bias", str(path)])
    assert result.exit_code == 1


@pytest.mark.integration
def test_version():
    """Test the version command."""
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


@pytest.mark.integration
def test_pool_defaults_to_auto(spread_studies_file):
    """Test that pooling without --method picks random effects for heterogeneous studies."""
    result = runner.invoke(app, ["pool", str(spread_studies_file), "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["model"] == "random"
    assert "I² = 95.4%" in data["model_rationale"]


@pytest.mark.integration
def test_pool_from_event_counts(tmp_path):
    """Test pooling studies given as 2x2 event counts on the log odds scale."""
    path = tmp_path / "counts.json"
    path.write_text(
        json.dumps(
            [
                {"study_id": "T1", "events_intervention": 10, "total_intervention": 50,
                 "events_control": 20, "total_control": 50},
                {"study_id": "T2", "events_intervention": 12, "total_intervention": 60,
                 "events_control": 24, "total_control": 60},
            ]
        )
    )
    result = runner.invoke(app, ["pool", str(path), "--method", "fixed", "--json"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["pooled_effect"] == pytest.approx(-0.9808, abs=1e-4)
    assert data["total_sample_size"] == 220


@pytest.mark.integration
def test_non_object_study_record_fails(tmp_path):
    """Test that a study entry that is not an object exits with an error."""
    path = tmp_path / "bad.json"
    path.write_text(json.dumps([[5]]))
    result = runner.invoke(app, ["heterogeneity", str(path)])
    assert result.exit_code == 1
    assert "Study #1" in result.output


@pytest.mark.integration
def test_scalar_study_file_fails(tmp_path):
    """Test that a JSON file holding neither a list nor an object exits with an error."""
    path = tmp_path / "bad.json"
    path.write_text("5")
    result = runner.invoke(app, ["pool", str(path)])
    assert result.exit_code == 1


@pytest.mark.integration
def test_grade_list_input_fails(tmp_path):
    """Test that a GRADE file holding a list exits with an error."""
    path = tmp_path / "grade.json"
    path.write_text(json.dumps([{"study_design": "randomized_trial"}]))
    result = runner.invoke(app, ["grade", str(path)])
    assert result.exit_code == 1
    assert "must be an object" in result.output

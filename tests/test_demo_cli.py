# ABOUTME: Verifies the demo CLI exposes recommend, plan, weak-areas and evaluate commands.
# ABOUTME: Runs the commands against the sample fixture through Typer's test runner.

import sys
from pathlib import Path

import pytest
from loguru import logger
from typer.testing import CliRunner

from scripts import demo_engine

FIXTURE = str(Path(__file__).resolve().parents[1] / "configs" / "sample_catalog.yaml")
runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logging():
    yield
    # The app callback points loguru at the runner's captured stderr.
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


def test_demo_cli_registers_commands():
    app = demo_engine.app
    command_names = {cmd.name or cmd.callback.__name__ for cmd in app.registered_commands}
    assert {"recommend", "plan", "weak-areas", "evaluate"} <= command_names


def test_plan_command_prints_path():
    result = runner.invoke(demo_engine.app, ["plan", "--learner-id", "alice", "--fixture", FIXTURE])
    assert result.exit_code == 0, result.output
    assert "CourseA" in result.output
    assert "CourseB" in result.output


def test_plan_command_reports_unreachable_goal():
    result = runner.invoke(
        demo_engine.app, ["plan", "--learner-id", "alice", "--goal", "quantum", "--fixture", FIXTURE]
    )
    assert result.exit_code == 1
    assert "quantum" in result.output


def test_weak_areas_command_flags_loops():
    result = runner.invoke(demo_engine.app, ["weak-areas", "--learner-id", "bob", "--fixture", FIXTURE])
    assert result.exit_code == 0, result.output
    assert "loops" in result.output


def test_evaluate_command_saves_model(tmp_path):
    model_out = tmp_path / "model.npz"
    result = runner.invoke(demo_engine.app, ["evaluate", "--fixture", FIXTURE, "--model-out", str(model_out)])
    assert result.exit_code == 0, result.output
    assert model_out.exists()
    assert "brier" in result.output

from __future__ import annotations

import json
import runpy
import warnings
from pathlib import Path

import pytest
from typer.testing import CliRunner

from podnorm import cli
from podnorm.decision import LimiterDecision
from podnorm.domain.models import NormalisationResult
from podnorm.errors import ClampedCeilingWarning, SilentAudioError
from podnorm.measurement import MeasurementSnapshot

runner = CliRunner()


def _result(**overrides) -> NormalisationResult:
    values = {
        "input_lufs": -20.0,
        "input_tp": -6.0,
        "output_lufs": -16.02,
        "output_tp": -2.1,
        "gain_applied_db": 0.0,
        "requested_target_i": -16.0,
        "effective_target_i": -16.0,
        "linear_mode_forced": False,
        "limiter": LimiterDecision(ceiling_dbtp=0.0, needed=False, clamped=False),
        "within_target": True,
        "skipped": False,
        "final_measurement": None,
    }
    values.update(overrides)
    return NormalisationResult(**values)


def test_cli_normalise_dispatches_to_handler(monkeypatch, tmp_path: Path):
    source = tmp_path / "episode.wav"
    source.write_bytes(b"RIFF")
    captured = {}

    def fake_normalise(input_path, settings, correlation_id, output_path=None, report_json=None):
        captured.update(
            input_path=input_path,
            settings=settings,
            correlation_id=correlation_id,
            output_path=output_path,
            report_json=report_json,
        )
        return _result()

    monkeypatch.setattr(cli.cli_handlers, "normalise_from_path", fake_normalise)

    outcome = runner.invoke(
        cli.app,
        ["normalise", str(source), "--output", str(tmp_path / "out.wav"), "--target-i", "-16", "--no-limiter"],
    )

    assert outcome.exit_code == 0, outcome.output
    assert captured["input_path"] == source
    assert captured["output_path"] == tmp_path / "out.wav"
    assert captured["settings"].targets.integrated_lufs == -16.0
    assert captured["settings"].limiter.enabled is False
    assert "Normalised audio written to:" in outcome.output
    assert f"Correlation ID: {captured['correlation_id']}" in outcome.output


def test_cli_normalise_reports_clamped_ceiling(monkeypatch, tmp_path: Path):
    source = tmp_path / "episode.wav"
    source.write_bytes(b"RIFF")

    def fake_normalise(*args, **kwargs):
        warnings.warn("Pre-limiter ceiling clamped to -24.0 dBTP", ClampedCeilingWarning)
        return _result(effective_target_i=-25.1, output_lufs=-25.1, linear_mode_forced=True)

    monkeypatch.setattr(cli.cli_handlers, "normalise_from_path", fake_normalise)

    outcome = runner.invoke(cli.app, ["normalise", str(source)])

    assert outcome.exit_code == 0
    assert "Warning: Pre-limiter ceiling clamped to -24.0 dBTP" in outcome.output
    assert "Target lowered from -16.0 LUFS" in outcome.output


def test_cli_normalise_exits_non_zero_on_failure(monkeypatch, tmp_path: Path):
    source = tmp_path / "silence.wav"
    source.write_bytes(b"RIFF")

    def fake_normalise(*args, **kwargs):
        raise SilentAudioError(float("-inf"))

    monkeypatch.setattr(cli.cli_handlers, "normalise_from_path", fake_normalise)

    outcome = runner.invoke(cli.app, ["normalise", str(source)])

    assert outcome.exit_code == 1
    assert "Error: Cannot normalise silent audio" in outcome.output


def test_cli_rejects_out_of_range_target(tmp_path: Path):
    source = tmp_path / "episode.wav"
    source.write_bytes(b"RIFF")

    outcome = runner.invoke(cli.app, ["normalise", str(source), "--target-tp", "3"])

    assert outcome.exit_code == 1
    assert "Error:" in outcome.output


def test_cli_measure_prints_json(monkeypatch, tmp_path: Path):
    source = tmp_path / "episode.wav"
    source.write_bytes(b"RIFF")
    snapshot = MeasurementSnapshot(
        integrated_lufs=-20.0,
        true_peak_dbtp=-6.0,
        loudness_range_lu=4.0,
        threshold_lufs=-30.0,
    )
    monkeypatch.setattr(cli.cli_handlers, "measure_path", lambda input_path, settings, correlation_id: snapshot)

    outcome = runner.invoke(cli.app, ["measure", str(source)])

    assert outcome.exit_code == 0
    assert json.loads(outcome.output)["integrated_lufs"] == -20.0


def test_module_entrypoint_runs_cli_app(monkeypatch):
    called = {}

    def fake_app(**kwargs):
        called.update(kwargs)

    monkeypatch.setattr(cli, "app", fake_app)

    with pytest.raises(SystemExit) as exc_info:
        runpy.run_module("podnorm.__main__", run_name="__main__")

    assert called == {"prog_name": "podnorm"}
    assert exc_info.value.code == 0

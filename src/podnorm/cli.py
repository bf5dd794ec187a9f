"""CLI interface for podnorm."""

import json
import logging
import warnings
from pathlib import Path
from uuid import uuid4

import typer

from .errors import ClampedCeilingWarning, NormalisationError
from .interfaces import cli_handlers

app = typer.Typer(help="podnorm: loudness normalisation for spoken-word audio")


@app.callback()
def configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log normalisation events to stderr."),
) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@app.command("normalise")
def normalise_command(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio file to normalise."),
    output: Path | None = typer.Option(
        None, "--output", "-o", help="Write here instead of replacing the input file."
    ),
    target_i: float | None = typer.Option(None, "--target-i", help="Integrated loudness target in LUFS."),
    target_tp: float | None = typer.Option(None, "--target-tp", help="True-peak ceiling in dBTP."),
    tolerance: float | None = typer.Option(None, "--tolerance", help="Accepted deviation from the target in LU."),
    config: Path | None = typer.Option(None, "--config", help="JSON or YAML normalisation settings."),
    report_json: Path | None = typer.Option(
        None,
        "--report-json",
        help="Optional path to write the normalisation report JSON.",
    ),
    no_limiter: bool = typer.Option(False, "--no-limiter", help="Never insert the peak-safety pre-limiter."),
) -> None:
    """Normalise an audio file to the loudness target with peak safety."""

    correlation_id = str(uuid4())
    try:
        settings = cli_handlers.build_settings(config, target_i, target_tp, tolerance, disable_limiter=no_limiter)
        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always", ClampedCeilingWarning)
            result = cli_handlers.normalise_from_path(
                input_path,
                settings,
                correlation_id=correlation_id,
                output_path=output,
                report_json=report_json,
            )
    except (NormalisationError, ValueError) as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error

    for warning in caught:
        typer.echo(f"Warning: {warning.message}", err=True)

    destination = output or input_path
    if result.skipped:
        typer.echo(f"Normalisation disabled; {input_path} left unchanged.")
        return

    typer.echo(
        f"Normalised audio written to: {destination} "
        f"({result.input_lufs:.1f} LUFS -> {result.output_lufs:.1f} LUFS, "
        f"target {result.effective_target_i:.1f} LUFS, peak {result.output_tp:.1f} dBTP)"
    )
    if result.linear_mode_forced:
        typer.echo(
            f"Target lowered from {result.requested_target_i:.1f} LUFS to keep gain linear under the peak ceiling."
        )
    if not result.within_target:
        typer.echo(f"Warning: output is {result.deviation_lu:.2f} LU away from the target.", err=True)
    typer.echo(f"Correlation ID: {correlation_id}")


@app.command("measure")
def measure_command(
    input_path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Audio file to measure."),
    config: Path | None = typer.Option(None, "--config", help="JSON or YAML normalisation settings."),
) -> None:
    """Print the loudness statistics of an audio file as JSON."""

    try:
        settings = cli_handlers.build_settings(config)
        measurement = cli_handlers.measure_path(input_path, settings, correlation_id=str(uuid4()))
    except (NormalisationError, ValueError) as error:
        typer.echo(f"Error: {error}", err=True)
        raise typer.Exit(code=1) from error

    typer.echo(json.dumps(measurement.as_dict(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()

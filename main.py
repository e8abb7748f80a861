from __future__ import annotations

import json
import signal
from pathlib import Path
from typing import Optional

import typer

from autorange.config import load_autorange, load_config
from autorange.core.sample import format_autorange
from autorange.data.docker_client import DockerClient
from autorange.data.registry import WatcherRegistry
from autorange.data.replay import ReplayRunner, load_samples, summarize
from autorange.data.session import make_watcher_factory, watch_container
from autorange.errors import AutoRangeError
from autorange.utils.logging import setup_logging


app = typer.Typer(add_completion=False)


@app.command()
def watch(
    container: str = typer.Argument(..., help="Container id or name"),
    autorange_file: Optional[Path] = typer.Option(
        None, "--autorange", help="YAML autorange block used when the service declares none"
    ),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Runtime config.yaml"),
    as_json: bool = typer.Option(False, "--json", help="Print full augmented samples as JSON"),
    log_level: Optional[str] = typer.Option(None),
) -> None:
    """Stream stats for a container and let autorange converge on its limits.

    Leaving the stream pauses the watcher; the accumulated series are kept
    for as long as the process runs.
    """
    try:
        cfg = load_config(config_path)
        fallback = load_autorange(autorange_file) if autorange_file else cfg.runtime.autorange
        client = DockerClient.from_config(cfg)
    except AutoRangeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    setup_logging(log_level or cfg.env.LOG_LEVEL)
    registry = WatcherRegistry(make_watcher_factory(cfg, client))

    def handle_signal(signum, frame):  # noqa: ANN001, D401
        raise KeyboardInterrupt

    signal.signal(signal.SIGTERM, handle_signal)

    try:
        for sample in watch_container(client, registry, container, fallback):
            if as_json:
                typer.echo(json.dumps(sample.to_dict()))
            else:
                typer.echo(format_autorange(sample))
    except KeyboardInterrupt:
        pass
    except AutoRangeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    finally:
        registry.stop_all()


@app.command()
def replay(
    recording: Path = typer.Argument(..., help="JSON-lines file of stats frames"),
    autorange_file: Optional[Path] = typer.Option(None, "--autorange", help="YAML autorange block"),
    config_path: Optional[Path] = typer.Option(None, "--config", help="Runtime config.yaml"),
    limit: Optional[int] = typer.Option(None, help="Series capacity / window length"),
    log_level: str = typer.Option("WARNING"),
) -> None:
    """Replay a recorded stats stream and print the limits autorange would apply."""
    setup_logging(log_level)

    try:
        cfg = load_config(config_path)
        autorange = load_autorange(autorange_file) if autorange_file else cfg.runtime.autorange
        if not autorange:
            typer.echo("error: no autorange configuration given", err=True)
            raise typer.Exit(code=2)
        runner = ReplayRunner(autorange, limit=cfg.runtime.series_limit if limit is None else limit)
        result = runner.run(load_samples(recording))
    except AutoRangeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)

    typer.echo(json.dumps(summarize(result), indent=2))
    if not result.applied:
        typer.echo(f"not converged after {result.ticks} samples", err=True)


@app.command("config")
def show_config(
    config_path: Optional[Path] = typer.Option(None, "--config", help="Runtime config.yaml"),
) -> None:
    """Print the effective runtime configuration."""
    try:
        cfg = load_config(config_path)
    except AutoRangeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps({"runtime": cfg.runtime.model_dump(), "docker_host": cfg.env.DOCKER_HOST}, indent=2))


if __name__ == "__main__":
    app()

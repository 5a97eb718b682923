import json
import os

import click
from loguru import logger

from stationary_drift.config import dump_config, load_config, setup_logging
from stationary_drift.loader import SessionLoader, simulate_session, write_session


@click.group()
def main():
    """Stationary Drift - detect GPS drift on a device the accelerometer says is at rest."""
    pass


@main.command(name="replay")
@click.argument(
    "session_path", type=click.Path(exists=True, file_okay=False, dir_okay=True)
)
@click.option("--config", default="config.toml", help="Path to the configuration file.")
@click.option("--realtime", is_flag=True, help="Replay streams on separate threads at recorded pace.")
@click.option("--speed", default=1.0, type=float, help="Playback speed multiplier for --realtime.")
@click.option(
    "--events-out",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write detected drift events as JSON Lines.",
)
@click.option("--log-file", type=click.Path(dir_okay=False), default=None, help="Also log to this file.")
def replay_command(session_path, config, realtime, speed, events_out, log_file):
    """Replay a recorded session through the stationary and drift detectors."""
    from stationary_drift.replay import SessionReplayer

    setup_logging(log_file)
    settings = load_config(config)

    try:
        loader = SessionLoader(session_path)
    except (ValueError, OSError) as e:
        raise click.ClickException(f"Failed to load session: {e}")

    if speed <= 0:
        raise click.ClickException("--speed must be positive")

    click.echo(f"Session: {session_path}")
    click.echo(
        f"Records: {len(loader.accel)} accelerometer, {len(loader.fixes)} GPS "
        f"over {loader.duration_ms / 1000:.1f}s"
    )

    replayer = SessionReplayer(loader, settings)
    monitor = replayer.run_realtime(speed) if realtime else replayer.run()
    stats = monitor.stats()

    click.echo("-" * 40)
    click.echo(f"Samples processed: {stats['samples']} ({stats['faults']} discarded)")
    click.echo(f"State changes:     {stats['state_changes']}")
    click.echo(f"GPS fixes:         {stats['fixes']}")
    click.echo(f"Drift events:      {stats['drift_events']}")
    click.echo(f"Final state:       {'stationary' if monitor.get_is_stationary() else 'moving'}")

    if events_out:
        with open(events_out, "w") as f:
            for event in monitor.drift_events:
                f.write(json.dumps({"gps_speed": event.gps_speed, "stationary": event.stationary}) + "\n")
        click.echo(f"Drift events written to {events_out}")


@main.command(name="simulate")
@click.argument("output_dir", type=click.Path(file_okay=False, dir_okay=True))
@click.option("--seed", default=None, type=int, help="Random seed for a reproducible session.")
@click.option("--moving-seconds", default=5.0, type=float, help="Length of each moving phase.")
@click.option("--still-seconds", default=10.0, type=float, help="Length of the still phase.")
@click.option("--drift-speed", default=0.8, type=float, help="Mean GPS speed reported while still (m/s).")
@click.option("--config", default="config.toml", help="Path to the configuration file.")
@click.option("--compress", is_flag=True, help="Store streams as zstd-compressed JSON Lines.")
def simulate_command(output_dir, seed, moving_seconds, still_seconds, drift_speed, config, compress):
    """Write a synthetic moving/still/moving session with GPS drift."""
    settings = load_config(config)
    sensors = settings["sensors"]
    accel, fixes = simulate_session(
        moving_seconds=moving_seconds,
        still_seconds=still_seconds,
        drift_speed=drift_speed,
        accel_interval_ms=sensors["accelerometer_interval_ms"],
        gps_interval_ms=sensors["gps_fastest_interval_ms"],
        seed=seed,
    )
    try:
        write_session(
            output_dir,
            accel,
            fixes,
            metadata={
                "source": "simulate",
                "seed": seed,
                "moving_seconds": moving_seconds,
                "still_seconds": still_seconds,
                "drift_speed": drift_speed,
                "sensors": sensors,
            },
            compress=compress,
        )
    except OSError as e:
        logger.error(f"Failed to write session: {e}")
        raise click.ClickException(str(e))
    click.echo(f"Wrote {len(accel)} accelerometer samples and {len(fixes)} GPS fixes to {output_dir}")


@main.command(name="show-config")
@click.option("--config", default="config.toml", help="Path to the configuration file.")
def show_config_command(config):
    """Print the effective configuration."""
    if config and not os.path.exists(config):
        click.echo(f"# {config} not found, using defaults", err=True)
    click.echo(dump_config(load_config(config)))


if __name__ == "__main__":
    main()

"""rehab-engine CLI - run and inspect rehab sessions from the command line.

Usage:
    rehab-engine init-config   - Write the default configuration as YAML
    rehab-engine validate      - Check a configuration file
    rehab-engine run           - Replay a recording through a full session
    rehab-engine show-record   - Print the stored previous-session record
    rehab-engine synth         - Write a synthetic recording of a full session
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from rehab_engine.errors import ConfigurationError, SessionSaveError

app = typer.Typer(
    name="rehab-engine",
    help="🤏 Hand-tracking rehab sessions: pinch detection, mudra holds, progress tracking.",
    add_completion=False,
)


@app.callback()
def configure(
    log_level: str = typer.Option("warning", help="Log level"),
):
    """Set up logging for every command."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load(config: Optional[str], require_tasks: bool = False):
    from rehab_engine.config import load_config

    try:
        return load_config(config, require_tasks=require_tasks)
    except FileNotFoundError:
        typer.echo(f"❌ Config not found: {config}", err=True)
        raise typer.Exit(1)
    except ConfigurationError as e:
        typer.echo(f"❌ Invalid configuration: {e}", err=True)
        raise typer.Exit(1)


@app.command("init-config")
def init_config(
    path: str = typer.Argument(..., help="Where to write the YAML config"),
    force: bool = typer.Option(False, help="Overwrite an existing file"),
):
    """Write the default deployment configuration."""
    from rehab_engine.config import RehabConfig

    target = Path(path)
    if target.exists() and not force:
        typer.echo(f"❌ {path} already exists (use --force to overwrite)", err=True)
        raise typer.Exit(1)

    target.parent.mkdir(parents=True, exist_ok=True)
    RehabConfig.default().to_yaml(target)
    typer.echo(f"💾 Default configuration written to: {path}")


@app.command()
def validate(
    config: str = typer.Argument(..., help="Path to YAML config"),
):
    """Check a configuration file and list its task sequence."""
    cfg = _load(config, require_tasks=True)

    typer.echo(f"✅ {config} is valid")
    typer.echo(f"   Pinch: start={cfg.pinch.start_threshold} end={cfg.pinch.end_threshold} "
               f"smoothing={cfg.pinch.policy.value}")
    typer.echo(f"   Channels: {', '.join(ch.label for ch in cfg.pinch.channels)}")
    typer.echo(f"   Tasks ({len(cfg.tasks)}):")
    for i, task in enumerate(cfg.tasks, 1):
        typer.echo(f"   {i}. {task.label}: {task.instruction}")


@app.command()
def run(
    recording: str = typer.Argument(..., help="Path to recording file"),
    config: Optional[str] = typer.Option(None, help="Path to YAML config"),
    data_dir: Optional[str] = typer.Option(None, help="Override storage.data_dir"),
    export: bool = typer.Option(True, help="Export session rows as CSV"),
    speed: float = typer.Option(0.0, help="Playback speed multiplier (0 = as fast as possible)"),
):
    """Replay a recording through a full rehab session."""
    from rehab_engine.pipeline import RehabPipeline
    from rehab_engine.recorder import FramePlayer
    from rehab_engine.session import SessionEventType, SessionState
    from rehab_engine.storage import export_rows

    cfg = _load(config, require_tasks=True)
    if data_dir:
        cfg.storage.data_dir = data_dir

    path = Path(recording)
    if not path.exists():
        typer.echo(f"❌ Recording not found: {recording}", err=True)
        raise typer.Exit(1)

    try:
        player = FramePlayer.load(path)
    except (ValueError, KeyError) as e:
        typer.echo(f"❌ Could not read recording: {e}", err=True)
        raise typer.Exit(1)

    typer.echo(f"▶️  Replaying {path.name} ({player.frame_count} frames, {player.duration:.1f}s)")

    pipeline = RehabPipeline(cfg, store=cfg.storage.store())
    pipeline.start_session()

    frames = player.play_realtime(speed=speed) if speed > 0 else player.play()
    report = None
    try:
        for result in pipeline.run(frames):
            for event in result.session_events:
                if event.kind is SessionEventType.TASK_STARTED:
                    typer.echo(f"\n🎯 Task {event.task_index + 1}: {event.task.instruction}")
                elif event.kind is SessionEventType.REP_COMPLETED:
                    row = event.row
                    typer.echo(f"   ✔ {row.task_label} #{row.rep_index} "
                               f"({row.duration_seconds:.2f}s, strength {row.observed_strength:.2f})")
                elif event.kind is SessionEventType.SESSION_COMPLETED:
                    report = event.report
    except SessionSaveError as e:
        typer.echo(f"❌ {e}", err=True)
        if e.report is not None:
            typer.echo(e.report.render())
        raise typer.Exit(1)

    session = pipeline.session
    if session.state is not SessionState.SESSION_COMPLETE:
        done = session.current_task.label if session.current_task else "-"
        typer.echo(f"\n⏸  Recording ended before the session finished (at task: {done})")
        raise typer.Exit(2)

    typer.echo(f"\n{report.render()}")

    if export:
        out = export_rows(session.completed_record.rows, cfg.storage.export_dir,
                          cfg.storage.export_prefix)
        if out is not None:
            typer.echo(f"💾 Rows exported to: {out}")


@app.command("show-record")
def show_record(
    config: Optional[str] = typer.Option(None, help="Path to YAML config"),
    data_dir: Optional[str] = typer.Option(None, help="Override storage.data_dir"),
):
    """Print the stored previous-session record."""
    from rehab_engine.hands import FingerChannel

    cfg = _load(config)
    if data_dir:
        cfg.storage.data_dir = data_dir

    store = cfg.storage.store()
    record = store.load()
    if record is None:
        typer.echo(f"No previous session in {store.path}")
        return

    typer.echo(f"📅 Session: {record.session_date}")
    for ch in FingerChannel:
        typer.echo(f"   {ch.label:7s} {record.max_pinch_strength[ch]:.0%}")


@app.command()
def synth(
    output: str = typer.Argument(..., help="Output recording path"),
    fps: float = typer.Option(60.0, help="Frame rate"),
    strength: float = typer.Option(0.9, help="Raw pinch strength while pinching"),
    hand_length: float = typer.Option(0.10, help="Wrist to middle fingertip, metres"),
    hand: str = typer.Option("right", help="Hand that performs the session"),
):
    """Write a synthetic recording that completes the default session."""
    from rehab_engine.hands import HandSide
    from rehab_engine.recorder import FrameRecorder
    from rehab_engine.synthetic import default_session_script, render

    try:
        side = HandSide.parse(hand)
    except ValueError as e:
        typer.echo(f"❌ {e}", err=True)
        raise typer.Exit(1)

    recorder = FrameRecorder()
    recorder.start()
    for dt, frame in render(default_session_script(strength, side), fps=fps, hand_length=hand_length):
        recorder.add_frame(dt, frame)
    recorder.stop()
    recorder.save(output)

    typer.echo(f"📼 Wrote {recorder.frame_count} frames ({recorder.duration:.1f}s) to: {output}")


def main():
    app()


if __name__ == "__main__":
    main()

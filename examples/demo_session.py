#!/usr/bin/env python3
"""Run a full rehab session on synthetic tracking input.

No headset required: a scripted hand performs the default task sequence and
the session events are printed as they happen. Run it twice to see the
comparison against the previous session.

Usage:
    python examples/demo_session.py
    python examples/demo_session.py --strength 0.95 --data-dir /tmp/rehab
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rehab_engine.config import RehabConfig
from rehab_engine.errors import SessionSaveError
from rehab_engine.pinch import PinchEventType
from rehab_engine.pipeline import RehabPipeline
from rehab_engine.session import SessionEventType
from rehab_engine.storage import SessionStore, export_rows
from rehab_engine.synthetic import default_session_script, render


def main():
    parser = argparse.ArgumentParser(description="Synthetic rehab session")
    parser.add_argument("--strength", type=float, default=0.9, help="Raw pinch strength")
    parser.add_argument("--fps", type=float, default=72.0, help="Tracking frame rate")
    parser.add_argument("--data-dir", default="data", help="Where the session record is kept")
    parser.add_argument("--verbose", action="store_true", help="Print pinch start/end events")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)

    config = RehabConfig.default()
    pipeline = RehabPipeline(config, store=SessionStore(args.data_dir))
    pipeline.start_session()

    frames = render(default_session_script(args.strength), fps=args.fps)
    print(f"Simulating {len(frames)} frames at {args.fps:.0f} FPS\n")

    try:
        for result in pipeline.run(frames):
            t = pipeline.session.session_time
            if args.verbose:
                for e in result.pinch_events:
                    if e.kind in (PinchEventType.START, PinchEventType.END):
                        print(f"  [{t:6.2f}s] pinch {e.kind.value} {e.hand.value}/{e.channel.label} "
                              f"({e.strength:.2f})")
            for c in result.posture_changes:
                print(f"  [{t:6.2f}s] posture {c.hand.value}: {c.previous.value} -> {c.label.value}")
            for e in result.session_events:
                if e.kind is SessionEventType.TASK_STARTED:
                    print(f"\n[{t:6.2f}s] Task {e.task_index + 1}: {e.task.instruction}")
                elif e.kind is SessionEventType.REP_COMPLETED:
                    print(f"  [{t:6.2f}s] {e.row.task_label} rep {e.row.rep_index} "
                          f"({e.row.duration_seconds:.2f}s)")
    except SessionSaveError as e:
        print(f"\nError: {e}")
        sys.exit(1)

    session = pipeline.session
    print()
    print(session.report.render() if session.report else "Session did not finish.")

    if session.completed_record:
        path = export_rows(session.completed_record.rows, args.data_dir)
        print(f"\nRows exported to {path}")


if __name__ == "__main__":
    main()

#!/usr/bin/env python3
"""rehab-engine Benchmark - per-frame latency of the detection engines.

Measures performance on the current hardware using synthetic hand input.
No headset required.

Usage:
    python examples/benchmark.py
    python examples/benchmark.py --iterations 5000
"""

from __future__ import annotations

import argparse
import gc
import sys
import time
from pathlib import Path

import numpy as np

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rehab_engine.config import RehabConfig
from rehab_engine.hands import HandSide, Joint
from rehab_engine.pinch import PinchConfig, PinchDetector
from rehab_engine.pipeline import RehabPipeline
from rehab_engine.postures import Posture, PostureClassifier
from rehab_engine.synthetic import default_session_script, posture_joints, render


def timed(fn, n: int) -> dict:
    gc.collect()
    times = []
    for i in range(n):
        t0 = time.perf_counter()
        fn(i)
        times.append(time.perf_counter() - t0)

    times_ms = np.array(times) * 1000
    return {
        "mean_ms": float(np.mean(times_ms)),
        "p95_ms": float(np.percentile(times_ms, 95)),
        "throughput_fps": 1000.0 / float(np.mean(times_ms)),
    }


def print_table(title: str, rows: list[tuple[str, str]]):
    """Print a formatted table."""
    max_key = max(len(r[0]) for r in rows)
    max_val = max(len(r[1]) for r in rows)
    width = max_key + max_val + 7

    print()
    print(f"  ╭{'─' * width}╮")
    print(f"  │ {title:<{width-2}} │")
    print(f"  ├{'─' * width}┤")
    for key, val in rows:
        print(f"  │ {key:<{max_key}}   {val:>{max_val}} │")
    print(f"  ╰{'─' * width}╯")


def rows_for(result: dict) -> list[tuple[str, str]]:
    return [
        ("Mean latency", f"{result['mean_ms']:.4f} ms"),
        ("P95 latency", f"{result['p95_ms']:.4f} ms"),
        ("Throughput", f"{result['throughput_fps']:,.0f} FPS"),
    ]


def main():
    parser = argparse.ArgumentParser(description="rehab-engine Benchmark")
    parser.add_argument("-n", "--iterations", type=int, default=5000, help="Number of iterations")
    args = parser.parse_args()
    n = args.iterations

    rng = np.random.default_rng(42)
    raw = rng.random((n, 4))

    detector = PinchDetector(PinchConfig(smoothing_time_constant=0.15))
    pinch = timed(lambda i: detector.observe(HandSide.RIGHT, raw[i], dt=1 / 72), n)

    classifier = PostureClassifier()
    poses = [posture_joints(p) for p in Posture]
    tips = [Joint.THUMB_TIP, Joint.INDEX_TIP, Joint.MIDDLE_TIP, Joint.RING_TIP, Joint.PINKY_TIP]

    def classify(i):
        joints = poses[i % len(poses)]
        classifier.classify(HandSide.RIGHT, *[joints[j] for j in tips], wrist=joints[Joint.WRIST_ROOT])

    posture = timed(classify, n)

    frames = render(default_session_script(), fps=72.0)
    pipeline = RehabPipeline(RehabConfig.default())
    pipeline.start_session()
    tick = timed(lambda i: pipeline.tick(*frames[i % len(frames)]), min(n, len(frames)))

    print_table("Pinch engine (4 channels, 1 hand)", rows_for(pinch))
    print_table("Posture classifier", rows_for(posture))
    print_table("Full pipeline tick (2 hands)", rows_for(tick))
    print()


if __name__ == "__main__":
    main()

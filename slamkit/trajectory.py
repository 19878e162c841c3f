"""Reading TUM-style trajectories and comparing them."""

from __future__ import annotations

import argparse
import math
from collections.abc import Iterable, Sequence
from pathlib import Path

from slamkit.lie import SE3

GROUNDTRUTH_FILE = "./example/groundtruth.txt"
ESTIMATED_FILE = "./example/estimated.txt"


def parse_trajectory(lines: Iterable[str]) -> list[SE3]:
    """Parse lines of 'time tx ty tz qx qy qz qw' into poses; blank lines are skipped."""
    poses = []
    for number, line in enumerate(lines, start=1):
        fields = line.split()
        if not fields:
            continue
        if len(fields) != 8:
            raise ValueError(f"line {number}: expected 8 values, got {len(fields)}")
        try:
            _, tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields)
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from exc
        poses.append(SE3.from_quaternion(qw, qx, qy, qz, (tx, ty, tz)))
    return poses


def read_trajectory(path) -> list[SE3]:
    """Read a trajectory file."""
    with Path(path).open(encoding="utf-8") as stream:
        return parse_trajectory(stream)


def trajectory_rmse(groundtruth: Sequence[SE3], estimated: Sequence[SE3]) -> float:
    """Root mean square of the norms of log(gt^-1 * est) over paired poses."""
    if not groundtruth or not estimated:
        raise ValueError("trajectories must not be empty")
    if len(groundtruth) != len(estimated):
        raise ValueError("trajectories must have the same length")
    total = 0.0
    for gt, est in zip(groundtruth, estimated):
        error = float(sum(v * v for v in (gt.inverse() * est).log()))
        total += error
    return math.sqrt(total / len(estimated))


def main(argv: Sequence[str] | None = None) -> int:
    """Print the RMSE between a ground-truth and an estimated trajectory."""
    parser = argparse.ArgumentParser(description="Absolute trajectory error between two trajectories.")
    parser.add_argument("groundtruth", nargs="?", default=GROUNDTRUTH_FILE)
    parser.add_argument("estimated", nargs="?", default=ESTIMATED_FILE)
    args = parser.parse_args(argv)

    groundtruth = read_trajectory(args.groundtruth)
    estimated = read_trajectory(args.estimated)
    print(f"read total {len(groundtruth)} pose entries")
    print(f"RMSE = {trajectory_rmse(groundtruth, estimated):g}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
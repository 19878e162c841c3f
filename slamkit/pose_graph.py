"""Pose graph optimisation on SE(3) with poses updated on the Lie algebra.

Graphs are read from and written to the g2o text format using the
``VERTEX_SE3:QUAT`` and ``EDGE_SE3:QUAT`` records.
"""

from __future__ import annotations

import argparse
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import TextIO

import numpy as np

from slamkit.lie import SE3

VERTEX_TAG = "VERTEX_SE3:QUAT"
EDGE_TAG = "EDGE_SE3:QUAT"
DEFAULT_OUTPUT = "result_lie.g2o"
DEFAULT_ITERATIONS = 30

_UPPER_ROWS, _UPPER_COLS = np.triu_indices(6)
_MAX_TRIALS = 10


@dataclass
class Vertex:
    """A pose in the graph; fixed poses are not optimised."""

    id: int
    estimate: SE3 = field(default_factory=SE3)
    fixed: bool = False


@dataclass
class Edge:
    """A relative-pose measurement from vertex ``v1`` to vertex ``v2``."""

    id: int
    v1: int
    v2: int
    measurement: SE3 = field(default_factory=SE3)
    information: np.ndarray = field(default_factory=lambda: np.eye(6))

    def __post_init__(self) -> None:
        info = np.asarray(self.information, dtype=float)
        if info.shape != (6, 6):
            raise ValueError(f"information must be 6x6, got {info.shape}")
        self.information = info


def jr_inv(error: SE3) -> np.ndarray:
    """Approximation of the inverse right Jacobian of SE(3) at ``error``: the identity."""
    if not isinstance(error, SE3):
        raise TypeError("error must be an SE3")
    return np.eye(6)


def _pose(vertex) -> SE3:
    return vertex.estimate if isinstance(vertex, Vertex) else vertex


def edge_error(edge: Edge, v1, v2) -> np.ndarray:
    """Residual log(Z^-1 T1^-1 T2) of an edge, given vertices or poses."""
    t1, t2 = _pose(v1), _pose(v2)
    return (edge.measurement.inverse() * t1.inverse() * t2).log()


def _fmt(value: float) -> str:
    return f"{float(value):.10g}"


class PoseGraph:
    """Vertices and edges of a pose graph with a Levenberg-Marquardt optimiser."""

    def __init__(self):
        self.vertices: dict[int, Vertex] = {}
        self.edges: list[Edge] = []

    def add_vertex(self, vertex: Vertex) -> None:
        if vertex.id in self.vertices:
            raise ValueError(f"vertex {vertex.id} already exists")
        self.vertices[vertex.id] = vertex

    def add_edge(self, edge: Edge) -> None:
        for vid in (edge.v1, edge.v2):
            if vid not in self.vertices:
                raise ValueError(f"edge {edge.id} refers to unknown vertex {vid}")
        self.edges.append(edge)

    def _error(self, edge: Edge) -> np.ndarray:
        return edge_error(edge, self.vertices[edge.v1], self.vertices[edge.v2])

    def total_error(self) -> float:
        """Sum of e^T Omega e over all edges."""
        total = 0.0
        for edge in self.edges:
            e = self._error(edge)
            total += float(e @ edge.information @ e)
        return total

    def _linear_system(self, index: dict[int, int], size: int):
        h = np.zeros((size, size))
        b = np.zeros(size)
        for edge in self.edges:
            e = self._error(edge)
            omega = edge.information
            adj = self.vertices[edge.v2].estimate.inverse().adjoint()
            jac = jr_inv(SE3.exp(e))
            blocks = [(edge.v1, -jac @ adj), (edge.v2, jac @ adj)]
            free = [(index[vid] * 6, j) for vid, j in blocks if vid in index]
            for row, ja in free:
                b[row:row + 6] += ja.T @ omega @ e
                for col, jb in free:
                    h[row:row + 6, col:col + 6] += ja.T @ omega @ jb
        return h, b

    def _apply(self, index: dict[int, int], dx: np.ndarray) -> None:
        for vid, k in index.items():
            vertex = self.vertices[vid]
            vertex.estimate = SE3.exp(dx[6 * k:6 * k + 6]) * vertex.estimate

    def optimize(self, iterations: int = DEFAULT_ITERATIONS) -> int:
        """Run Levenberg-Marquardt; returns the number of successful iterations."""
        free = [vid for vid, v in self.vertices.items() if not v.fixed]
        if not free or not self.edges:
            return 0
        index = {vid: k for k, vid in enumerate(free)}
        size = 6 * len(free)
        chi2 = self.total_error()
        damping = None
        nu = 2.0
        done = 0
        for _ in range(iterations):
            h, b = self._linear_system(index, size)
            if damping is None:
                damping = 1e-5 * float(np.max(np.diag(h))) or 1e-5
            success = False
            for _trial in range(_MAX_TRIALS):
                try:
                    dx = np.linalg.solve(h + damping * np.eye(size), -b)
                except np.linalg.LinAlgError:
                    damping *= nu
                    nu *= 2.0
                    continue
                backup = {vid: self.vertices[vid].estimate for vid in free}
                self._apply(index, dx)
                new_chi2 = self.total_error()
                if np.isfinite(new_chi2) and new_chi2 < chi2:
                    predicted = float(dx @ (damping * dx - b))
                    rho = (chi2 - new_chi2) / predicted if predicted > 0 else 1.0
                    damping *= max(1.0 / 3.0, 1.0 - (2.0 * rho - 1.0) ** 3)
                    nu = 2.0
                    chi2 = new_chi2
                    success = True
                    break
                for vid, estimate in backup.items():
                    self.vertices[vid].estimate = estimate
                damping *= nu
                nu *= 2.0
            if not success:
                break
            done += 1
        return done

    def write(self, stream: TextIO) -> None:
        """Write the graph as g2o SE3 quaternion records."""
        for vertex in self.vertices.values():
            w, x, y, z = vertex.estimate.rotation.quaternion()
            values = (*vertex.estimate.translation, x, y, z, w)
            stream.write(" ".join([VERTEX_TAG, str(vertex.id), *map(_fmt, values)]) + "\n")
        for edge in self.edges:
            w, x, y, z = edge.measurement.rotation.quaternion()
            values = (*edge.measurement.translation, x, y, z, w)
            info = edge.information[_UPPER_ROWS, _UPPER_COLS]
            fields = [EDGE_TAG, str(edge.v1), str(edge.v2), *map(_fmt, values), *map(_fmt, info)]
            stream.write(" ".join(fields) + "\n")


def read_g2o(stream: Iterable[str]) -> PoseGraph:
    """Read SE3 quaternion vertices and edges; vertex 0 is held fixed."""
    graph = PoseGraph()
    edge_count = 0
    for number, line in enumerate(stream, start=1):
        fields = line.split()
        if not fields:
            continue
        tag = fields[0]
        try:
            if tag == VERTEX_TAG:
                if len(fields) < 9:
                    raise ValueError("vertex needs an id and 7 values")
                vid = int(fields[1])
                tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields[2:9])
                pose = SE3.from_quaternion(qw, qx, qy, qz, (tx, ty, tz))
                graph.add_vertex(Vertex(vid, pose, fixed=vid == 0))
            elif tag == EDGE_TAG:
                if len(fields) < 10:
                    raise ValueError("edge needs two ids and 7 values")
                id1, id2 = int(fields[1]), int(fields[2])
                tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields[3:10])
                info_values = [float(f) for f in fields[10:31]]
                info = np.eye(6)
                k = len(info_values)
                info[_UPPER_ROWS[:k], _UPPER_COLS[:k]] = info_values
                info[_UPPER_COLS[:k], _UPPER_ROWS[:k]] = info_values
                measurement = SE3.from_quaternion(qw, qx, qy, qz, (tx, ty, tz))
                graph.add_edge(Edge(edge_count, id1, id2, measurement, info))
                edge_count += 1
        except ValueError as exc:
            raise ValueError(f"line {number}: {exc}") from exc
    return graph


def main(argv: Sequence[str] | None = None) -> int:
    """Optimise a g2o pose graph file and save the result."""
    parser = argparse.ArgumentParser(description="Optimise an SE(3) pose graph.")
    parser.add_argument("graph", help="g2o file, e.g. sphere.g2o")
    parser.add_argument("--output", default=DEFAULT_OUTPUT)
    parser.add_argument("--iterations", type=int, default=DEFAULT_ITERATIONS)
    args = parser.parse_args(argv)

    path = Path(args.graph)
    if not path.is_file():
        print(f"file {args.graph} does not exist.")
        return 1
    with path.open(encoding="utf-8") as stream:
        graph = read_g2o(stream)
    print(f"read total {len(graph.vertices)} vertices, {len(graph.edges)} edges.")

    print("optimizing ...")
    graph.optimize(args.iterations)

    print("saving optimization results ...")
    with open(args.output, "w", encoding="utf-8") as stream:
        graph.write(stream)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
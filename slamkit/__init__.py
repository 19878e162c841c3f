"""Visual SLAM building blocks: Lie groups, cameras, triangulation, curve fitting,
pose graphs, point clouds, dense depth estimation and a stereo map core."""

__version__ = "0.1.0"
"""Stereo visual SLAM building blocks: descriptors, stereo matching, pose estimation, pose graphs and loop-closure corrections."""

__version__ = "0.1.0"

__all__ = [
    "brisk",
    "pose_graph",
    "stereo_matcher",
    "matching",
    "pose_estimator",
    "loop_graph",
]
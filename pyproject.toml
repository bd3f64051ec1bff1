[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "stereoslam"
version = "0.1.0"
description = "Building blocks for stereo visual SLAM: binary descriptor tools, stereo matching, absolute pose estimation, pose graphs and loop-closure corrections."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = ["slam", "stereo", "loop closing", "pose graph", "pose estimation", "brisk", "computer vision"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Operating System :: OS Independent",
    "Topic :: Scientific/Engineering :: Image Recognition",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["stereoslam"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

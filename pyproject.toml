[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "slamkit"
version = "0.1.0"
description = "Visual SLAM building blocks: rotations, curve fitting, pose estimation, ORB descriptors, optical flow, direct method and bundle adjustment"
requires-python = ">=3.10"
keywords = [
    "slam",
    "computer-vision",
    "bundle-adjustment",
    "pose-estimation",
    "optical-flow",
    "orb",
    "gauss-newton",
    "least-squares",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Education",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering :: Image Recognition",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
slamkit-curve-fitting = "slamkit.curve_fitting:main"
slamkit-bundle-adjustment = "slamkit.bundle_adjustment:main"

[tool.hatch.build.targets.wheel]
packages = ["slamkit"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

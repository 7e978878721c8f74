[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "visodom"
version = "0.1.0"
description = "Visual odometry building blocks: ORB features, epipolar geometry, PnP, ICP, optical flow, direct method and bundle adjustment"
requires-python = ">=3.10"
keywords = [
    "visual odometry",
    "slam",
    "bundle adjustment",
    "orb",
    "optical flow",
    "pnp",
    "icp",
    "epipolar geometry",
    "computer vision",
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
    "Topic :: Scientific/Engineering :: Image Processing",
    "Topic :: Scientific/Engineering :: Mathematics",
]
dependencies = [
    "numpy",
    "scipy",
    "pillow",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
visodom-ba = "visodom.bundle_adjustment:main"
visodom-orb = "visodom.orb:main"

[tool.hatch.build.targets.wheel]
packages = ["visodom"]

[tool.pytest.ini_options]
addopts = "-ra"

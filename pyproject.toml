[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lidarloc"
version = "0.1.0"
description = "Lidar localization building blocks: IMU/GNSS synchronisation, local ENU conversion, LOAM feature extraction, an in-process message bus and trajectory evaluation."
requires-python = ">=3.10"
dependencies = [
    "numpy",
]
keywords = [
    "lidar",
    "localization",
    "loam",
    "point cloud",
    "gnss",
    "imu",
    "odometry",
    "kitti",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Science/Research",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Scientific/Engineering",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["lidarloc"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true

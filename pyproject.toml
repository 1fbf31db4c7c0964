[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kruiseset"
version = "0.1.0"
description = "Update images, resources, selectors, service accounts and role binding subjects in workload manifests"
requires-python = ">=3.10"
keywords = [
    "kubernetes",
    "kruise",
    "cloneset",
    "manifests",
    "yaml",
    "rbac",
    "deployment",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
]
dependencies = [
    "pyyaml>=5.4",
]

[project.optional-dependencies]
test = [
    "pytest>=7.0",
]

[project.scripts]
kruise-set = "kruiseset.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["kruiseset"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true

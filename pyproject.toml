[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "fhirgate"
version = "0.1.0"
description = "A validating HTTP proxy for FHIR resources with YAML field rules and bundle recipes"
requires-python = ">=3.10"
dependencies = [
    "pyyaml",
]
keywords = ["fhir", "validation", "proxy", "healthcare", "http", "wsgi"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: Healthcare Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    "Topic :: Internet :: WWW/HTTP :: WSGI :: Application",
    "Topic :: Scientific/Engineering :: Medical Science Apps.",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
fhirgate = "fhirgate.server:main"

[tool.hatch.build.targets.wheel]
packages = ["fhirgate"]

[tool.pytest.ini_options]
addopts = "-ra"

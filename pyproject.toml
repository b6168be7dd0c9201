[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "thermd"
version = "0.1.0"
description = "Cooling devices for Linux thermal management: thermal sysfs, generic sysfs, backlight, intel_pstate, cpufreq, amdgpu and RAPL power limits"
requires-python = ">=3.10"
dependencies = []
keywords = ["thermal", "cooling", "rapl", "sysfs", "cpufreq", "powercap", "linux"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Hardware",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["thermd"]

[tool.pytest.ini_options]
addopts = "-ra"

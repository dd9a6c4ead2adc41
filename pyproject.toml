[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "recursor"
version = "0.1.0"
description = "An iterative DNS resolver that walks the delegation chain from the root servers, with a caching UDP server."
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["dns", "resolver", "recursive", "iterative", "cache", "nameserver"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Name Service (DNS)",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
recursor = "recursor.server:main"

[tool.hatch.build.targets.wheel]
packages = ["recursor"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

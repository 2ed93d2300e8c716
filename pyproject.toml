[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "filesrv"
version = "0.1.0"
description = "File storage: chunked, checksummed upload and download, plus a broker subscriber that stores base64-encoded images"
requires-python = ">=3.10"
dependencies = []
keywords = ["file", "upload", "download", "storage", "chunked", "checksum", "broker"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: File Transfer Protocol (FTP)",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
filesrv = "filesrv.service:main"

[tool.hatch.build.targets.wheel]
packages = ["filesrv"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

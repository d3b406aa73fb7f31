#!/usr/bin/env python
from setuptools import setup, find_packages
from os import path
import sys

min_py_version = (3, 10)

if sys.version_info < min_py_version:
    sys.exit(
        "docstore is only supported for Python {}.{} or higher".format(*min_py_version)
    )

here = path.abspath(path.dirname(__file__))

long_description = (
    "A schema-flexible document store on PostgreSQL JSON columns."
)

# read in version number into __version__
with open(path.join(here, "src", "docstore", "version.py")) as f:
    exec(f.read())

with open(path.join(here, "requirements.txt")) as f:
    requirements = [line.split("#", 1)[0].rstrip() for line in f.readlines()]
    requirements = [r for r in requirements if r]

setup(
    name="docstore",
    version=__version__,
    description="A document store compiling JSON filters into PostgreSQL queries.",
    long_description=long_description,
    author="docstore contributors",
    license="GNU LGPL",
    keywords=[
        "database",
        "postgresql",
        "json",
        "document store",
    ],
    package_dir={"": "src"},
    packages=find_packages("src", exclude=["contrib", "docs", "tests*"]),
    install_requires=requirements,
    extras_require={"test": ["pytest"]},
    entry_points={"console_scripts": ["docstore=docstore.cli:cli"]},
    python_requires=">={}.{}".format(*min_py_version),
)

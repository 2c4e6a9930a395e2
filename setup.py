#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
# barman-recover - Point-in-time recovery verification for Barman
#
# © Copyright EnterpriseDB UK Limited 2011-2025
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""Point-in-time recovery verification for Barman

barman-recover restores a Barman backup into a throwaway PostgreSQL
instance and starts it, to prove that the backup can actually be
recovered. It runs unattended against the latest backup of a configured
server, or on demand against a chosen backup and recovery target.

barman-recover is distributed under GNU GPL 3.
"""

import sys

from setuptools import find_packages, setup

if sys.version_info < (3, 6):
    raise SystemExit("ERROR: barman-recover needs at least python 3.6 to work")

# Depend on pytest_runner only when the tests are actually invoked
needs_pytest = set(["pytest", "test"]).intersection(sys.argv)
pytest_runner = ["pytest_runner"] if needs_pytest else []

setup_requires = pytest_runner

install_requires = [
    "python-dateutil",
]

barman_recover = {}
with open("barman_recover/version.py", "r", encoding="utf-8") as fversion:
    exec(fversion.read(), barman_recover)

setup(
    name="barman-recover",
    version=barman_recover["__version__"],
    author="EnterpriseDB",
    author_email="barman@enterprisedb.com",
    url="https://www.pgbarman.org/",
    packages=find_packages(exclude=["tests"]),
    entry_points={
        "console_scripts": [
            "barman-recover=barman_recover.cli:main",
        ],
    },
    license="GPL-3.0",
    description=__doc__.split("\n")[0],
    long_description="\n".join(__doc__.split("\n")[2:]),
    install_requires=install_requires,
    extras_require={
        "argcomplete": ["argcomplete"],
        "test": ["pytest", "mock"],
    },
    platforms=["Linux"],
    classifiers=[
        "Environment :: Console",
        "Development Status :: 5 - Production/Stable",
        "Topic :: System :: Archiving :: Backup",
        "Topic :: Database",
        "Topic :: System :: Recovery Tools",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: GNU General Public License v3 or later (GPLv3+)",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
    ],
    setup_requires=setup_requires,
)

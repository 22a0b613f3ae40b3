#!/usr/bin/env python3
"""
Reshard Setup Script
====================
Allows installation of the reshard package.

Usage:
    pip install -e .           # Development install
    pip install -e .[test]     # Development install with test dependencies
    pip install .              # Regular install
"""

from setuptools import setup, find_packages

setup(
    name="redis-reshard",
    version="1.0.0",
    packages=find_packages(include=["reshard", "reshard.*"]),
    python_requires=">=3.10",
    install_requires=[
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "reshard=reshard.cli:main",
        ],
    },
)

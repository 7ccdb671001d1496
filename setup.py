"""
Setup script for netshape, the tc traffic shaping policy compiler.

This allows the package to be installed in development mode:
    pip install -e .[dev]

Or run directly:
    netshape apply --to '*:80' --netem 'delay 100ms 10ms' --dry-run
"""

from setuptools import setup, find_packages

setup(
    name="netshape",
    version="0.1.0",
    description="Compile tbf/netem shaping policies into tc qdiscs and filters",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "pyyaml>=6.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-mock",
        ],
    },
    entry_points={
        "console_scripts": [
            "netshape=netshape.cli:main",
        ],
    },
)

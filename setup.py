"""
Setup script for netsim, the HTTP-controlled network impairment service.

This allows the package to be installed in development mode:
    pip install -e .

Or run directly:
    python -m netsim
"""

from setuptools import setup, find_packages

setup(
    name="netsim",
    version="0.1.0",
    description="Linux tc/netem network impairment over HTTP",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    python_requires=">=3.10",
    install_requires=[
        "flask>=2.2.0",
        "werkzeug>=2.2.0",
        "psutil>=5.9.3",
        "pyyaml>=6.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-mock",
            "black",
            "flake8",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "netsim=netsim.server:main",
        ],
    },
)

"""
Setup file for peakresolve package.

This allows the package to be installed with:
    pip install .
    pip install -e .  (for development mode)
    pip install .[dev]  (with test and lint tools)
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="peakresolve",
    version="0.1.0",

    # Package info
    description="Peak detection, overlap resolution and fitting for one-dimensional intensity traces",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # License
    license="MIT",

    # Find all packages automatically
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),

    # Python version requirement
    python_requires=">=3.8",

    # Core dependencies (required for the library to work)
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.7.0",
        "pandas>=1.2.0",
        "matplotlib>=3.3.0",
    ],

    # Optional dependencies
    # Install with: pip install .[dev]
    extras_require={
        "dev": [
            "pytest>=6.0.0",
            "pytest-cov>=2.0.0",
            "black>=20.0.0",
            "flake8>=3.8.0",
        ],
    },

    # Classifiers help users find your project
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Chemistry",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],

    # Keywords for searching
    keywords="peak-fitting chromatography ion-mobility mass-spectrometry deconvolution",
)

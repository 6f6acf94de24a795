"""
Package setup configuration for QMMMKit.
"""

from setuptools import setup, find_packages

# Read README file
with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="QMMMKit",
    version="0.1.0",
    author="QMMMKit Development Team",
    author_email="",
    description="QM/MM driver for geometry optimization, climbing-image NEB, path-integral Monte Carlo and molecular dynamics",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/username/QMMMKit",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Chemistry",
        "Topic :: Scientific/Engineering :: Physics",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.20.0",
        "scipy>=1.7.0",
        "ase>=3.22.0",
        "pydantic>=2.0.0",
        "typer>=0.6.0",
        "pyyaml>=5.4.0",
        "networkx>=2.6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0.0",
            "pytest-cov>=2.10.0",
            "black>=21.0.0",
            "flake8>=3.8.0",
            "mypy>=0.800",
        ],
    },
    entry_points={
        "console_scripts": [
            "qmmmkit=QMMMKit.cli:app",
        ],
    },
)

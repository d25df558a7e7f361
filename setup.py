#!/usr/bin/env python3
"""
Setup script for metafunc_tools package.
"""

from setuptools import setup, find_packages

try:
    with open("README.md", "r") as fh:
        long_description = fh.read()
except FileNotFoundError:
    long_description = "metafunc_tools - differential abundance of metagenomic functional genes"

setup(
    name="metafunc_tools",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        # Core data processing
        "pandas>=1.3.0",
        "numpy>=1.20.0",
        "scipy>=1.10.0",
        
        # Statistical libraries
        "statsmodels>=0.13.0",
        "inmoose>=0.7.0",
        
        # Visualization
        "matplotlib>=3.4.0",
        
        # Utilities
        "tqdm>=4.62.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        'console_scripts': [
            'metafunc-tools=metafunc_tools.cli.main_cli:main',
            'metafunc-normalize=metafunc_tools.cli.normalize_cli:main',
            'metafunc-diff=metafunc_tools.cli.diff_cli:main',
            'metafunc-enrich=metafunc_tools.cli.enrich_cli:main',
        ],
    },
    description="Differential abundance and gene-set enrichment for shotgun metagenomic functional-gene tables",
    long_description=long_description,
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Intended Audience :: Science/Research",
    ],
    python_requires=">=3.8",
)

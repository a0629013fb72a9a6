#!/usr/bin/env python3
"""
Setup script for Form 34 Results Capture.

Install with:
    pip install -e .

With development tools:
    pip install -e ".[dev]"
"""

from setuptools import setup
from pathlib import Path

# Read version
version_file = Path(__file__).parent / "version.py"
version_dict = {}
exec(version_file.read_text(), version_dict)
__version__ = version_dict.get("__version__", "1.0.0")

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="form34-results-capture",
    version=__version__,
    author="Form 34 Results Capture Contributors",
    author_email="",
    description="Capture, OCR-fill and submit Form 34A/34B presidential election results",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    py_modules=[
        "name_normalizer",
        "result_types",
        "draft_model",
        "draft_validation",
        "draft_store",
        "ocr_client",
        "ocr_reconciler",
        "results_api",
        "submission",
        "config",
        "logging_config",
        "cli",
        "version",
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Sociology",
    ],
    python_requires=">=3.11",
    install_requires=[
        "requests>=2.28.0",
        "tenacity>=8.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "pyright>=0.1.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "results-capture=cli:main",
        ],
    },
    zip_safe=False,
    keywords="election results form34a form34b ocr tally",
)

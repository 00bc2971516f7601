#!/usr/bin/env python3
"""
Setup configuration for Report Courier.
"""
from pathlib import Path

from setuptools import find_packages, setup

# Read README for long description
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="report-courier",
    version="1.0.0",
    description="Watches a drop directory and ships completed XML reports to a collector",
    long_description=long_description,
    long_description_content_type="text/markdown",
    # Package discovery
    packages=find_packages(where=".", include=["courier", "courier.*"]),
    package_dir={"": "."},
    # Python version requirement
    python_requires=">=3.10",
    # Runtime dependencies
    install_requires=[
        "watchdog>=3.0.0",
        "boto3>=1.28.0",
        "pyyaml>=6.0",
        "requests>=2.31.0",
        "fastapi>=0.100.0",
        "pydantic>=2.0",
        "uvicorn>=0.23.0",
    ],
    # Optional dependencies
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "httpx>=0.24.0",
        ],
        "dev": [
            "black>=23.0.0",
            "flake8>=6.0.0",
            "pylint>=2.17.0",
            "isort>=5.12.0",
            "pre-commit>=3.3.0",
        ],
    },
    # Entry points
    entry_points={
        "console_scripts": [
            "report-courier=courier.main:main",
        ],
    },
    # Classifiers
    classifiers=[
        "Development Status :: 5 - Production/Stable",
        "Intended Audience :: System Administrators",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Operating System :: POSIX :: Linux",
        "Topic :: System :: Monitoring",
    ],
    include_package_data=True,
)

"""
Setup script for cql-clinic.

CQL Code Clinic is the exercise engine behind an interactive course on
Clinical Quality Language. It serves three roles:

1. Exercise Catalogue - Validated, cached collection with search and filters
2. Learning Path - Prerequisite-gated recommendations for each learner
3. Content Pipeline - Schema, quality and dependency checks for authors

The 'cql-clinic' command is the entry point.
"""

from setuptools import find_packages, setup

setup(
    name="cql-clinic",
    version="1.0.0",
    description="Exercise engine for the CQL Code Clinic learning platform",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="CQL Code Clinic",
    packages=find_packages(include=["cql_clinic", "cql_clinic.*"]),
    package_data={"cql_clinic.content.exercises": ["*.json"]},
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "cql-clinic=cql_clinic.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
        "Topic :: Education :: Computer Aided Instruction (CAI)",
    ],
    keywords="cql clinical-quality-language exercises learning education",
)

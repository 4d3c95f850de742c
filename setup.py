"""
Setup script for study-planner.

Study Planner is a per-user study planning backend. It tracks goals
(exams, projects, commitments), the topics they break into and the
study sessions logged against them, and serves:

1. Review Queue - Spaced repetition + memory decay ranking of topics
2. Daily Plans - One plan per day, remote-generated or built from the queue
3. HTTP API and CLI - Same operations over REST and from the terminal

The 'planner' command is the terminal entry point; 'python main.py'
runs the API.
"""

from setuptools import find_packages, setup

setup(
    name="study-planner",
    version="0.1.0",
    description="Per-user study planning backend with spaced repetition and daily plans",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "planner=src.cli.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Environment :: Console",
        "Environment :: Web Environment",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="study planning spaced-repetition api cli education",
)

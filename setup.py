"""Setup file for development installation."""

from setuptools import setup, find_namespace_packages

setup(
    name="chat-history",
    version="0.1.0",
    packages=find_namespace_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.9",
    install_requires=[
        "aiosqlite>=0.19",
        "prometheus-client>=0.17",
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "structlog>=23.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.21",
        ],
    },
)

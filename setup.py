"""
Setup script for the investor records platform backend.
"""
from setuptools import setup, find_packages

setup(
    name="investor-records-platform",
    version="0.1.0",
    description="Investor Records Platform Backend",
    packages=find_packages(exclude=["tests", "tests.*"]),
    py_modules=["main"],
    python_requires=">=3.8",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy",
        "pydantic[email]",
        "pydantic-settings",
        "structlog",
        "tenacity",
        "PyJWT",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-mock",
            "pytest-asyncio",
            "httpx",
        ],
    },
)

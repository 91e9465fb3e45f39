"""Setup script for fitbridge CLI tool."""

from setuptools import setup

setup(
    name="fitbridge",
    version="0.1.0",
    description="fitbridge CLI - Fitness provider connections and health data sync",
    py_modules=["fitbridge"],
    packages=["fitbridge_sync", "fitbridge_sync.adapters", "server"],
    package_dir={"fitbridge_sync": "libs/py-device-sync/fitbridge_sync"},
    install_requires=[
        "typer>=0.9.0",
        "rich>=13.0.0",
        "httpx>=0.27.0",
        "python-dotenv>=1.0.0",
        "pyngrok>=7.0.0",
        # Dependencies from py-device-sync
        "pydantic>=2.0.0",
        "boto3>=1.34.0",
        "cryptography>=42.0.0",
        "python-dateutil>=2.8.0",
        # OAuth callback listener and dev registry
        "fastapi>=0.110.0",
        "uvicorn>=0.29.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "moto[dynamodb,kms]>=5.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "fitbridge=fitbridge:app",
        ],
    },
    python_requires=">=3.11",
)

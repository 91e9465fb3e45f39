"""Setup configuration for fitbridge-sync."""

from setuptools import setup, find_packages

setup(
    name="fitbridge-sync",
    version="0.1.0",
    description="OAuth connections, activity sync and daily energy balance for fitness providers",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.11",
    install_requires=[
        "httpx>=0.27.0",
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "python-dateutil>=2.8.0",
        "boto3>=1.34.0",
        "cryptography>=42.0.0",
        "fastapi>=0.110.0",
        "uvicorn>=0.29.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
            "moto[dynamodb,kms]>=5.0.0",  # For mocking AWS services
        ],
    },
    license="MIT",
)

"""
LoCall Dashboard API

Multi-tenant backend for the LoCall dashboard: compliance and GDPR tooling,
audit logging, user management, realtime notifications, integrations and
webform analytics.
"""

from setuptools import setup, find_packages

setup(
    name="locall-dashboard-api",
    version="1.0.0",
    description="LoCall Dashboard API",
    author="LoCall",
    packages=find_packages(include=["locall", "locall.*"]),
    python_requires=">=3.11",
    install_requires=[
        # Web framework
        "fastapi>=0.104.0",
        "uvicorn[standard]>=0.24.0",
        "pydantic[email]>=2.5.0",
        "pydantic-settings>=2.1.0",

        # PostgreSQL support
        "sqlalchemy[asyncio]>=2.0.23",
        "psycopg2-binary>=2.9.9",
        "asyncpg>=0.29.0",

        # Database migrations
        "alembic>=1.13.0",

        # Security
        "python-jose[cryptography]>=3.3.0",
        "bcrypt>=4.1.0",

        # Realtime pub/sub
        "redis>=5.0.1",

        # Outbound provider APIs
        "httpx>=0.25.0",

        # Monitoring and observability
        "sentry-sdk[fastapi]>=1.39.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "aiosqlite>=0.19.0",
            "black>=23.10.0",
            "flake8>=6.1.0",
            "mypy>=1.7.0",
        ],
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "aiosqlite>=0.19.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3.11",
        "License :: Other/Proprietary License",
    ],
)

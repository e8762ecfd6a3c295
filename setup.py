"""Setup script for library-inventory package following Cosmic Python pattern."""

from setuptools import setup, find_namespace_packages

setup(
    name="library-inventory",
    version="1.0.0",
    description="Library book inventory with event-driven wishlist notifications",
    author="Library Platform Team",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["inventory*", "notifications*"]),
    py_modules=["config"],
    python_requires=">=3.11",
    install_requires=[
        "fastapi",
        "uvicorn[standard]",
        "pydantic>=2",
        "sqlalchemy>=2.0,<2.1",
        "psycopg2-binary",
        "redis>=4.2",
        "tenacity",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-cov",
            "httpx",
            "fakeredis>=2.10",
        ],
        "dev": [
            "black",
            "flake8",
            "mypy",
            "pre-commit",
        ],
    },
    entry_points={
        "console_scripts": [
            "books-api=inventory.entrypoints.books_api:main",
            "wishlist-notification-consumer=notifications.entrypoints.redis_eventconsumer:main",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3.11",
    ],
)

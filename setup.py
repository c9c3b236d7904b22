#!/usr/bin/env python

from setuptools import find_namespace_packages, setup

setup(
    name="paintbar",
    version="0.3.0",
    description="Project and image storage API for Paintbar",
    packages=find_namespace_packages(include=["paintbar", "paintbar.*"]),
    include_package_data=True,
    zip_safe=False,
    python_requires=">=3.11",
    keywords=["API", "storage", "images"],
    classifiers=[
        "License :: OSI Approved :: MIT License",
        "Topic :: Internet :: WWW/HTTP :: HTTP Servers",
    ],
    install_requires=[
        "fastapi[all]",
        "elasticsearch[async]~=8.6",
        "python-dotenv",
        "authlib",
        "pydantic>=2",
        "pydantic-settings",
        "class-doc",
        "aiobotocore",
        "types-aiobotocore-s3",
        "async-lru",
        "httpx",
        "uvicorn",
    ],
    extras_require={
        "dev": [
            "pytest",
            "anyio",
            "mypy",
            "flake8",
            "pre-commit",
        ]
    },
    entry_points={"console_scripts": ["paintbar = paintbar.__main__:main"]},
)

"""Setup configuration for imagerouter."""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="imagerouter",
    version="0.1.0",
    description="Capability-based routing of image generation requests across AI providers",
    long_description=long_description,
    long_description_content_type="text/markdown",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    package_data={"imagerouter": ["assets/*.json"]},
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    entry_points={
        "console_scripts": [
            "imagerouter=imagerouter.cli:main",
        ]
    },
    install_requires=[
        # Standard library only: HTTP via urllib, logging via `logging`.
    ],
    extras_require={
        "test": ["pytest"],
    },
)

from setuptools import setup, find_packages

setup(
    name="ferris",
    version="0.1.0",
    description="rust-analyzer session management: workspace root resolution, lifecycle and edit translation",
    packages=find_packages(include=["ferris", "ferris.*"]),
    python_requires=">=3.11",
    install_requires=[
        "click>=8.0",
        "pydantic>=2.0",
        "tomli>=2.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "ferris=ferris.cli:cli",
        ],
    },
)

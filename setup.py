"""Setup script for pyspingap."""
from setuptools import setup, find_packages

setup(
    name="pyspingap",
    version="0.3.0",
    packages=find_packages(include=["spingap", "spingap.*"]),
    install_requires=["torch>=2.0.0"],
    extras_require={"test": ["pytest>=7.0"]},
    python_requires=">=3.9",
)

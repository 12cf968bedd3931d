from setuptools import setup, find_packages

setup(
    name="bnb_trace",
    version="0.1.0",
    description="Fully traced branch-and-bound coin selection search with trace replay",
    author="Your Name",
    author_email="your.email@example.com",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        # Runtime dependencies
        "numpy",
        "pandas",
        "networkx",
        "orjson",
    ],
    extras_require={
        # Developer extras
        "dev": [
            "pytest",
            "black",
            "mypy",
        ],
    },
    entry_points={
        "console_scripts": [
            "bnb-trace=bnb_trace.main:main",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],
)

from setuptools import setup, find_packages


setup(
    name="tailarc",
    version="0.1",
    packages=find_packages(include=["tailarc", "tailarc.*"]),
    description="An append-friendly archive container with a relocatable trailing metadata block and optional run-length encoding.",
    python_requires=">=3.8",
    install_requires=[],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": [
            "tailarc=tailarc.cli:main",
        ]
    },
)

from setuptools import setup, find_packages


setup(
    name="sit",
    version="0.1",
    packages=find_packages(include=["sit", "sit.*"]),
    description="Create StuffIt 1.5.1-compatible archives from files and folders, keeping resource forks and Finder info.",
    author="vercingetorx",
    install_requires=[],
    entry_points={
        "console_scripts": [
            "sit=sit.cli:main",
        ]
    },
)

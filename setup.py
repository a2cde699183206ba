"""
Setup file.
"""

import os

from setuptools import find_packages, setup

URL = "https://github.com/zackees/zephyr-tools"
KEYWORDS = "zephyr rtos sdk west toolchain firmware embedded provisioning"
HERE = os.path.dirname(os.path.abspath(__file__))

with open(os.path.join(HERE, "src", "zephyr_tools", "__init__.py"), encoding="utf-8") as f:
    VERSION = next(
        line.split("=")[1].strip().strip('"')
        for line in f
        if line.startswith("__version__")
    )


if __name__ == "__main__":
    setup(
        name="zephyr-tools",
        version=VERSION,
        description="Zephyr SDK provisioning and west build front end",
        maintainer="Zachary Vorhies",
        keywords=KEYWORDS,
        url=URL,
        package_dir={"": "src"},
        packages=find_packages("src"),
        python_requires=">=3.9",
        install_requires=[
            "requests>=2.31.0",
            "tqdm>=4.66.0",
        ],
        extras_require={
            "test": [
                "pytest>=7.0.0",
            ],
        },
        entry_points={
            "console_scripts": [
                "zephyr-tools=zephyr_tools.cli:main",
            ],
        },
        include_package_data=True)

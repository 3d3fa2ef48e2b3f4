# setup.py

import os
from setuptools import setup, find_packages

# Load version from version.py
version = {}
with open(os.path.join("fastqbam", "version.py")) as f:
    exec(f.read(), version)

# ===========================
# External tools
# ===========================
# fastqbam drives minimap2 and samtools as external processes. Both must be
# installed and on PATH (or configured in config.json under "tools"):
#
#     conda install -c bioconda minimap2 samtools

setup(
    name="fastqbam",
    version=version["__version__"],
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "pandas>=2.2.0",
        "setuptools>=72.2.0",
        "pysam>=0.22.1",
    ],
    entry_points={
        "console_scripts": [
            "fastqbam=fastqbam.cli:main",
        ],
    },
    author="Gavin Mason",
    author_email="gavin@rawcsav.com",
    description="fastqbam: FASTQ to merged BAM processing pipeline for barcode directories",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX",
    ],
    python_requires=">=3.9",
    extras_require={
        "dev": [
            "pytest",
            "black",
            "flake8",
        ],
    },
    package_data={
        "fastqbam": [
            "config.json",
        ],
    },
)

#!/usr/bin/env python3
"""
Setup script for LAN Device Manager
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="lan-device-manager",
    version="1.0.0",
    author="Network Tools Team",
    description="LAN Device Manager: discovery, liveness and ARP-based cut-off",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/example/lan-device-manager",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: System Administrators",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: System :: Networking",
        "Topic :: System :: Networking :: Monitoring",
    ],
    python_requires=">=3.8",
    install_requires=[
        "scapy>=2.5.0",
        "netifaces>=0.11.0",
        "pyyaml>=6.0.0",
        "colorama>=0.4.6",
        "tqdm>=4.65.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "flake8>=6.0.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "lan-manager=orchestration.manager:main",
        ],
    },
)

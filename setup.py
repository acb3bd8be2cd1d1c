# setup.py
from setuptools import setup, find_packages

setup(
    name="optirollup",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "cryptography>=41.0",
        "web3>=7.0",
        "eth-account>=0.13",
        "eth-keys>=0.5",
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "prometheus-client>=0.17",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
            "pytest-cov>=4.1",
            "pytest-mock>=3.10",
            "black>=23.0",
            "isort>=5.12",
            "flake8>=6.0",
            "mypy>=1.0"
        ],
    },
    entry_points={
        "console_scripts": [
            "optirollup=optirollup.cli.cli:main",
        ],
    },
    description="Optimistic rollup sequencer with batch disputes and a settlement bridge",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="crypto-monitor",
    version="0.1.0",
    author="crypto-monitor Contributors",
    description="Real-time transaction monitor for watched blockchain addresses",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["cryptomonitor", "cryptomonitor.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.10",
    install_requires=[
        "aiohttp>=3.10.10",
        "apscheduler>=3.10.4,<4",
        "structlog>=24.4.0",
        "pydantic>=2.9.2",
        "pydantic-settings>=2.6.1",
        "discord-webhook[async]>=1.3.1",
        "python-dotenv>=1.0.1",
        "click>=8.1.8",
        "rich>=13.9.4",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "crypto-monitor=cryptomonitor.cli:main",
        ],
    },
)

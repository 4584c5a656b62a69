"""Setup configuration for philgeps-crawler package."""
from setuptools import setup, find_packages

setup(
    name="philgeps-crawler",
    version="1.0.0",
    description="PhilGEPS 입찰 공고 크롤러 - postback 페이지네이션 배치 수집 및 저장",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    install_requires=[
        "playwright>=1.40.0",
        "pydantic>=2.0",
        "aiohttp>=3.9.0",
        "apscheduler>=3.10.0,<4",
        "click>=8.1.0",
        "rich>=13.0.0",
        "pyyaml>=6.0",
        "python-dotenv>=1.0.0",
        "prometheus-client>=0.17.0",
        "beautifulsoup4>=4.12.0",
        "lxml>=4.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-asyncio>=0.23.0",
            "pytest-cov>=4.1.0",
        ]
    },
    entry_points={
        "console_scripts": [
            "philgeps-crawler=philgeps_crawler.main:main",
        ]
    },
)

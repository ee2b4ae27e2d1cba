"""Setup script for the bank statement reconciliation tool."""
from setuptools import setup, find_packages

setup(
    name="bank-statement-recon",
    version="1.0.0",
    description="OFX bank statement parser and receivable/payable reconciliation",
    author="Your Name",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.9",
    install_requires=[
        "requests>=2.31.0",
        "pandas>=2.0.0",
        "sqlalchemy>=2.0.0",
        "openpyxl>=3.1.0",
        "jinja2>=3.1.0",
        "click>=8.1.0",
        "rich>=13.0.0",
        "python-dotenv>=1.0.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "recon=statement_recon.cli:main",
        ],
    },
)

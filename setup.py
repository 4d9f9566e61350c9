#!/usr/bin/env python3
"""
Setup script for mailtrust.

Install with `pip install .` or `pip install -e '.[dev]'` for development.
"""

import sys

if sys.version_info < (3, 11):
    sys.exit("Error: mailtrust requires Python 3.11 or higher.")

try:
    from setuptools import find_packages, setup
except ImportError:
    sys.exit("Error: setuptools is required. Install it with: pip install setuptools")

import re
from pathlib import Path

# Read version from __version__.py for consistency
try:
    version_file = Path(__file__).parent / "src" / "mailtrust" / "__version__.py"
    version_content = version_file.read_text(encoding="utf-8")
    version_match = re.search(r'^__version__\s*=\s*["\']([^"\']+)["\']', version_content, re.M)
    version = version_match.group(1) if version_match else "0.1.0"
except OSError:
    version = "0.1.0"

# Read long description from README if available
readme_path = Path(__file__).parent / "README.md"
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")
    long_description_content_type = "text/markdown"
else:
    long_description = "DKIM key lifecycle, DNS record publishing and domain health checks"
    long_description_content_type = "text/plain"

# Core dependencies
install_requires = [
    "pydantic>=2.5.0",
    "pydantic-settings>=2.7.0",
    "dnspython>=2.4.0",
    "cryptography>=41.0.0",
    "requests>=2.31.0",
    "boto3>=1.28.0",
]

# Development dependencies
extras_require = {
    "dev": [
        "pytest>=7.4.0",
        "pytest-asyncio>=0.21.0",
        "pytest-cov>=4.1.0",
        "black>=23.0.0",
        "flake8>=6.1.0",
        "mypy>=1.7.0",
    ],
}

setup(
    name="mailtrust",
    version=version,
    description="DKIM key lifecycle, DNS record publishing and domain health checks",
    long_description=long_description,
    long_description_content_type=long_description_content_type,
    author="mailtrust contributors",
    license="MIT",
    python_requires=">=3.11",
    packages=find_packages("src"),
    package_dir={"": "src"},
    install_requires=install_requires,
    extras_require=extras_require,
    entry_points={
        "console_scripts": [
            "mailtrust=mailtrust.cli:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Communications :: Email",
        "Topic :: Internet :: Name Service (DNS)",
    ],
    keywords=["email", "dkim", "dns", "spf", "dmarc", "mta-sts"],
)

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file for the long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text()

setup(
    name="tomes",
    version="0.1.0",
    description="A personal ebook library served as HTML pages and an OPDS catalog",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(include=["tomes", "tomes.*"]),
    entry_points={
        "console_scripts": [
            "tomes=tomes.cli:app"
        ],
    },
    install_requires=[
        "typer>=0.9.0",
        "rich>=13.0.0",
        "lxml>=4.9.0",
        "ebooklib>=0.18",
        "jinja2>=3.0.0",
        "fastapi>=0.100.0",
        "uvicorn>=0.23.0",
        "sqlalchemy>=2.0.0",
        "python-multipart>=0.0.6",  # Form fields of the edit and login pages
        "itsdangerous>=2.0.0",  # Signed session cookie
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "httpx>=0.24.0",  # fastapi.testclient
        ]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "Framework :: FastAPI",
        "Topic :: Internet :: WWW/HTTP :: Dynamic Content",
    ],
    python_requires='>=3.9',
    include_package_data=True,
    package_data={
        "tomes": ["templates/*.html"],
    },
)

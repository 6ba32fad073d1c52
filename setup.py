from pathlib import Path
from setuptools import setup, find_packages

ROOT = Path(__file__).parent
README = (ROOT / "README.md").read_text(encoding="utf-8")  # markdown is more common

setup(
    name="campus_market",
    version="0.1.0",
    description="Realtime campus second-hand marketplace on Firestore and Firebase Authentication",
    long_description=README,
    long_description_content_type="text/markdown",
    license="MIT",
    packages=find_packages(exclude=("tests", "tests.*", "examples")),
    include_package_data=True,           # include py.typed
    package_data={"campus_market": ["py.typed"]},
    python_requires=">=3.8",
    install_requires=[
        "pydantic>=1.5,<3.0.0",
        "google-cloud-firestore>=2.11.0",  # FieldFilter and where(filter=...)
        "google-api-core",
        "httpx>=0.23",
        "packaging",
    ],
    extras_require={
        "test": ["pytest", "pytest-asyncio"],
        "dev": ["black", "ruff", "pytest", "pytest-asyncio"],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3 :: Only",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Framework :: AsyncIO",
        "Typing :: Typed",
    ],
    keywords=[
        "firestore",
        "pydantic",
        "marketplace",
        "asyncio",
        "firebase",
    ],
)

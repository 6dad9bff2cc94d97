# setup.py
from setuptools import setup, find_packages
from pathlib import Path
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding="utf-8")

setup(
    name="doctranscribe",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", include=["doctranscribe", "doctranscribe.*"]),
    author="Phuoc Nguyen",
    description="Turn PDFs and images into text, falling back from embedded text to OCR.",
    long_description=long_description,
    long_description_content_type='text/markdown',
    python_requires=">=3.9",

    install_requires=[
        "PyMuPDF",
        "Pillow",
        "numpy",
        "pytesseract",
        "tqdm",
        "python-slugify",
    ],
    extras_require={
        "easyocr": ["easyocr", "torch"],
        "openai": ["openai"],
        "webui": ["gradio"],
        "test": ["pytest", "pytest-asyncio"],
    },
    entry_points={
        'console_scripts': [
            'doctranscribe=doctranscribe.cli:main',
        ],
    },
)

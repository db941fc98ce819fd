"""
Setup configuration for Remedial Reading Assessor.
"""

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="remedial-reading-assessor",
    version="0.1.0",
    author="Remedial Reading Assessor Team",
    description="Spoken-reading assessment of flashcard sentences with cloud and local speech recognition",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
    ],
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21.0",
        "scipy>=1.7.0",
        "librosa>=0.9.0",
        "Levenshtein>=0.20.0",
        "requests>=2.28.0",
        "sounddevice>=0.4.5",
        "azure-cognitiveservices-speech>=1.30.0",
        "openai-whisper>=20230314",
        "APScheduler>=3.9.0,<4.0",
        "pyttsx3>=2.90",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "hypothesis>=6.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "reading-assessor=reading_assessor.main:main",
        ],
    },
)

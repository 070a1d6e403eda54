#!/usr/bin/env python3
"""
Setup script for RevoltBot - Voice assistant for Revolt Motors
"""
from setuptools import setup, find_packages
import os
import re

# Read the contents of README file
this_directory = os.path.abspath(os.path.dirname(__file__))
with open(os.path.join(this_directory, 'README.md'), encoding='utf-8') as f:
    long_description = f.read()

# Read version from the package or set default
def get_version():
    try:
        with open(os.path.join(this_directory, 'src', 'revoltbot', '__init__.py'), 'r') as f:
            content = f.read()
            version_match = re.search(r'__version__ = "([^"]+)"', content)
            if version_match:
                return version_match.group(1)
    except FileNotFoundError:
        pass
    return "1.0.0"

setup(
    name="revoltbot",
    version=get_version(),
    author="RevoltBot Team",
    description="Voice assistant for Revolt Motors: WebSocket relay to Gemini plus a multilingual voice client",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    package_dir={"": "src"},
    include_package_data=True,
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Multimedia :: Sound/Audio :: Speech",
        "Topic :: Communications :: Chat",
    ],
    keywords="voice-assistant websocket gemini tts speech-recognition indian-languages",
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.21.0",
        "PyYAML>=6.0",
        "requests>=2.25.0",
        "websockets>=13.0",
    ],
    extras_require={
        "voice": [
            "SpeechRecognition>=3.10.0",
            "PyAudio>=0.2.13",
            "pyttsx3>=2.90",
            "sounddevice>=0.4.0",
            "soundfile>=0.10.0",
        ],
        "dev": [
            "pytest>=7.0.0",
            "black>=22.0.0",
            "flake8>=4.0.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "revoltbot=revoltbot.cli:main",
            "revoltbot-server=revoltbot.cli:server_main",
            "revoltbot-client=revoltbot.cli:client_main",
        ],
    },
)

"""Build gamerelay package."""
import setuptools

with open("README.md") as f:
    long_desc = f.read()

setuptools.setup(
    name="gamerelay",
    version="0.1.0",
    description="Real-time game state relay over WebRTC data channels",
    long_description=long_desc,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    python_requires=">=3.9",
    install_requires=[
        "aiortc>=1.5.0",
        "click",
        "cryptography>=39.0.1",
        "pydantic>=2",
        "pyee>=9",
        "tomli; python_version<'3.11'",
        "tomli-w",
        "typing-extensions; python_version<'3.11'",
        "websockets>=13",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio>=0.23",
            "pytest-timeout",
            "uvloop",
        ],
    },
    entry_points={
        "console_scripts": [
            "gamerelay=gamerelay.run:cli",
            "gamerelay-signaling=gamerelay.signaling.run:cli",
        ],
    },
)

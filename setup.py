"""Setup configuration for the Actor Chat System."""

from setuptools import setup, find_packages

setup(
    name="actor-chat",
    version="0.1.0",
    description="A chat room served by a message-passing server process",
    author="DS-G1-SMS Team",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.10",
    install_requires=[
        "websockets>=12.0",
        "textual>=0.47.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "chat-node=node.main:main",
            "chat-client=client.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
)

#!/usr/bin/env python3
"""
Setup script for relaychat, a realtime chat client with a demo-mode fallback
"""

from setuptools import setup, find_packages

setup(
    name="relaychat",
    version="0.1.0",
    description="Realtime WebSocket chat client with a local demo-mode fallback",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "websockets==15.0",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "aioconsole==0.8.1",
        "PyYAML==6.0.2",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        'console_scripts': [
            'relaychat=client.chat_cli:main',
        ],
    },
)

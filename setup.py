from setuptools import setup, find_packages


setup(
    name="ans104",
    version="0.1",
    packages=find_packages(include=["ans104", "ans104.*"]),
    description="Streaming decoder for ANS-104 bundled data transactions, nested bundles included.",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "httpx>=0.27.0",
    ],
    extras_require={
        "test": ["pytest>=8.0"],
    },
    entry_points={
        "console_scripts": [
            "ans104=ans104.cli:main",
        ]
    },
)

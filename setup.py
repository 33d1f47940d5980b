from setuptools import setup, find_packages

setup(
    name="ppg_heartrate",
    version="0.1.0",
    description="Heart-rate estimation engine for batched fingertip PPG samples",
    packages=find_packages(exclude=["tests"]),
    py_modules=["main"],
    python_requires=">=3.10",
    install_requires=[
        "numpy>=1.24",
        "scipy>=1.10",
    ],
    extras_require={
        "dev": ["pytest>=7.4"],
    },
    entry_points={
        "console_scripts": [
            "ppg-heartrate=main:cli",
        ]
    },
)

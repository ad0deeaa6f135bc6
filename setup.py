from setuptools import setup, find_packages


setup(
    name="vellum",
    version="0.1",
    packages=find_packages(include=["vellum", "vellum.*"]),
    description="Protect files against bit rot, compress them and time-lock them until a chosen instant.",
    python_requires=">=3.9",
    install_requires=[
        "pycryptodomex>=3.23.0",
        "argon2-cffi>=23.1.0",
    ],
    extras_require={
        "zstd": ["zstandard>=0.22.0"],
    },
    entry_points={
        "console_scripts": [
            "vellum=vellum.cli:main",
        ]
    },
)

"""Setup script for the nnopt package."""
from setuptools import setup, find_packages
from pathlib import Path

# Read the README file
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text(encoding="utf-8") if readme_file.exists() else ""

setup(
    name="nnopt",
    version="0.1.0",
    description="Parameter-update core for neural-network training: SGD, Momentum, Adagrad, Adadelta, RMSProp and Adam "
                "over dense and sparse (lookup) parameters, with gradient clipping and lazy weight decay",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
    ],
    python_requires=">=3.8",
    install_requires=[
        "numpy>=1.20.0",
        "tqdm>=4.60.0",
        "numba>=0.56.0",
    ],
    extras_require={
        "cuda11": ["cupy-cuda11x>=10.0.0"],
        "cuda12": ["cupy-cuda12x>=12.0.0"],
        "cuda13": ["cupy-cuda13x>=13.0.0"],
        "dev": [
            "pytest>=6.0.0",
            "black>=21.0.0",
            "flake8>=3.8.0",
        ],
    },
    keywords="deep-learning optimizer sgd adam adagrad rmsprop adadelta embeddings numpy cuda",
    zip_safe=False,
)

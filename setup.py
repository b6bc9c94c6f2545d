from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="causal-mr-toolkit",
    version="0.1.0",
    author="Lior Shachaf",
    author_email="shachaflior@jhu.edu",
    description="Two-sample Mendelian randomization from GWAS summary statistics",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/shachafl/causal-genomics-toolkit",
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bioinformatics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
    ],
    python_requires=">=3.10, <3.14",
    install_requires=[
        "numpy>=1.21.0",
        "pandas>=1.3.0",
        "scipy>=1.9.0",
        "scikit-learn>=1.0.0",
        "statsmodels>=0.13.0",
        "biopython>=1.80",
        "tqdm>=4.62.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.2.0",
            "pytest-cov>=2.12.0",
            "black>=21.6b0",
            "flake8>=3.9.0",
            "sphinx>=4.1.0",
        ],
    },
)

from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="amber-quickstart",
    version="0.1.0",
    author="Your Name",
    author_email="your.email@example.com",
    description="Amber MD quick-start workflow and CUDA rebuild tools",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/amber-quickstart",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    python_requires=">=3.8",
    install_requires=[
        "click>=8.0.0",
        "rich>=10.0.0",
        "pyyaml>=5.4",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "amberqs=amberqs.cli.main:cli",
            "amber-quickstart=amberqs.cli.main:quick_start",
            "amber-rebuild-cuda=amberqs.cli.main:rebuild_with_cuda",
        ],
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Chemistry",
    ],
)

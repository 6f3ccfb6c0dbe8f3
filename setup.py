import os

from setuptools import find_packages, setup


# Read README for long description
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), "README.md")
    if os.path.exists(readme_path):
        with open(readme_path, "r", encoding="utf-8") as f:
            return f.read()
    return "Curation engine for YOLO detection datasets"


setup(
    name="yolo-dataset-curator",
    version="0.1.0",
    description="Clean, filter and balance YOLO-format detection datasets",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    # Package configuration
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    include_package_data=True,
    package_data={
        "yolo_curator": ["*.yaml", "*.yml"],
    },
    install_requires=[
        "numpy",
        "opencv-python",
        "PyYAML",
        "PySide6",
    ],
    extras_require={
        "test": ["pytest"],
    },
    # Console scripts
    entry_points={
        "console_scripts": [
            "yolo-curator=yolo_curator.app.launcher:main",
            "ydc=yolo_curator.app.launcher:main",
        ],
    },
    # Metadata
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Scientific/Engineering :: Image Recognition",
    ],
    python_requires=">=3.11",
    keywords="yolo, dataset curation, object detection, opencv, k-means",
)

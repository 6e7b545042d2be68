"""Setup configuration for ado_metrics"""

from setuptools import setup, find_namespace_packages

setup(
    name="ado-engineering-metrics",
    version="0.1.0",
    description=(
        "Azure DevOps analytics core: resilient cached API access, work item "
        "timelines and per-person flow, authoring and review metrics."
    ),
    author="ADO Engineering Metrics Contributors",
    author_email="",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_namespace_packages(where="src", include=["ado_metrics*"]),
    install_requires=[
        "requests>=2.28.0",
        "pydantic>=2.0",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
            "mypy>=0.950",
        ],
    },
    entry_points={
        "console_scripts": [
            "ado-metrics=ado_metrics.main:main",
        ],
    },
)

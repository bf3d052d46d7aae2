from setuptools import setup, find_packages

setup(
    name="knowledge-core",
    version="0.1.0",
    packages=find_packages(include=["knowledge_core", "knowledge_core.*"]),
    install_requires=[
        "requests",
        "pyyaml",
        # Graph analysis
        "networkx>=3.0",
        # Vector math / blob storage
        "numpy>=1.24",
        "tqdm>=4.60",
    ],
    extras_require={
        # Embedding provider SDK (install when generating embeddings)
        "semantic": [
            "openai>=1.0",
        ],
        "test": [
            "pytest>=7.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "kgcore=knowledge_core.cli:main",
        ],
    },
    description="Semantic knowledge-graph engine: embedding search, graph analysis and link recommendation.",
)

from setuptools import setup, find_packages

setup(
    name="graphflow",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages("src", exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2.5",
        "pydantic-settings>=2.0",
        "SQLAlchemy>=2.0",
        "redis>=5.0.1",
    ],
    extras_require={
        "postgres": ["psycopg[binary]>=3.1"],
        "test": [
            "pytest",
            "pytest-asyncio>=0.23",
            "fakeredis>=2.20",
        ],
    },
    python_requires=">=3.9",
    description="typed graph execution engine for stateful, checkpointed workflows",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)

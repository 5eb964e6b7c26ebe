from setuptools import setup, find_packages

setup(
    name="inkgraph",
    version="0.1.0",
    package_dir={"": "src"},
    packages=find_packages(where="src", exclude=["tests", "tests.*"]),
    install_requires=[
        "pydantic>=2",
        "mirascope[openai]>=1,<2",
        "openai",
        "tenacity",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
    python_requires=">=3.9",
    author="kenneth cavanagh",
    author_email="ken@agency42.com",
    description="orchestration engine for multi-agent content pipelines",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
)

from setuptools import setup, find_packages

setup(
    name="flooring-crm",
    version="1.0.0",
    packages=find_packages(include=["flooring_crm", "flooring_crm.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pydantic-settings>=2.0",
        "httpx>=0.24",
        "requests>=2.31",
        "python-dotenv>=1.0",
        "google-auth>=2.0",
        "google-auth-oauthlib>=1.0",
        "google-auth-httplib2>=0.1",
        "google-api-python-client>=2.0",
        "requests-oauthlib>=1.3.0",
        "twilio>=8.10.0",
        "openai>=1.0",
        "supabase>=2.0",
        "numpy>=1.24",
        "fastapi>=0.100",
        "uvicorn>=0.20",
        "python-multipart>=0.0.6",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    python_requires=">=3.9",
)

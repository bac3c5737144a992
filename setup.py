from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="bassac",
    version="0.1.0",
    author="Bassac Contributors",
    author_email="dev@bassac.example.com",
    description="A modular Flask REST API for news publishing: articles, editorial workflow, subscriptions and ads",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/bassac/bassac",
    packages=find_packages(include=["bassac", "bassac.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Internet :: WWW/HTTP :: Dynamic Content :: News/Diary",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Framework :: Flask",
    ],
    python_requires=">=3.9",
    install_requires=[
        "Flask>=3.0.0",
        "Flask-CORS>=4.0.0",
        "python-dotenv>=1.0.0",
        "Authlib>=1.2.0",
        "cryptography>=41.0.0",
        "PyJWT>=2.8.0",
        "python-slugify>=8.0.0",
        "redis>=5.0.0",
        "elasticsearch>=8.0.0,<9",
        "stripe>=7.0.0",
        "resend>=0.7.0",
        "boto3>=1.28.0",
        "Pillow>=10.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-flask>=1.2",
            "black>=22.0",
            "flake8>=5.0",
        ],
    },
    zip_safe=False,
)

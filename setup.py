from setuptools import setup, find_packages

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setup(
    name="directory-services-hub",
    version="0.1.0",
    author="LSA Technology Services",
    author_email="lsats@umich.edu",
    description="One asynchronous interface over Azure AD, OpenLDAP and Apple Open Directory",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/yourusername/directory-services-hub",
    packages=find_packages(include=["directory", "directory.*"]),
    include_package_data=True,
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Development Status :: 3 - Alpha",
        "Intended Audience :: System Administrators",
        "Topic :: System :: Systems Administration",
        "Topic :: System :: Systems Administration :: Authentication/Directory :: LDAP",
    ],
    python_requires=">=3.8",
    install_requires=[
        "requests>=2.25.0",
        "python-dotenv>=0.15.0",
        "ldap3>=2.9",
        "keyring>=23.0.0",
        "msal>=1.29.0",
        "prometheus_client>=0.17.0",
    ],
    extras_require={
        "test": [
            "pytest>=7.0.0",
        ],
    },
)

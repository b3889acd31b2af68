import setuptools

with open("README.md", "r", encoding="utf-8") as fh:
    long_description = fh.read()

setuptools.setup(
    author="Aptos Labs",
    author_email="opensource@aptoslabs.com",
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: Apache Software License",
        "Operating System :: OS Independent",
    ],
    extras_require={"test": ["pytest"]},
    include_package_data=True,
    install_requires=["ecdsa", "httpx", "pynacl", "PyJWT", "typing_extensions"],
    long_description=long_description,
    long_description_content_type="text/markdown",
    name="aptos-txn",
    packages=["aptos_txn"],
    python_requires=">=3.9",
    url="https://github.com/aptos-labs/aptos-core",
    version="0.1.0",
)

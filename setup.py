from setuptools import setup, find_packages

setup(
    name="hls_grabber",
    version="1.0.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=["httpx[http2]>=0.26", "certifi", "pycryptodome"],
    extras_require={
        "test": ["pytest>=7.0.0"],
    },
    entry_points={
        'console_scripts': [
            'hls-grabber=hls_grabber.__main__:main',
        ],
    },
    description="Downloads HLS (m3u8) streams with parallel segment downloads and AES-128 decryption",
    long_description=open('README.md').read(),
    long_description_content_type='text/markdown',
    license="LGPLv3",
    classifiers=[
        # Classifiers help users find your project on PyPI
        "License :: OSI Approved :: GNU Lesser General Public License v3 (LGPLv3)",
        "Programming Language :: Python :: 3",
    ],
)

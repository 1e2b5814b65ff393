"""
Setup configuration for the Yandex Cloud Next.js runtime.

This package provides the ISR cache, the edge-middleware emulator and the
function handlers that serve a Next.js build on Yandex Cloud Functions.
"""

from setuptools import setup, find_packages

setup(
    name='yc-opennext-runtime',
    version='1.0.0',
    description='Next.js runtime for Yandex Cloud Functions with ISR cache and edge middleware emulation',
    author='YC OpenNext Team',
    packages=find_packages(exclude=['tests', 'tests.*', 'lambda', 'lambda.*']),
    classifiers=[
        'Development Status :: 4 - Beta',
        'Intended Audience :: Developers',
        'Topic :: Internet :: WWW/HTTP :: Dynamic Content',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'License :: OSI Approved :: MIT License',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.11',
    install_requires=[
        # Object Storage (S3 API) and YDB Document API (DynamoDB API)
        'boto3>=1.28.85',
        'botocore>=1.31.85',

        # Upstream Next.js server proxy
        'requests>=2.31.0',

        # Image optimization
        'Pillow>=11.2.0',

        # Compatibility matrix
        'PyYAML>=6.0',
        'packaging>=23.0',
    ],
    extras_require={
        'dev': [
            # Testing
            'pytest>=7.4.3',
            'pytest-cov>=4.1.0',
            'pytest-asyncio>=0.21.0',
            'moto[s3,dynamodb]>=5.0.0',

            # Code quality
            'black>=23.11.0',
            'flake8>=6.1.0',
            'mypy>=1.7.1',
        ],
    },
    include_package_data=True,
    package_data={
        'yc_runtime.config': ['*.yml'],
        'yc_runtime.services': ['*.js'],
    },
    zip_safe=False,
)

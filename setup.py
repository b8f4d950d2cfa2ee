#!/usr/bin/env python
import os
import sys

from setuptools import setup, find_packages
from setuptools.command.install import install

VERSION = '0.4.0'

class VerifyVersionCommand(install):
    """Custom command to verify that the git tag matches our version"""
    description = 'verify that the git tag matches our version'

    def run(self):
        tag = os.getenv('CI_TAG', '')
        tag = tag.lstrip('v')

        if tag != VERSION:
            info = f"Git tag: {tag} does not match the version of this app: {VERSION}"
            sys.exit(info)

setup(
    name='obspki',
    version=VERSION,
    description='Certificate lifecycle management for mutual-TLS between internal services.',
    python_requires='>=3.11',
    packages=find_packages(exclude=['*.tests', '*.tests.*']),
    include_package_data=True,
    install_requires=[
        'cryptography>=43.0.1,<47.0.0',
        'pyOpenSSL>=24.3.0,<26.0.0',
        'fastjsonschema>=2.20.0,<2.22.0',
        'PyYAML>=6.0.1,<7.0.0',
        'msgspec>=0.19.0,<0.20.0',
        'regex>=2024.7.24',
    ],
    extras_require={
        'dev': [
            'pytest>=8.0.0,<9.0.0',
            'pytest-cov>=5.0.0',
        ],
    },
    cmdclass={
        'verify': VerifyVersionCommand,
    },
    classifiers=[
        'Programming Language :: Python :: 3.11',
        'Programming Language :: Python :: 3.12',
        'Operating System :: POSIX :: Linux',
    ],
)

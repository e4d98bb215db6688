#!/usr/bin/env python
# coding: utf-8

from setuptools import setup, find_packages


setup(
    name='ipamd',
    version='0.1',
    license='BSD',
    description=
        'CNI IPAM plugin keeping container leases in a replicated redis store',
    packages=find_packages(exclude=['tests', 'tests.*']),
    python_requires='>=3.8',
    install_requires=[
        'redis>=4.0',
        'click>=7.0',
        'gevent>=20.9',
        'netifaces-plus>=0.12',
        'pyyaml>=5.1',
        'clint>=0.5.1',
    ],
    extras_require={
        'test': [
            'pytest>=6.0',
            'mock>=4.0',
            'fakeredis[lua]>=2.10',
        ],
    },
    classifiers=[
        'Development Status :: 2 - Pre-Alpha',
        'Intended Audience :: System Administrators',
        'License :: OSI Approved :: BSD License',
        'Operating System :: POSIX :: Linux',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
    ],
    entry_points="""
[console_scripts]
redis-ipam = ipamlib.cni:run
ipamd = ipamlib.daemon:run
ipamctl = ipamlib.client:run
""",
)

"""
Packaging for invex.
"""

from setuptools import setup, find_packages

setup(
    name="invex",
    version="1.0.0",
    description="Invoice extraction, reconciliation and ledger posting engine",
    packages=find_packages(include=['invex', 'invex.*']),
    package_data={'invex.config': ['default_config.yaml']},
    include_package_data=True,
    python_requires='>=3.9',
    install_requires=[
        'pdfminer.six',
        'pyyaml',
        'sqlalchemy>=2.0',
        'pydantic>=2.0',
        'click',
        'aiohttp'
    ],
    extras_require={
        'test': [
            'pytest'
        ]
    },
    entry_points={
        'console_scripts': [
            'invex=invex.cli:cli'
        ]
    }
)

from setuptools import setup, find_packages

setup(
    name='openprivatecloud',
    version='0.1.0',
    description='Control plane for a self-hosted private cloud',
    packages=find_packages(include=['opc', 'opc.*']),
    python_requires='>=3.9',
    install_requires=[
        'Flask',
        'Flask-RESTful',
        'Flask-SQLAlchemy>=3.0',
        'SQLAlchemy>=2.0',
        'Flask-Migrate',
        'Flask-Bcrypt',
        'Flask-HTTPAuth',
        'Flask-WTF',
        'WTForms',
        'WTForms-Alchemy',
        'python-jose',
        'PyYAML',
        'requests',
        'click',
        'paramiko',
    ],
    extras_require={
        'test': [
            'pytest',
            'responses',
        ],
        'postgresql': [
            'psycopg2-binary',
        ],
    },
)

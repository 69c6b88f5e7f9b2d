from setuptools import setup, find_packages

setup(
    name='imdeploy',
    version='0.1.0',
    packages=find_packages(exclude=['imdeploy.tests', 'imdeploy.tests.*']),
    include_package_data=True,
    install_requires=[
        'typer[all]<0.26',
        'python-dotenv',
        'requests',
        'urllib3',
        'pyyaml',
        'jsonschema',
    ],
    extras_require={
        'test': [
            'pytest',
        ],
    },
    entry_points={
        'console_scripts': [
            'imdeploy=imdeploy.cli:main'
        ]
    },
    description='Deploy, monitor and destroy a k3s cluster on OpenStack with Terraform',
    classifiers=[
        'Programming Language :: Python :: 3',
        'Operating System :: OS Independent',
    ],
    python_requires='>=3.11',
)

# encoding: utf-8
from setuptools import setup


setup(
    name='stockflow',
    version='0.1.0',
    description='Discrete Event Stock and Flow Simulation using SimPy',
    long_description=(
        'Models material flow as a graph of bounded stocks joined by timed '
        'processes, advanced by a discrete event clock.'
    ),
    license='MIT',
    install_requires=['simpy', 'pyvcd', 'PyYAML'],
    extras_require={'test': ['pytest']},
    packages=['stockflow'],
    python_requires='>=3.7',
    classifiers=[
        'Development Status :: 3 - Alpha',
        'Environment :: Console',
        'Intended Audience :: Developers',
        'Intended Audience :: Education',
        'Intended Audience :: Science/Research',
        'License :: OSI Approved :: MIT License',
        'Natural Language :: English',
        'Operating System :: OS Independent',
        'Programming Language :: Python',
        'Programming Language :: Python :: 3',
        'Programming Language :: Python :: Implementation :: CPython',
        'Topic :: Scientific/Engineering',
    ],
)

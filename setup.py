import os, sys, subprocess, unittest
from setuptools import setup

setup(name='bagkit',
      version='0.1',
      description="bagkit: a Python library for creating and validating BagIt bags",
      author="Ray Plante",
      author_email="raymond.plante@nist.gov",
      scripts=[ ],
      packages=['bagkit', 'bagkit.access', 'bagkit.validate'],
      install_requires=['fs', 'requests'],
      test_suite="tests.suite",
      test_runner="unittest:TextTestRunner"
)

"""
A subpackage for accessing a bag's contents.

The :py:mod:`bagit` module provides the Bag class, the interface for
creating and reading bags.  It is built on the models for the individual
tag files:  :py:mod:`manifest` (payload and tag manifests),
:py:mod:`baginfo` (bag-info.txt), and :py:mod:`fetch` (fetch.txt).
"""

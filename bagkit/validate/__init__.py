"""
This module provides classes and functions for validating bags.
"""
from .base import (ALL, ERROR, WARN, CURRENT_VERSION, Validator,
                   ValidationIssue, ValidationResults, BagValidationError)
from .bag import BagValidator, validate

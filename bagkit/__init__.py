"""
a library for creating, reading, and validating bags conforming to the
BagIt packaging format (RFC 8493, as well as the earlier 0.96 and 0.97
drafts).

The main entry points are the Bag class, which wraps a bag rooted in a
directory, and the open_bag() and create_bag() factory functions.  A bag
can be validated either via Bag.validate() or with a BagValidator.
"""
from .constants import CURRENT_VERSION, SUPPORTED_VERSIONS, Version
from .access.bagit import Bag, open_bag, create_bag
from .access.exceptions import BagError, BagFormatError, BagValidationError
from .access.baginfo import BagInfo
from .access.fetch import FetchEntry
from .validate import BagValidator, ValidationResults, ValidationIssue

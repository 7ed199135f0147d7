"""
This module provides base classes and infrastructure for bag validation:
the issues that a validation pass can find and the results object that
collects them.
"""
import logging
from collections import OrderedDict

from ..constants import CURRENT_VERSION
from ..access.exceptions import BagValidationError

LOGGER = logging.getLogger(__name__)

ERROR = 1
WARN  = 2
ALL   = 3
issuetypes = [ ERROR, WARN ]

type_labels = { ERROR: "error", WARN: "warning" }

class ValidationIssue(object):
    """
    an object capturing a problem detected by a validator.  It records the
    file the problem was found in (the file context, which may include a
    line number), a prose description of the problem, and its severity.
    """
    ERROR = issuetypes[0]
    WARN  = issuetypes[1]

    def __init__(self, filename='', message='', issuetype=ERROR,
                 comments=None, version=CURRENT_VERSION):
        if comments and isinstance(comments, str):
            comments = [ comments ]

        self._ver = version
        self._file = filename
        self._msg = message
        self.type = issuetype
        self._comm = []
        if comments:
            self._comm.extend([str(c) for c in comments])

    @property
    def version(self):
        """
        The version of the BagIt specification the bag was validated against
        """
        return self._ver

    @property
    def file(self):
        """
        the file the issue was found in, relative to the bag's root.  For
        line-level problems, this is of the form "FILE:LINE".
        """
        return self._file

    @property
    def message(self):
        """
        the description of the problem
        """
        return self._msg

    @property
    def type(self):
        """
        return the issue type, one of ERROR or WARN
        """
        return self._type
    @type.setter
    def type(self, issuetype):
        if issuetype not in issuetypes:
            raise ValueError("ValidationIssue: not a recognized issue type: "+
                             str(issuetype))
        self._type = issuetype

    def add_comment(self, text):
        """
        attach a comment to this issue providing further details.
        """
        self._comm.append(str(text))

    @property
    def comments(self):
        return tuple(self._comm)

    @property
    def summary(self):
        """
        a one-line description of the issue
        """
        out = "{0}: bagit {1}".format(type_labels[self._type].upper(),
                                      self.version)
        if self.file:
            out += " {0}".format(self.file)
        if self.message:
            out += ": {0}".format(self.message)
        return out

    @property
    def description(self):
        """
        a potentially lengthier description of the issue.  It starts with
        the summary and follows with the attached comments, each on its own
        (indented) line.
        """
        out = self.summary
        if self._comm:
            out += "\n   "
            out += "\n   ".join(self._comm)
        return out

    def __str__(self):
        return self.summary

    def to_tuple(self):
        """
        return a tuple containing the issue data
        """
        return (self.type, self.file, self.message, self.version,
                list(self._comm))

    def to_json_obj(self):
        """
        return an OrderedDict that can be encoded into a JSON object node
        which contains the data in this ValidationIssue.
        """
        return OrderedDict([
            ("type", type_labels[self.type]),
            ("version", str(self.version)),
            ("file", self.file),
            ("message", self.message),
            ("comments", list(self.comments))
        ])

    @classmethod
    def from_tuple(cls, data):
        return ValidationIssue(data[1], data[2], data[0], data[4], data[3])

class ValidationResults(object):
    """
    a container for collecting the errors and warnings found while
    validating a bag.  It starts empty and is only cleared via reset().
    """
    ERROR = ERROR
    WARN  = WARN
    ALL   = ALL

    def __init__(self, target, version=CURRENT_VERSION):
        """
        initialize an empty set of results for a particular bag

        :param str  target:   a name indicating the bag that is the target
                              of these results
        :param str version:   the version of the BagIt specification being
                              validated against; this is set on the
                              ValidationIssue instances created by this
                              object.
        """
        self.target = target
        self.version = version

        self.results = {
            ERROR: [],
            WARN:  []
        }

    @property
    def errors(self):
        """
        the list of errors recorded, in the order they were found
        """
        return list(self.results[ERROR])

    @property
    def warnings(self):
        """
        the list of warnings recorded, in the order they were found
        """
        return list(self.results[WARN])

    def issues(self, issuetype=ALL):
        """
        return a list of the issues of the requested types
        :param int issuetype:  an bit-wise and-ing of the desired issue types
                               (default: ALL)
        """
        out = []
        if ERROR & issuetype:
            out += self.results[ERROR]
        if WARN & issuetype:
            out += self.results[WARN]
        return out

    def count(self, issuetype=ALL):
        """
        return the number of issues of the requested types
        """
        return len(self.issues(issuetype))

    def ok(self):
        """
        return True if no errors were recorded.  Warnings do not affect
        the result.
        """
        return len(self.results[ERROR]) == 0

    def _add_issue(self, filename, message, type):
        issue = ValidationIssue(filename, message, type, version=self.version)
        LOGGER.debug("%s: %s", self.target, issue.summary)
        self.results[type].append(issue)
        return issue

    def add_error(self, filename, message):
        """
        record an error

        :param str filename:  the file context where the problem was found
        :param str message:   the description of the problem
        """
        return self._add_issue(filename, message, ERROR)

    def add_warning(self, filename, message):
        """
        record a warning

        :param str filename:  the file context where the problem was found
        :param str message:   the description of the problem
        """
        return self._add_issue(filename, message, WARN)

    def merge(self, other):
        """
        append the issues recorded in another ValidationResults to this one
        """
        for type in issuetypes:
            self.results[type].extend(other.results[type])
        return self

    def reset(self):
        """
        discard all recorded errors and warnings
        """
        self.results = {
            ERROR: [],
            WARN:  []
        }

    def to_json_obj(self):
        return OrderedDict([
            ("target", self.target),
            ("errors", [i.to_json_obj() for i in self.results[ERROR]]),
            ("warnings", [i.to_json_obj() for i in self.results[WARN]])
        ])

class Validator(object):
    """
    a base class for a class that will apply validation tests to some
    targets set at construction.

    This base implementation runs no tests; validate() by default simply
    returns an empty ValidationResults object.  Subclasses should override
    validate() to run its tests and enter the results into a returned
    ValidationResults object.
    """

    def __init__(self, target):
        """
        initialize the validator

        :param str target:  a name indicating the target bag being validated.
        """
        self.target = target

    def validate(self, results=None):
        """
        run the embeded tests, returning the results.  If the results contain
        no errors, the bag is considered validated.

        :param results ValidationResults: a ValidationResults to add result
                             information to; if provided, this instance will
                             be the one returned by this method.
        :rtype: ValidationResults:  the results of applying validation tests
        """
        out = results
        if out is None:
            out = ValidationResults(self.target)
        return out

    def is_valid(self):
        """
        run the embedded tests and return True if no errors were found
        """
        return self.validate().ok()

    def ensure_valid(self):
        """
        run the embedded tests; if any errors are found, raise a
        BagValidationError.

        :raise BagValidationError:  if any of the tests fail.
        """
        results = self.validate()
        if not results.ok():
            raise BagValidationError(results)
        return results

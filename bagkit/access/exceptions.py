"""
exceptions that can be raised while accessing or updating a bag's contents
"""

class BagError(Exception):
    """
    a general exception while creating, reading, or updating a bag.  This is
    raised for problems that make further processing of the bag meaningless
    (e.g. a missing or unreadable bagit.txt file).
    """
    def __init__(self, message):
        super(BagError, self).__init__(message)
        self.message = message

class BagFormatError(BagError):
    """
    an exception indicating that a line within one of the bag's tag files
    (e.g. a manifest or fetch.txt) could not be parsed.
    """
    def __init__(self, message, filepath=None, lineno=None):
        """
        initialize the exception
        :param str message:   the description of the problem
        :param str filepath:  the path to the offending file, relative to the
                              bag's root directory.
        :param int lineno:    the (1-based) line number where the problem was
                              found.
        """
        super(BagFormatError, self).__init__(message)
        self.file = filepath
        self.line = lineno

    @property
    def context(self):
        """
        a string indicating where the problem was found
        """
        out = self.file or ""
        if self.line:
            out += ":{0}".format(self.line)
        return out

class BagValidationError(BagError):
    """
    An exception indicating that the target bag is not compliant with the
    BagIt specification in one or more ways.

    It carries along all of the result details as a ValidationResults
    instance ("results").
    """
    def __init__(self, results, message=None):
        self.results = results

        details = []
        if message:
            msg = message
        elif results.count() == 0:
            # shouldn't happen
            msg = "Unknown bag validation failure"
        elif len(results.errors) == 1:
            msg = results.errors[0].summary
        else:
            msg = "{0} validation errors detected".format(len(results.errors))
        details = [i.description for i in results.errors]

        super(BagValidationError, self).__init__(msg)
        self.details = details

    def __str__(self):
        if not self.results or len(self.results.errors) < 2:
            return self.message

        out = self.message
        if len(self.results.errors) > 3:
            out += ", including"
        out += ":"
        for f in self.results.errors[0:3]:
            out += "\n\n * "+f.description
        return out

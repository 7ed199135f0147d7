"""
This module provides the in-memory model of a bag's bag-info.txt file along
with the functions for reading and writing it in the format required by the
BagIt specification.
"""
import logging, re, textwrap
from collections import OrderedDict

from ..constants import BAGINFO_FILE, BAGINFO_LINE_LENGTH

LOGGER = logging.getLogger(__name__)

CONTINUATION_INDENT = "  "

_wrapper = textwrap.TextWrapper(width=BAGINFO_LINE_LENGTH,
                                subsequent_indent=CONTINUATION_INDENT,
                                break_long_words=False,
                                break_on_hyphens=False,
                                expand_tabs=False,
                                replace_whitespace=False)
_newline_re = re.compile(r"[ \t]*[\r\n]+[ \t]*")

def wrap_tag_line(line):
    """
    wrap a single "Name: value" line so that no output line is longer than
    79 characters (including the two-space indent of continuation lines).
    Lines are only broken at whitespace; a token that is too long to fit
    is left unbroken on its own line.  Line breaks within the value are
    replaced by a single space.

    :return:  the list of output lines
    :rtype:   list of str
    """
    line = _newline_re.sub(" ", line)
    if len(line) <= BAGINFO_LINE_LENGTH:
        return [line]
    return _wrapper.wrap(line) or [line]

def _report(results, issuetype, filename, lineno, message):
    context = "{0}:{1}".format(filename, lineno)
    if results is None:
        LOGGER.warning("%s: %s", context, message)
    elif issuetype == "error":
        results.add_error(context, message)
    else:
        results.add_warning(context, message)

def parse_tag_lines(lines, results=None, filename=BAGINFO_FILE):
    """
    parse the lines of a tag file (e.g. bag-info.txt or bagit.txt) into a
    list of (name, value) pairs, in order of appearance.  Lines starting with
    whitespace continue the value of the previous line.

    :param lines:  the lines of the file
    :param ValidationResults results:  a results instance to record problems
                   into; if None, problems will only be logged.
    :param str filename:  the name of the file being parsed (for reporting
                   problems).
    """
    tags = []
    for lineno, line in enumerate(lines, 1):
        line = line.rstrip("\r\n")
        if not line.strip():
            continue

        if line[0] in " \t":
            if not tags:
                _report(results, "error", filename, lineno,
                        "Continuation line has no preceding tag: "+line.strip())
                continue
            name, value = tags[-1]
            tags[-1] = (name, (value + " " + line.strip()).strip())
            continue

        if ':' not in line:
            _report(results, "error", filename, lineno,
                    "Invalid tag line (missing ':'): "+line)
            continue

        name, value = line.split(':', 1)
        if name != name.strip():
            _report(results, "warning", filename, lineno,
                    "Tag name has leading or trailing whitespace: '{0}'"
                    .format(name))
        if not name.strip():
            _report(results, "error", filename, lineno, "Empty tag name")
            continue
        tags.append((name.strip(), value.strip()))

    return tags

class BagInfo(object):
    """
    an ordered, multi-valued store of bag-info tags.  Tag names are matched
    case-insensitively but are written out with the case used when the
    tag was first added.
    """

    def __init__(self, tags=None):
        """
        create the store, optionally loading it with a list of (name, value)
        pairs.
        """
        self._tags = OrderedDict()
        self._index = {}
        if tags:
            for name, value in tags:
                self.add_tag(name, value)

    @staticmethod
    def fold(name):
        """
        return the form of a tag name used for case-insensitive lookups
        """
        return name.strip().lower()

    def canonical_name(self, name):
        """
        return the name of a tag as it will be written out, or None if the
        tag is not set.
        """
        return self._index.get(self.fold(name))

    @property
    def index(self):
        """
        a copy of the lookup index mapping case-folded names to the
        canonical (as first written) names.
        """
        return dict(self._index)

    def add_tag(self, name, value):
        """
        append a value to the given tag, creating the tag if necessary
        """
        if not name or not name.strip():
            raise ValueError("Tag name must not be empty")
        name = name.strip()
        key = self.fold(name)
        canon = self._index.get(key)
        if canon is None:
            canon = name
            self._index[key] = canon
            self._tags[canon] = []
        self._tags[canon].append(value)

    def set_tag(self, name, value):
        """
        set the given tag to have the single given value, replacing any
        values it had.  The tag keeps its position if already set.
        """
        canon = self.canonical_name(name)
        if canon is None:
            self.add_tag(name, value)
        else:
            self._tags[canon] = [value]

    def has_tag(self, name):
        return self.fold(name) in self._index

    def get_values(self, name):
        """
        return a list of the values for the given tag (which is empty if the
        tag is not set).
        """
        canon = self.canonical_name(name)
        if canon is None:
            return []
        return list(self._tags[canon])

    def get(self, name, default=None):
        """
        return the first value of the given tag or the default if not set
        """
        values = self.get_values(name)
        if not values:
            return default
        return values[0]

    def remove_tag(self, name):
        """
        remove all values for the given tag.
        :return: True if the tag was set (and removed), False otherwise
        """
        key = self.fold(name)
        canon = self._index.pop(key, None)
        if canon is None:
            return False
        del self._tags[canon]
        return True

    def remove_tag_index(self, name, index):
        """
        remove a single value from the given tag, identified by its position.
        The tag is removed entirely if its last value is removed.
        :return: True if a value was removed, False otherwise
        """
        canon = self.canonical_name(name)
        if canon is None or not (0 <= index < len(self._tags[canon])):
            return False
        del self._tags[canon][index]
        if not self._tags[canon]:
            self.remove_tag(canon)
        return True

    def remove_tag_value(self, name, value, case_sensitive=True):
        """
        remove all occurrences of a value from the given tag
        :return: True if any value was removed, False otherwise
        """
        canon = self.canonical_name(name)
        if canon is None:
            return False

        if case_sensitive:
            match = lambda v: v == value
        else:
            match = lambda v: v.lower() == value.lower()

        values = self._tags[canon]
        keep = [v for v in values if not match(v)]
        if len(keep) == len(values):
            return False
        self._tags[canon] = keep
        if not keep:
            self.remove_tag(canon)
        return True

    def tag_names(self):
        return list(self._tags.keys())

    def items(self):
        """
        return the tags as a list of (name, values) pairs in the order they
        were added.
        """
        return [(name, list(values)) for name, values in self._tags.items()]

    def __getitem__(self, name):
        canon = self.canonical_name(name)
        if canon is None:
            raise KeyError(name)
        return list(self._tags[canon])

    def __contains__(self, name):
        return self.has_tag(name)

    def __iter__(self):
        return iter(self.tag_names())

    def __len__(self):
        return len(self._tags)

    def serialize(self):
        """
        return the lines of a bag-info.txt file describing this metadata
        """
        out = []
        for name, values in self._tags.items():
            for value in values:
                out.extend(wrap_tag_line("{0}: {1}".format(name, value)))
        return out

    @classmethod
    def parse(cls, lines, results=None, filename=BAGINFO_FILE):
        """
        create a BagInfo instance from the lines of a bag-info.txt file
        """
        return cls(parse_tag_lines(lines, results, filename))

_units = ["B", "KB", "MB", "GB", "TB", "PB"]

def human_readable_size(nbytes):
    """
    format a byte count for human consumption using binary (1024-based)
    units, as used for the Bag-Size tag (e.g. 1036 -> "1.01 KB").
    """
    if not nbytes:
        return "0 B"
    size = float(nbytes)
    ordr = 0
    while size >= 1024.0 and ordr < len(_units) - 1:
        size /= 1024.0
        ordr += 1
    return "{0:.2f} {1}".format(size, _units[ordr])

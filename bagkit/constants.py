"""
Common data about the BagIt specification versions and the defaults used by
this package.
"""
import re

CURRENT_VERSION = "1.0"
CURRENT_REFERENCE = "https://www.rfc-editor.org/rfc/rfc8493"

SUPPORTED_VERSIONS = ("0.96", "0.97", "1.0")

DEFAULT_ALGORITHM = "sha512"
DEFAULT_ENCODING = "UTF-8"

# names as they appear in manifest file names; these are also hashlib names
CHECKSUM_ALGOS = ("md5", "sha1", "sha224", "sha256", "sha384", "sha512")
NOT_RECOMMENDED_ALGOS = ("md5", "sha1")

BAGIT_FILE = "bagit.txt"
BAGINFO_FILE = "bag-info.txt"
FETCH_FILE = "fetch.txt"
PAYLOAD_DIR = "data"

BAGINFO_LINE_LENGTH = 79
HASH_BLOCK_SIZE = 512 * 1024

# bag-info tags computed by update(); callers may not set these
GENERATED_TAGS = ("Payload-Oxum", "Bag-Size", "Bagging-Date")

# bag-info tags that SHOULD NOT appear more than once
NON_REPEATABLE_TAGS = ("Bagging-Date", "Bag-Size", "Payload-Oxum",
                       "Bag-Count", "Bag-Group-Identifier")

_version_re = re.compile(r'^(\d+)\.(\d+)$')

def _2int(sint):
    try:
        return int(sint)
    except ValueError:
        return -1

class Version(object):
    """
    a version class that can facilitate comparisons.  Ordering is done on
    the integer fields, so that "0.97" < "1.0" < "1.1" and "1.2" < "1.10".
    """

    def __init__(self, vers):
        """
        convert a version string to a Version instance
        """
        if isinstance(vers, Version):
            self._vs = vers._vs
            self.fields = list(vers.fields)
        elif isinstance(vers, str):
            self._vs = vers
            self.fields = [_2int(v) for v  in self._vs.split('.')]
        elif isinstance(vers, tuple):
            self._vs = ".".join([str(v) for v in vers])
            self.fields = list(vers)
        else:
            raise TypeError("Input version is not str or tuple: " + str(vers))

    @classmethod
    def parse(cls, vers):
        """
        strictly parse a BagIt version string of the form MAJOR.MINOR.

        :raises ValueError:  if the string is not two dot-delimited integers
        """
        if not isinstance(vers, str):
            raise ValueError("Version must be given as a string: "+repr(vers))
        m = _version_re.match(vers.strip())
        if not m:
            raise ValueError("Bag version numbers must be MAJOR.MINOR numbers, "+
                             "not "+vers)
        return cls((int(m.group(1)), int(m.group(2))))

    @property
    def major(self):
        return self.fields[0]

    @property
    def minor(self):
        return (len(self.fields) > 1 and self.fields[1]) or 0

    def compare(self, other):
        """
        return -1, 0, or 1 if this version is, respectively, less than, equal
        to, or greater than the given version.
        """
        if not isinstance(other, Version):
            other = Version(other)
        if self.fields < other.fields:
            return -1
        if self.fields > other.fields:
            return 1
        return 0

    def is_supported(self):
        """
        return True if this version is one of the BagIt versions supported
        by this package.
        """
        return any(self == v for v in SUPPORTED_VERSIONS)

    def allows_unknown_fetch_size(self):
        """
        return True if a fetch.txt length may be given as "-" (since 0.97)
        """
        return self >= "0.97"

    def validates_tag_manifests(self):
        """
        return True if tag manifests must be verified (since 0.97)
        """
        return self >= "0.97"

    def encodes_filenames(self):
        """
        return True if CR, LF, and % must be percent-encoded in manifest and
        fetch file paths (since 1.0)
        """
        return self >= "1.0"

    def requires_utf8(self):
        """
        return True if tag files are expected to be encoded as UTF-8
        """
        return self >= "1.0"

    def __str__(self):
        return self._vs

    def __repr__(self):
        return "Version('{0}')".format(self._vs)

    def __hash__(self):
        return hash(tuple(self.fields))

    def __eq__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        return self.fields == other.fields

    def __lt__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        return self.fields < other.fields

    def __le__(self, other):
        if not isinstance(other, Version):
            other = Version(other)
        return self < other or self == other

    def __ge__(self, other):
        return not (self < other)
    def __gt__(self, other):
        return not self.__le__(other)
    def __ne__(self, other):
        return not (self == other)

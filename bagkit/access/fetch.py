"""
This module provides support for a bag's fetch.txt file which lists payload
files that are not physically present in the bag but can be retrieved from
a URL.  Retrieval is only done on explicit request via download() or
download_all(); reading and validating fetch.txt never touches the network.
"""
import logging
from collections import OrderedDict, namedtuple
from urllib.parse import urlparse

import requests
import fs.path
from fs.errors import FSError

from ..constants import (FETCH_FILE, HASH_BLOCK_SIZE, CURRENT_VERSION,
                         DEFAULT_ENCODING, Version)
from .exceptions import BagError, BagFormatError
from .paths import (resolve_relative, in_payload, encode_filename,
                    decode_filename, is_dangerous)

LOGGER = logging.getLogger(__name__)

FETCH_SCHEMES = ("http", "https", "ftp")
DEFAULT_TIMEOUT = 60

FetchEntry = namedtuple("FetchEntry", "url size path".split())
FetchEntry.__doc__ = \
"""
a description of a remote payload file:  the URL to retrieve it from, its
expected size in bytes (None if unknown), and its destination path relative
to the bag's root directory.
"""

class FetchRegistry(object):
    """
    the set of fetch references declared by a bag, keyed by destination path
    """
    filename = FETCH_FILE

    def __init__(self, version=CURRENT_VERSION, encoding=DEFAULT_ENCODING):
        self.version = Version(version)
        self.encoding = encoding
        self.entries = OrderedDict()

    def _check(self, url, size, path):
        # return a validated FetchEntry or raise BagFormatError
        u = urlparse(url)
        if u.scheme.lower() not in FETCH_SCHEMES or not u.netloc:
            raise BagFormatError("Invalid fetch URL: "+url, self.filename)

        if size is None or size == '-':
            if not self.version.allows_unknown_fetch_size():
                raise BagFormatError("Fetch length must be given as a number "+
                                     "for BagIt version "+str(self.version),
                                     self.filename)
            size = None
        elif isinstance(size, int):
            if size < 0:
                raise BagFormatError("Fetch length must not be negative: " +
                                     str(size), self.filename)
        elif not size.isdigit():
            raise BagFormatError("Invalid fetch length: "+size, self.filename)
        else:
            size = int(size)

        if is_dangerous(path) or not in_payload(path):
            raise BagFormatError("Fetch destination must be in the payload "+
                                 "directory: "+path, self.filename)

        return FetchEntry(url, size, resolve_relative(path))

    def parse_line(self, line):
        """
        parse a line from a fetch.txt file

        :rtype: FetchEntry
        :raises BagFormatError:  if the line is not a valid fetch entry
        """
        parts = line.strip().split(None, 2)
        if len(parts) != 3:
            raise BagFormatError("Invalid fetch entry: "+line.strip(),
                                 self.filename)
        url, size, path = parts
        if self.version.encodes_filenames():
            path = decode_filename(path)
        return self._check(url, size, path)

    def add(self, url, path, size=None):
        """
        add a fetch reference

        :param str url:   the URL where the file can be retrieved
        :param str path:  the destination path relative to the bag's root
        :param int size:  the size of the file in bytes, if known
        :raises BagFormatError:  if any of the inputs are invalid
        :raises BagError:  if a fetch reference to the path already exists
        """
        entry = self._check(url, size, path)
        if entry.path in self.entries:
            raise BagError("Fetch destination already listed: "+entry.path)
        self.entries[entry.path] = entry
        return entry

    def remove(self, path):
        """
        remove the fetch reference for the given destination
        :return: True if a reference was removed
        """
        return self.entries.pop(resolve_relative(path), None) is not None

    def get(self, path, default=None):
        return self.entries.get(resolve_relative(path), default)

    def __contains__(self, path):
        return resolve_relative(path) in self.entries

    def __iter__(self):
        return iter(list(self.entries.values()))

    def __len__(self):
        return len(self.entries)

    def load(self, filesys, results=None):
        """
        (re-)read the bag's fetch.txt file, if it exists.  Invalid lines are
        recorded as errors and skipped.
        """
        self.entries = OrderedDict()
        if not filesys.isfile(self.filename):
            return self

        def _err(context, msg):
            if results is not None:
                results.add_error(context, msg)
            else:
                LOGGER.error("%s: %s", context, msg)

        try:
            with filesys.open(self.filename, 'r', encoding=self.encoding) as fd:
                lines = list(fd)
        except (FSError, UnicodeDecodeError) as ex:
            _err(self.filename, "Unable to read fetch file: "+str(ex))
            return self

        for lineno, line in enumerate(lines, 1):
            if not line.strip():
                continue
            context = "{0}:{1}".format(self.filename, lineno)
            try:
                entry = self.parse_line(line)
            except BagFormatError as ex:
                ex.line = lineno
                _err(ex.context, ex.message)
                continue
            if entry.path in self.entries:
                _err(context, "Fetch destination listed more than once: "+
                              entry.path)
                continue
            self.entries[entry.path] = entry

        return self

    def serialize(self):
        encode = self.version.encodes_filenames()
        out = []
        for entry in self.entries.values():
            size = (entry.size is None and '-') or str(entry.size)
            path = (encode and encode_filename(entry.path)) or entry.path
            out.append("{0} {1} {2}".format(entry.url, size, path))
        return out

    def write(self, filesys):
        """
        write the fetch.txt file into the bag, or remove it if there are no
        fetch references.
        """
        if not self.entries:
            self.remove_file(filesys)
            return
        filesys.writetext(self.filename,
                          "".join(line+"\n" for line in self.serialize()),
                          encoding=self.encoding)

    def remove_file(self, filesys):
        if filesys.isfile(self.filename):
            filesys.remove(self.filename)
            return True
        return False

    def cross_check(self, manifests, results, filesys=None):
        """
        check the fetch references against the payload manifests:  each
        destination should be listed in at least one of them.  If filesys is
        given, already-retrieved files are also checked against their
        declared sizes.  Problems are recorded as warnings.

        :param manifests:  the payload Manifest instances
        :param ValidationResults results:  the results to record problems in
        """
        for entry in self.entries.values():
            if not any(entry.path in m for m in manifests):
                results.add_warning(self.filename,
                                    "Fetch destination has no payload manifest "+
                                    "entry: "+entry.path)
            if filesys is not None and entry.size is not None and \
               filesys.isfile(entry.path):
                found = filesys.getsize(entry.path)
                if found != entry.size:
                    results.add_warning(entry.path,
                                        "Size ({0} bytes) differs from that given in {1} ({2} bytes)"
                                        .format(found, self.filename, entry.size))

    def download(self, filesys, entry, timeout=DEFAULT_TIMEOUT):
        """
        retrieve a single fetch reference into the bag

        :param filesys:  the bag's root filesystem
        :param FetchEntry entry:  the reference to retrieve
        :raises BagError:  if the retrieval fails or the retrieved file has
                           an unexpected size
        """
        LOGGER.info("Fetching %s to %s", entry.url, entry.path)
        filesys.makedirs(fs.path.dirname(entry.path), recreate=True)
        nbytes = 0
        try:
            with requests.get(entry.url, stream=True, timeout=timeout) as resp:
                resp.raise_for_status()
                with filesys.openbin(entry.path, 'w') as fd:
                    for block in resp.iter_content(HASH_BLOCK_SIZE):
                        fd.write(block)
                        nbytes += len(block)
        except requests.RequestException as ex:
            self._discard(filesys, entry.path)
            raise BagError("Failed to retrieve {0}: {1}".format(entry.url, str(ex)))

        if entry.size is not None and nbytes != entry.size:
            self._discard(filesys, entry.path)
            raise BagError("Retrieved {0} bytes from {1}; expected {2}"
                           .format(nbytes, entry.url, entry.size))
        return nbytes

    def download_all(self, filesys, overwrite=False, timeout=DEFAULT_TIMEOUT):
        """
        retrieve all fetch references not already present in the bag.

        :return: the list of paths that were retrieved
        """
        out = []
        for entry in self.entries.values():
            if not overwrite and filesys.isfile(entry.path):
                continue
            self.download(filesys, entry, timeout)
            out.append(entry.path)
        return out

    def _discard(self, filesys, path):
        if filesys.isfile(path):
            filesys.remove(path)

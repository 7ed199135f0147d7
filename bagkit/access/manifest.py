"""
This module provides classes for reading, writing, and verifying a bag's
checksum manifests.  A bag has one payload manifest (manifest-ALG.txt) for
each checksum algorithm it uses and, optionally, one tag manifest
(tagmanifest-ALG.txt) per algorithm listing the bag's non-payload files.
"""
import logging, hashlib, re
from collections import OrderedDict

from fs.errors import FSError

from ..constants import (CHECKSUM_ALGOS, HASH_BLOCK_SIZE, PAYLOAD_DIR,
                         CURRENT_VERSION, DEFAULT_ENCODING, Version)
from .exceptions import BagError, BagFormatError
from .paths import (resolve_relative, in_payload, encode_filename,
                    decode_filename, is_dangerous)

LOGGER = logging.getLogger(__name__)

PAYLOAD = "payload"
TAG = "tag"

UNICODE_BYTE_ORDER_MARK = "\ufeff"

_manifest_name_re = re.compile(r'^(tag)?manifest-([a-z0-9]+)\.txt$')
_hex_re = re.compile(r'^[0-9a-fA-F]+$')
_entry_re = re.compile(r'^(\S+)[ \t]+(.+)$')

def normalize_algorithm(name):
    """
    return the canonical name for a checksum algorithm (e.g. "SHA-256" ->
    "sha256").

    :raises BagError:  if the algorithm is not supported
    """
    if not name:
        raise BagError("No checksum algorithm specified")
    alg = name.strip().lower().replace('-', '')
    if alg not in CHECKSUM_ALGOS:
        raise BagError("Unsupported checksum algorithm: "+name)
    try:
        hashlib.new(alg)
    except ValueError:
        raise BagError("Checksum algorithm not available on this platform: "+
                       name)
    return alg

def classify_manifest(filename):
    """
    determine whether the given file name is the name of a payload manifest
    or a tag manifest.

    :return:  PAYLOAD ("payload"), TAG ("tag"), or None if the file is
              neither.
    """
    name = filename.replace('\\', '/').rsplit('/', 1)[-1]
    m = _manifest_name_re.match(name)
    if not m or m.group(2) not in CHECKSUM_ALGOS:
        return None
    return (m.group(1) and TAG) or PAYLOAD

def manifest_algorithm(filename):
    """
    return the algorithm name embedded in a manifest's file name, or None
    if the file is not a manifest.
    """
    if not classify_manifest(filename):
        return None
    name = filename.replace('\\', '/').rsplit('/', 1)[-1]
    return _manifest_name_re.match(name).group(2)

def calculate_file_hashes(filesys, path, algorithms):
    """
    Returns an OrderedDict of (algorithm, hexdigest) values for the given
    file, reading the file only once.

    :param filesys:  the bag's root filesystem (an fs.base.FS instance)
    :param str path: the path to the file relative to the bag's root
    :param algorithms:  the list of algorithm names to calculate
    """
    LOGGER.info("Calculating checksums for file %s", path)
    hashers = OrderedDict((alg, hashlib.new(alg)) for alg in algorithms)

    try:
        with filesys.openbin(path) as fd:
            while True:
                block = fd.read(HASH_BLOCK_SIZE)
                if not block:
                    break
                for h in hashers.values():
                    h.update(block)
    except (FSError, OSError) as ex:
        raise BagError("Could not read {0}: {1}".format(path, str(ex)))

    return OrderedDict((alg, h.hexdigest()) for alg, h in hashers.items())

def payload_files(filesys):
    """
    return a sorted list of the payload files currently in the bag, given as
    paths relative to the bag's root directory.
    """
    if not filesys.isdir(PAYLOAD_DIR):
        return []
    return sorted(p.lstrip('/') for p in filesys.walk.files("/"+PAYLOAD_DIR))

def tag_files(filesys):
    """
    return a sorted list of the tag (i.e. non-payload) files currently in the
    bag, excluding the tag manifests.
    """
    out = []
    for info in filesys.scandir("/"):
        if info.is_dir:
            if info.name != PAYLOAD_DIR:
                out.extend(p.lstrip('/') for p in filesys.walk.files("/"+info.name))
        elif classify_manifest(info.name) != TAG:
            out.append(info.name)
    return sorted(out)

def update_manifests(manifests, filesys, paths):
    """
    recalculate the entries for the given files in each of the given
    manifests, reading each file once.  The entries are updated in the
    order the paths are given.
    """
    algs = [m.algorithm for m in manifests]
    for path in paths:
        hashes = calculate_file_hashes(filesys, path, algs)
        for m in manifests:
            m.entries[path] = hashes[m.algorithm]

class Manifest(object):
    """
    a listing of files and their checksums computed with a single algorithm.
    This base class captures the behavior common to payload manifests and
    tag manifests.
    """
    prefix = None
    scope = None
    missing_message = "file missing"
    scope_message = "path is not allowed in this manifest"

    def __init__(self, algorithm, version=CURRENT_VERSION,
                 encoding=DEFAULT_ENCODING):
        """
        create an empty manifest

        :param str algorithm:  the name of the checksum algorithm
        :param str version:    the BagIt version of the bag that contains
                               this manifest
        :param str encoding:   the text encoding used by the bag's tag files
        :raises BagError:  if the algorithm is not supported
        """
        self.algorithm = normalize_algorithm(algorithm)
        self.version = Version(version)
        self.encoding = encoding
        self.entries = OrderedDict()

    @property
    def filename(self):
        """
        the name of this manifest's file within the bag's root directory
        """
        return "{0}-{1}.txt".format(self.prefix, self.algorithm)

    def in_scope(self, path):
        """
        return True if the given bag-relative path may be listed in this
        manifest.
        """
        raise NotImplementedError()

    def files_on_disk(self, filesys):
        """
        return the list of files in the bag that this manifest should list
        """
        raise NotImplementedError()

    @staticmethod
    def parse_line(line):
        """
        parse a line from a manifest file.

        :return: a 2-tuple containing the (lower-case) checksum and the
                 (still encoded) file path
        :raises BagFormatError:  if the line is not a valid manifest entry
        """
        text = line.rstrip("\r\n").lstrip()
        entry = _entry_re.match(text)
        if not entry:
            raise BagFormatError("Invalid manifest entry: "+text.strip())

        checksum, path = entry.groups()
        if path.startswith('*'):
            path = path[1:]
        if not path.strip():
            raise BagFormatError("Invalid manifest entry: "+text.strip())
        if not _hex_re.match(checksum):
            raise BagFormatError("Invalid checksum value: "+checksum)

        return checksum.lower(), path

    def add_entry(self, path, checksum, results=None, context=None):
        """
        set the checksum for a file.  If the file is already listed with a
        different checksum, the new value replaces the old one and a
        "duplicate entry" warning is issued.
        """
        checksum = checksum.lower()
        prev = self.entries.get(path)
        if prev is not None and prev != checksum:
            msg = "duplicate entry for {0} with a different {1} checksum" \
                  .format(path, self.algorithm)
            if results is not None:
                results.add_warning(context or self.filename, msg)
            else:
                LOGGER.warning("%s: %s", context or self.filename, msg)
        self.entries[path] = checksum

    def remove_entry(self, path):
        """
        remove the entry for a file.
        :return: True if an entry was removed
        """
        return self.entries.pop(path, None) is not None

    def get(self, path, default=None):
        return self.entries.get(path, default)

    def paths(self):
        return list(self.entries.keys())

    def __contains__(self, path):
        return path in self.entries

    def __len__(self):
        return len(self.entries)

    def load(self, filesys, results=None):
        """
        (re-)read the contents of this manifest from its file in the bag.
        Invalid lines are recorded as errors (when results is provided) and
        skipped; the rest of the file is still loaded.

        :param filesys:  the bag's root filesystem
        :param ValidationResults results:  the results to record problems in
        """
        self.entries = OrderedDict()

        def _err(context, msg):
            if results is not None:
                results.add_error(context, msg)
            else:
                LOGGER.error("%s: %s", context, msg)

        try:
            with filesys.open(self.filename, 'r', encoding=self.encoding) as fd:
                lines = list(fd)
        except (FSError, UnicodeDecodeError) as ex:
            _err(self.filename, "Unable to read manifest: "+str(ex))
            return self

        if lines and lines[0].startswith(UNICODE_BYTE_ORDER_MARK):
            lines[0] = lines[0][1:]
            LOGGER.warning("%s contains an unnecessary byte-order mark",
                           self.filename)
            if results is not None:
                results.add_warning(self.filename,
                                    "File contains an unnecessary byte-order mark")

        for lineno, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                checksum, path = self.parse_line(line)
            except BagFormatError as ex:
                ex.file, ex.line = self.filename, lineno
                _err(ex.context, ex.message)
                continue
            context = "{0}:{1}".format(self.filename, lineno)

            if self.version.encodes_filenames():
                path = decode_filename(path)
            if is_dangerous(path):
                _err(context, 'Path "{0}" is unsafe'.format(path))
                continue
            path = resolve_relative(path)
            if not self.in_scope(path):
                _err(context, "{0}: {1}".format(self.scope_message, path))
                continue

            self.add_entry(path, checksum, results, context)

        return self

    def serialize(self):
        """
        return the lines of the manifest file (without line terminators)
        """
        encode = self.version.encodes_filenames()
        return ["{0} {1}".format(checksum, (encode and encode_filename(path)) or path)
                for path, checksum in self.entries.items()]

    def write(self, filesys):
        """
        write this manifest to its file in the bag's root directory
        """
        filesys.writetext(self.filename,
                          "".join(line+"\n" for line in self.serialize()),
                          encoding=self.encoding)

    def remove_file(self, filesys):
        """
        delete this manifest's file from the bag if it exists
        :return: True if a file was deleted
        """
        if filesys.isfile(self.filename):
            filesys.remove(self.filename)
            return True
        return False

    def update(self, filesys, paths=None):
        """
        replace the entries in this manifest with checksums calculated from
        the given files.  If paths is not given, all files within this
        manifest's scope will be listed.
        """
        if paths is None:
            paths = self.files_on_disk(filesys)
        self.entries = OrderedDict()
        update_manifests([self], filesys, paths)
        return self

    def reconcile(self, filesys, results, on_disk=None):
        """
        compare this manifest with the files in the bag, recording an error
        into results for each file that is missing, has a mismatched
        checksum, or is present but not listed.

        :param filesys:  the bag's root filesystem
        :param ValidationResults results:  the results to record problems in
        :param list on_disk:  the files to compare against; if not given,
                              the bag will be scanned for them.
        :return int:  the number of errors found
        """
        if on_disk is None:
            on_disk = self.files_on_disk(filesys)
        present = set(on_disk)
        nerrs = 0

        for path, expected in self.entries.items():
            if path not in present:
                results.add_error(path, "{0} (listed in {1})"
                                        .format(self.missing_message, self.filename))
                nerrs += 1
                continue

            try:
                found = calculate_file_hashes(filesys, path,
                                              [self.algorithm])[self.algorithm]
            except BagError as ex:
                results.add_error(path, ex.message)
                nerrs += 1
                continue

            if found != expected:
                msg = "checksum mismatch for {0}: expected {1}, found {2}" \
                      .format(self.algorithm, expected, found)
                LOGGER.warning("%s: %s", path, msg)
                results.add_error(path, msg)
                nerrs += 1

        for path in on_disk:
            if path not in self.entries:
                results.add_error(path, "file not in manifest "+self.filename)
                nerrs += 1

        return nerrs

    def __repr__(self):
        return "{0}('{1}')".format(self.__class__.__name__, self.algorithm)

class PayloadManifest(Manifest):
    """
    a manifest listing the bag's payload files (manifest-ALG.txt)
    """
    prefix = "manifest"
    scope = PAYLOAD
    missing_message = "payload file missing"
    scope_message = "path is not in the payload directory"

    def in_scope(self, path):
        return in_payload(path)

    def files_on_disk(self, filesys):
        return payload_files(filesys)

class TagManifest(Manifest):
    """
    a manifest listing the bag's tag files (tagmanifest-ALG.txt).  A tag
    manifest never lists the tag manifests (including itself).
    """
    prefix = "tagmanifest"
    scope = TAG
    missing_message = "tag file missing"
    scope_message = "path is not a tag file"

    def in_scope(self, path):
        if not path or in_payload(path) or path == PAYLOAD_DIR:
            return False
        return not ('/' not in path and classify_manifest(path) == TAG)

    def files_on_disk(self, filesys):
        return tag_files(filesys)

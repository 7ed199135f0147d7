"""
This module provides the Bag class for creating, loading, updating, and
validating bags, along with factory functions for opening bags in either
directory or serialized (zip or tar) form.

A Bag instance keeps an in-memory model of the bag (its algorithms,
manifests, bag-info metadata, and fetch references).  Mutating methods only
change this model (and, when adding or removing payload files, the payload
directory); the manifests and other tag files are written out only when
update() is called.
"""
import os, codecs, logging, shutil, tempfile
from collections import OrderedDict
from datetime import date

import fs.path
import fs.osfs, fs.zipfs, fs.tarfs
from fs.copy import copy_file, copy_fs, copy_dir
from fs.errors import FSError

from ..constants import (CURRENT_VERSION, DEFAULT_ALGORITHM, DEFAULT_ENCODING,
                         BAGIT_FILE, BAGINFO_FILE, PAYLOAD_DIR, GENERATED_TAGS,
                         Version)
from .exceptions import BagError
from .paths import resolve_relative, in_payload, base_in_data, get_directory
from .baginfo import BagInfo, parse_tag_lines, human_readable_size
from .manifest import (PayloadManifest, TagManifest, normalize_algorithm,
                       classify_manifest, manifest_algorithm, payload_files,
                       tag_files, update_manifests, PAYLOAD, TAG)
from .fetch import FetchRegistry
from ..validate.base import ValidationResults

LOGGER = logging.getLogger(__name__)

_generated = [t.lower() for t in GENERATED_TAGS]

def _parse_version(vers):
    try:
        out = Version.parse(vers)
    except ValueError as ex:
        raise BagError(str(ex))
    if not out.is_supported():
        raise BagError("Unsupported bag version: "+str(vers))
    return out

class Bag(object):
    """
    A representation of a bag rooted in a directory on local disk.

    To create a new bag, use Bag.create() (or create_bag()); to open an
    existing one, possibly in serialized form, use Bag.load() (or
    open_bag()).
    """

    def __init__(self, bagdir, new=False, version=CURRENT_VERSION,
                 algorithm=DEFAULT_ALGORITHM, location=None):
        """
        open or create the bag with the given root directory

        :param str bagdir:    the path to the bag's root directory
        :param bool new:      if True, create a new bag in the given
                              directory, which must not exist or be empty;
                              otherwise, load the existing bag there.
        :param str version:   the BagIt version for a new bag
        :param str algorithm: the checksum algorithm for a new bag
        :param str location:  the location the bag was loaded from, if
                              different from bagdir (e.g. a zip file)
        :raises BagError:  if the bag cannot be created or loaded
        """
        if not bagdir:
            raise BagError("path to bag root directory not provided")
        self.path = os.path.abspath(bagdir)
        self.location = location or self.path
        self._tmpdir = None

        self._algorithms = []
        self.manifests = OrderedDict()
        self.tagmanifests = OrderedDict()
        self.info = BagInfo()
        self.extended = False
        self.changed = False
        self.fs = None

        if new:
            self._create(version, algorithm)
        else:
            self._open()

    @classmethod
    def create(cls, bagdir, version=CURRENT_VERSION, algorithm=DEFAULT_ALGORITHM):
        """
        create a new, empty bag in the given directory.  The bag's files are
        not written until update() is called.
        """
        return cls(bagdir, True, version, algorithm)

    @classmethod
    def load(cls, location):
        """
        load an existing bag from a directory or a serialized bag file
        """
        return open_bag(location)

    def _create(self, version, algorithm):
        if os.path.exists(self.path):
            if not os.path.isdir(self.path):
                raise BagError("Bag path exists and is not a directory: "+
                               self.path)
            if os.listdir(self.path):
                raise BagError("Cannot create a bag in a non-empty directory: "+
                               self.path)

        self.version = _parse_version(version)
        self.encoding = DEFAULT_ENCODING
        self.results = ValidationResults(str(self), str(self.version))
        self.fetch = FetchRegistry(self.version, self.encoding)

        try:
            os.makedirs(self.path, exist_ok=True)
            self.fs = fs.osfs.OSFS(self.path)
            self.fs.makedir(PAYLOAD_DIR, recreate=True)
        except (OSError, FSError) as ex:
            raise BagError("Unable to create bag directory {0}: {1}"
                           .format(self.path, str(ex)))

        self.add_algorithm(algorithm)
        self.changed = True

    def _open(self):
        # load bagit.txt, bag-info.txt, the manifests, and fetch.txt
        if not os.path.isdir(self.path):
            raise BagError("Bag directory not found: "+self.path)
        self.fs = fs.osfs.OSFS(self.path)
        self.results = ValidationResults(str(self))

        if not self.fs.isfile(BAGIT_FILE):
            raise BagError("Expected bagit.txt does not exist: "+
                           self.make_absolute(BAGIT_FILE))

        tags = OrderedDict(read_bagit_txt(self.fs, self.results))
        required_tags = ('BagIt-Version', 'Tag-File-Character-Encoding')
        missing_tags = [t for t in required_tags if t not in tags]
        if missing_tags:
            raise BagError("Missing required tag in bagit.txt: "+
                           ", ".join(missing_tags))

        self.version = _parse_version(tags['BagIt-Version'])
        self.results.version = str(self.version)
        self.encoding = tags['Tag-File-Character-Encoding']
        try:
            codecs.lookup(self.encoding)
        except LookupError:
            raise BagError("Unsupported encoding: "+self.encoding)

        if not self.fs.isdir(PAYLOAD_DIR):
            raise BagError("Expected data directory does not exist in "+
                           self.path)

        if self.fs.isfile(BAGINFO_FILE):
            self.extended = True
            try:
                with self.fs.open(BAGINFO_FILE, 'r', encoding=self.encoding) as fd:
                    self.info = BagInfo.parse(list(fd), self.results)
            except (FSError, UnicodeDecodeError) as ex:
                raise BagError("Unable to read bag-info.txt: "+str(ex))

        for name in sorted(self.fs.listdir("/")):
            kind = classify_manifest(name)
            if not kind or not self.fs.isfile(name):
                continue
            alg = manifest_algorithm(name)
            if kind == PAYLOAD:
                self.manifests[alg] = PayloadManifest(alg, self.version,
                                                      self.encoding)
                self.manifests[alg].load(self.fs, self.results)
                self._algorithms.append(alg)
            else:
                self.extended = True
                self.tagmanifests[alg] = TagManifest(alg, self.version,
                                                     self.encoding)
                self.tagmanifests[alg].load(self.fs, self.results)

        if not self._algorithms:
            self.results.add_error(self.path, "No payload manifest files found")

        self.fetch = FetchRegistry(self.version, self.encoding)
        self.fetch.load(self.fs, self.results)
        self.changed = False

    def __str__(self):
        return self.location

    def __repr__(self):
        return "Bag('{0}')".format(self.path)

    @property
    def name(self):
        """
        the name of the bag's root directory
        """
        return os.path.basename(self.path)

    @property
    def data_dir(self):
        """
        the absolute path to the bag's payload directory
        """
        return os.path.join(self.path, PAYLOAD_DIR)

    @property
    def is_extended(self):
        return self.extended

    def set_extended(self, extended):
        """
        set whether this bag includes the optional bag-info.txt and tag
        manifest files.
        """
        extended = bool(extended)
        if extended != self.extended:
            self.extended = extended
            self.changed = True

    # Paths

    def make_relative(self, path):
        """
        return the given absolute path relative to the bag's root directory,
        or an empty string if the path does not point within the bag.
        """
        return resolve_relative(path, self.path)

    def make_absolute(self, path):
        """
        return the absolute path for a path given relative to the bag's root
        """
        rel = resolve_relative(path, self.path)
        if not rel:
            return self.path
        return os.path.join(self.path, *rel.split('/'))

    def path_in_bag_data(self, path):
        """
        return True if the given path is within the bag's payload directory
        """
        return in_payload(path, self.path)

    def compare_version(self, version):
        """
        compare the given version with this bag's BagIt version, returning
        -1, 0, or 1 if the given version is, respectively, older than, the
        same as, or newer than the bag's.
        """
        return Version(version).compare(self.version)

    # Algorithms

    @property
    def algorithms(self):
        """
        the list of checksum algorithms in use, in the order they were added
        """
        return list(self._algorithms)

    def has_algorithm(self, algorithm):
        try:
            return normalize_algorithm(algorithm) in self._algorithms
        except BagError:
            return False

    def add_algorithm(self, algorithm):
        """
        add a checksum algorithm to the bag.  Manifests for it will be
        written on the next update().

        :raises BagError:  if the algorithm is not supported
        """
        alg = normalize_algorithm(algorithm)
        if alg in self._algorithms:
            return
        self._algorithms.append(alg)
        self.manifests[alg] = PayloadManifest(alg, self.version, self.encoding)
        self.changed = True

    def remove_algorithm(self, algorithm):
        """
        stop using a checksum algorithm.  Its manifests will be removed on
        the next update().

        :raises BagError:  if the algorithm is not in use or is the only one
        """
        alg = normalize_algorithm(algorithm)
        if alg not in self._algorithms:
            raise BagError("Algorithm not in use by this bag: "+algorithm)
        if len(self._algorithms) == 1:
            raise BagError("Cannot remove the bag's only checksum algorithm")
        self._algorithms.remove(alg)
        self.manifests.pop(alg, None)
        self.tagmanifests.pop(alg, None)
        self.changed = True

    def set_algorithm(self, algorithm):
        """
        make the given algorithm the only one used by the bag
        """
        alg = normalize_algorithm(algorithm)
        self.add_algorithm(alg)
        for other in [a for a in self._algorithms if a != alg]:
            self.remove_algorithm(other)

    # Payload

    def _payload_path(self, dest):
        rel = resolve_relative(base_in_data(dest))
        if not in_payload(rel):
            raise BagError("Path is not within the payload directory: "+dest)
        return rel

    def add_file(self, source, dest):
        """
        copy a file into the bag's payload

        :param str source:  the path to the file to copy
        :param str dest:    the destination path relative to the bag's root
                            (or payload) directory
        :raises BagError:  if the source is not a file, the destination is
                           outside the payload, or already exists.
        """
        if not os.path.isfile(source):
            raise BagError("File not found: "+source)
        rel = self._payload_path(dest)
        if self.fs.exists(rel):
            raise BagError("File already exists in bag: "+rel)

        self.fs.makedirs(fs.path.dirname(rel), recreate=True)
        srcdir, srcname = os.path.split(os.path.abspath(source))
        with fs.osfs.OSFS(srcdir) as srcfs:
            copy_file(srcfs, srcname, self.fs, rel)
        self.changed = True
        return rel

    def create_file(self, content, dest):
        """
        create a payload file with the given content

        :param content:   the file's content as a str or bytes
        :param str dest:  the destination path relative to the bag's root
                          (or payload) directory
        """
        rel = self._payload_path(dest)
        if self.fs.exists(rel):
            raise BagError("File already exists in bag: "+rel)

        self.fs.makedirs(fs.path.dirname(rel), recreate=True)
        if isinstance(content, bytes):
            self.fs.writebytes(rel, content)
        else:
            self.fs.writetext(rel, content, encoding="utf-8")
        self.changed = True
        return rel

    def remove_file(self, dest):
        """
        remove a file from the bag's payload, along with any directories
        left empty by its removal.

        :return: True if the file was removed
        """
        rel = self._payload_path(dest)
        if not self.fs.isfile(rel):
            return False

        self.fs.remove(rel)
        parent = fs.path.dirname(rel)
        while parent and parent != PAYLOAD_DIR and self.fs.isempty(parent):
            self.fs.removedir(parent)
            parent = fs.path.dirname(parent)

        for m in self.manifests.values():
            m.remove_entry(rel)
        self.changed = True
        return True

    # Bag-info

    @property
    def bag_info(self):
        return self.info

    def _check_settable(self, tag):
        if BagInfo.fold(tag) in _generated:
            raise BagError("Tag {0} is generated automatically and cannot "
                           "be set".format(tag))

    def add_bag_info_tag(self, tag, value):
        """
        add a value to a bag-info tag.  This makes the bag an extended bag.

        :raises BagError:  if the tag is one that is generated automatically
        """
        self._check_settable(tag)
        self.info.add_tag(tag, value)
        self.extended = True
        self.changed = True

    def remove_bag_info_tag(self, tag):
        self._check_settable(tag)
        if self.info.remove_tag(tag):
            self.changed = True
            return True
        return False

    def remove_bag_info_tag_index(self, tag, index):
        self._check_settable(tag)
        if self.info.remove_tag_index(tag, index):
            self.changed = True
            return True
        return False

    def remove_bag_info_tag_value(self, tag, value, case_sensitive=True):
        self._check_settable(tag)
        if self.info.remove_tag_value(tag, value, case_sensitive):
            self.changed = True
            return True
        return False

    def has_bag_info_tag(self, tag):
        return self.info.has_tag(tag)

    def get_bag_info_by_tag(self, tag):
        return self.info.get_values(tag)

    def calc_oxum(self):
        """
        calculate and return the Payload-Oxum as a 2-tuple for the bag in its
        current state:  the total number of payload bytes and the total
        number of payload files.
        """
        files = payload_files(self.fs)
        return (sum(self.fs.getsize(f) for f in files), len(files))

    def _update_generated_tags(self):
        nbytes, nfiles = self.calc_oxum()
        self.info.set_tag("Payload-Oxum", "{0}.{1}".format(nbytes, nfiles))
        self.info.set_tag("Bag-Size", human_readable_size(nbytes))
        self.info.set_tag("Bagging-Date", date.today().isoformat())

    # Fetch

    @property
    def fetch_entries(self):
        """
        the list of FetchEntry instances declared for this bag
        """
        return list(self.fetch)

    def add_fetch_file(self, url, dest, size=None, checksums=None):
        """
        declare a payload file that should be retrieved from a URL

        :param str url:    the file's URL
        :param str dest:   the destination path relative to the bag's root
                           (or payload) directory
        :param int size:   the file's size in bytes, if known
        :param dict checksums:  a mapping of algorithm names to the file's
                           checksums; these are recorded in the payload
                           manifests.
        :raises BagError:  if the destination already exists in the bag or
                           any of the inputs are invalid
        """
        rel = self._payload_path(dest)
        if self.fs.exists(rel):
            raise BagError("Fetch destination already exists in bag: "+rel)
        checksums = [(normalize_algorithm(alg), checksum)
                     for alg, checksum in (checksums or {}).items()]
        entry = self.fetch.add(url, rel, size)
        for alg, checksum in checksums:
            if alg in self.manifests:
                self.manifests[alg].add_entry(entry.path, checksum)
        self.changed = True
        return entry

    def remove_fetch_file(self, dest):
        rel = self._payload_path(dest)
        if not self.fetch.remove(rel):
            return False
        if not self.fs.isfile(rel):
            for m in self.manifests.values():
                m.remove_entry(rel)
        self.changed = True
        return True

    def fetch_files(self, overwrite=False):
        """
        retrieve the files listed in fetch.txt that are not yet present

        :return:  the list of paths retrieved
        """
        out = self.fetch.download_all(self.fs, overwrite)
        if out:
            self.changed = True
        return out

    # Writing

    def clear_payload_manifests(self):
        """
        delete all payload manifest files from the bag's root directory and
        empty the in-memory manifests.
        """
        for name in self.fs.listdir("/"):
            if classify_manifest(name) == PAYLOAD and self.fs.isfile(name):
                self.fs.remove(name)
        for m in self.manifests.values():
            m.entries = OrderedDict()

    def clear_tag_manifests(self):
        """
        delete all tag manifest files from the bag's root directory and
        discard the in-memory tag manifests.
        """
        for name in self.fs.listdir("/"):
            if classify_manifest(name) == TAG and self.fs.isfile(name):
                self.fs.remove(name)
        self.tagmanifests = OrderedDict()

    def _write_bagit_txt(self):
        self.fs.writetext(BAGIT_FILE,
                          "BagIt-Version: {0}\nTag-File-Character-Encoding: {1}\n"
                          .format(self.version, self.encoding), encoding="utf-8")

    def update(self):
        """
        write out the bag's in-memory state:  bagit.txt, the payload
        manifests (recalculated from the current payload), bag-info.txt,
        fetch.txt, and the tag manifests.  Manifest files for algorithms no
        longer in use are removed.
        """
        if not self._algorithms:
            raise BagError("A bag must have at least one checksum algorithm")

        self.fs.makedir(PAYLOAD_DIR, recreate=True)
        self._write_bagit_txt()

        # checksums for declared-but-not-yet-fetched files cannot be recalculated
        payload = payload_files(self.fs)
        onhand = set(payload)
        remote = OrderedDict()
        for entry in self.fetch:
            if entry.path not in onhand:
                remote[entry.path] = dict((alg, m.get(entry.path))
                                          for alg, m in self.manifests.items()
                                          if m.get(entry.path))

        # build the new manifests before the old ones are discarded
        fresh = OrderedDict((alg, PayloadManifest(alg, self.version, self.encoding))
                            for alg in self._algorithms)
        manifests = list(fresh.values())
        update_manifests(manifests, self.fs, payload)
        for path, checksums in remote.items():
            for alg, checksum in checksums.items():
                fresh[alg].add_entry(path, checksum)
            if len(checksums) < len(manifests):
                LOGGER.warning("%s: no checksum known for fetch destination %s",
                               self, path)

        self.clear_payload_manifests()
        self.manifests = fresh
        for m in manifests:
            m.write(self.fs)

        if self.extended:
            self._update_generated_tags()
            self.fs.writetext(BAGINFO_FILE,
                              "".join(l+"\n" for l in self.info.serialize()),
                              encoding=self.encoding)
        elif self.fs.isfile(BAGINFO_FILE):
            self.fs.remove(BAGINFO_FILE)

        self.fetch.write(self.fs)

        if self.extended:
            tagms = OrderedDict((alg, TagManifest(alg, self.version, self.encoding))
                                for alg in self._algorithms)
            update_manifests(list(tagms.values()), self.fs, tag_files(self.fs))
            self.clear_tag_manifests()
            self.tagmanifests = tagms
            for m in tagms.values():
                m.write(self.fs)
        else:
            self.clear_tag_manifests()

        self.changed = False
        LOGGER.info("Updated bag %s", self)

    def package(self, archive):
        """
        update the bag and write it out in serialized form.  The form is
        determined by the archive's file extension (.zip, .tar, .tar.gz,
        .tgz, or .tar.bz2).

        :param str archive:  the path to the output file
        """
        ext = _archive_ext(archive)
        if not ext:
            raise BagError("Unsupported serialization format for "+archive)

        self.update()
        if ext == ".zip":
            outfs = fs.zipfs.ZipFS(archive, write=True)
        else:
            outfs = fs.tarfs.TarFS(archive, write=True,
                                   compression=_tar_compression[ext])
        with outfs:
            copy_dir(self.fs, "/", outfs, self.name)
        LOGGER.info("Wrote %s to %s", self, archive)

    # Validation

    @property
    def errors(self):
        """
        the errors found by the last validation (or load)
        """
        return self.results.errors

    @property
    def warnings(self):
        """
        the warnings found by the last validation (or load)
        """
        return self.results.warnings

    def reset_errors_and_warnings(self):
        self.results.reset()

    def validate(self, required_tags=None):
        """
        validate the bag as it currently exists on disk.  Any errors and
        warnings found are available via the errors and warnings properties.

        :param list required_tags:  bag-info tags that must be present
        :return bool:  True if the bag is valid
        :raises BagError:  if the bag is missing its bagit.txt file or
                           payload directory
        """
        from ..validate.bag import BagValidator

        if self.changed:
            LOGGER.warning("%s: validating on-disk contents; in-memory changes "
                           "have not been written with update()", self)
        BagValidator(self, required_tags).validate(self.results)
        return self.results.ok()

    def is_valid(self, required_tags=None):
        return self.validate(required_tags)

    def close(self):
        """
        release the bag's filesystem and delete the temporary directory
        if the bag was extracted from a serialized file.
        """
        if self.fs:
            self.fs.close()
        if self._tmpdir and os.path.isdir(self._tmpdir):
            shutil.rmtree(self._tmpdir)
            self._tmpdir = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

def read_bagit_txt(filesys, results=None):
    """
    read the bagit.txt file from the given bag filesystem, returning its
    (name, value) tag pairs.  A byte-order mark at the start of the file is
    reported as an error.
    """
    try:
        content = filesys.readbytes(BAGIT_FILE)
    except FSError as ex:
        raise BagError("Unable to read bagit.txt: "+str(ex))

    if content.startswith(codecs.BOM_UTF8):
        if results is not None:
            results.add_error(BAGIT_FILE, "bagit.txt must not contain a byte-order mark")
        content = content[len(codecs.BOM_UTF8):]
    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError as ex:
        raise BagError("Unable to read bagit.txt: "+str(ex))

    return parse_tag_lines(text.splitlines(), results, BAGIT_FILE)

_ext_fs_lookup = OrderedDict([
    (".zip",      fs.zipfs.ZipFS),
    (".tar",      fs.tarfs.TarFS),
    (".tar.gz",   fs.tarfs.TarFS),
    (".tar.bz2",  fs.tarfs.TarFS),
    (".tgz",      fs.tarfs.TarFS)
])

_tar_compression = {
    ".tar": None,
    ".tar.gz": "gz",
    ".tgz": "gz",
    ".tar.bz2": "bz2"
}

def _archive_ext(location):
    for ext in _ext_fs_lookup.keys():
        if location.endswith(ext):
            return ext
    return None

def create_bag(bagdir, version=CURRENT_VERSION, algorithm=DEFAULT_ALGORITHM):
    """
    create a new bag in the given directory, which must not exist or be empty
    """
    return Bag.create(bagdir, version, algorithm)

def open_bag(location):
    """
    A factory function for opening a bag; it returns a Bag instance opened
    for a given bag location.  The location is examined to determine the
    form of the bag:  a directory, or a serialized bag (a zip or tar file).
    A serialized bag is extracted to a temporary directory which is deleted
    when the returned bag is closed.
    """
    if not location:
        raise ValueError("open_bag: empty location string")

    if os.path.isdir(location):
        return Bag(location)

    if not os.path.exists(location):
        raise BagError("Bag not found: "+location)

    ext = _archive_ext(location)
    if not ext:
        raise BagError("Bag serialization not recognized for "+location)

    tmpdir = tempfile.mkdtemp(prefix="bagkit_")
    try:
        with _ext_fs_lookup[ext](location) as arcfs:
            with fs.osfs.OSFS(tmpdir) as outfs:
                copy_fs(arcfs, outfs)
        bag = Bag(get_directory(tmpdir), location=location)
    except FSError as ex:
        shutil.rmtree(tmpdir)
        raise BagError("Unable to extract {0}: {1}".format(location, str(ex)))
    except BagError:
        shutil.rmtree(tmpdir)
        raise

    bag._tmpdir = tmpdir
    return bag

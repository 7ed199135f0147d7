"""
This module provides the validator implementation for the base BagIt
specification.  A validation pass always examines the bag as it exists on
disk; the in-memory model of a Bag instance is not consulted (except for
the order of its algorithms) nor changed.
"""
import codecs, logging
from collections import OrderedDict

from ..constants import (BAGIT_FILE, BAGINFO_FILE, PAYLOAD_DIR,
                         NOT_RECOMMENDED_ALGOS, NON_REPEATABLE_TAGS, Version)
from ..access.exceptions import BagError
from ..access.baginfo import BagInfo
from ..access.manifest import (PayloadManifest, TagManifest, classify_manifest,
                               manifest_algorithm, payload_files, tag_files,
                               PAYLOAD, TAG)
from ..access.fetch import FetchRegistry
from .base import Validator, ValidationResults

LOGGER = logging.getLogger(__name__)

FRESH   = "fresh"
RUNNING = "running"
VALID   = "valid"
INVALID = "invalid"

class BagValidator(Validator):
    """
    A validator that tests whether a bag complies with the BagIt
    specification.

    The validator moves from the FRESH state to RUNNING when validate() is
    called and ends in either VALID or INVALID.  Each call to validate()
    starts a new pass with empty results.
    """

    def __init__(self, bag, required_tags=None):
        """
        initialize the validator for a bag

        :param bag:  the target bag, either as a Bag instance or as the path
                     to a bag directory or serialized bag file
        :param list required_tags:  the names of bag-info tags that must be
                     present (e.g. as required by a BagIt profile)
        """
        if isinstance(bag, str):
            from ..access.bagit import open_bag
            bag = open_bag(bag)
        super(BagValidator, self).__init__(str(bag))
        self.bag = bag
        self.required_tags = list(required_tags or [])
        self.state = FRESH

    def validate(self, results=None):
        """
        run the validation tests, returning the results.  Any issues
        previously held in the given results are discarded first.

        :param ValidationResults results: a ValidationResults to add result
                             information to; if provided, this instance will
                             be the one returned by this method.
        :rtype: ValidationResults
        :raises BagError:  if the bag lacks a readable bagit.txt file or a
                           payload directory
        """
        out = results
        if out is None:
            out = ValidationResults(self.target)
        out.reset()
        self.state = RUNNING

        try:
            filesys = self.bag.fs
            version, encoding = self.validate_structure(filesys, out)
            out.version = str(version)
            self.validate_version(filesys, out, version, encoding)
            manifests = self.validate_manifests(filesys, out, version, encoding)
            self.validate_bag_info(filesys, out, version, encoding)
            self.validate_fetch(filesys, out, version, encoding, manifests)
        except BagError:
            self.state = INVALID
            raise

        self.state = (out.ok() and VALID) or INVALID
        LOGGER.info("%s: validation found %d errors and %d warnings",
                    self.target, len(out.errors), len(out.warnings))
        return out

    def _manifest_algorithms(self, filesys, scope):
        # on-disk manifest algorithms:  those registered with the bag first
        # (in registration order), followed by any others
        found = [manifest_algorithm(n) for n in sorted(filesys.listdir("/"))
                 if classify_manifest(n) == scope and filesys.isfile(n)]
        registered = getattr(self.bag, 'algorithms', [])
        return [a for a in registered if a in found] + \
               [a for a in found if a not in registered]

    def validate_structure(self, filesys, results):
        """
        ensure that the required files and directories exist and that
        bagit.txt is readable.

        :return:  a 2-tuple of the bag's Version and tag file encoding
        :raises BagError:  if bagit.txt or the payload directory is missing
                           or bagit.txt cannot be interpreted
        """
        from ..access.bagit import read_bagit_txt

        if not filesys.isfile(BAGIT_FILE):
            raise BagError("Expected bagit.txt does not exist in "+self.target)
        if not filesys.isdir(PAYLOAD_DIR):
            raise BagError("Expected data directory does not exist in "+
                           self.target)

        tags = OrderedDict(read_bagit_txt(filesys, results))
        for tag in ('BagIt-Version', 'Tag-File-Character-Encoding'):
            if tag not in tags:
                raise BagError("Missing required tag in bagit.txt: "+tag)

        try:
            version = Version.parse(tags['BagIt-Version'])
        except ValueError as ex:
            raise BagError(str(ex))
        if not version.is_supported():
            raise BagError("Unsupported bag version: "+str(version))

        encoding = tags['Tag-File-Character-Encoding']
        try:
            codecs.lookup(encoding)
        except LookupError:
            raise BagError("Unsupported encoding: "+encoding)

        if not self._manifest_algorithms(filesys, PAYLOAD):
            results.add_error(self.target, "No payload manifest files found")

        return version, encoding

    def validate_version(self, filesys, results, version, encoding):
        """
        apply the checks that depend on the bag's BagIt version
        """
        if version.requires_utf8() and \
           codecs.lookup(encoding).name != codecs.lookup("utf-8").name:
            results.add_warning(BAGIT_FILE, "Tag-File-Character-Encoding "+
                                "should be UTF-8 for BagIt version "+
                                str(version))

        if version >= "1.0":
            for alg in self._manifest_algorithms(filesys, PAYLOAD):
                if alg in NOT_RECOMMENDED_ALGOS:
                    results.add_warning("manifest-{0}.txt".format(alg),
                                        "Use of the {0} algorithm is not "
                                        "recommended".format(alg))

        if not version.validates_tag_manifests() and \
           self._manifest_algorithms(filesys, TAG):
            results.add_warning(self.target, "Tag manifests are not verified "+
                                "for BagIt version "+str(version))

    def validate_manifests(self, filesys, results, version, encoding):
        """
        load each payload manifest (and, since version 0.97, each tag
        manifest) from disk and reconcile it against the bag's files.

        :return:  the list of loaded PayloadManifest instances
        """
        out = []
        ondisk = payload_files(filesys)
        for alg in self._manifest_algorithms(filesys, PAYLOAD):
            m = PayloadManifest(alg, version, encoding).load(filesys, results)
            m.reconcile(filesys, results, ondisk)
            out.append(m)

        if version.validates_tag_manifests():
            ondisk = tag_files(filesys)
            for alg in self._manifest_algorithms(filesys, TAG):
                m = TagManifest(alg, version, encoding).load(filesys, results)
                m.reconcile(filesys, results, ondisk)

        return out

    def validate_bag_info(self, filesys, results, version, encoding):
        """
        check the contents of bag-info.txt (if it exists):  its syntax, the
        presence of required tags, the non-repetition of tags that should
        appear only once, and the Payload-Oxum value.
        """
        if not filesys.isfile(BAGINFO_FILE):
            for tag in self.required_tags:
                results.add_error(BAGINFO_FILE, "Required tag is missing: "+tag)
            return

        try:
            with filesys.open(BAGINFO_FILE, 'r', encoding=encoding) as fd:
                info = BagInfo.parse(list(fd), results)
        except UnicodeDecodeError as ex:
            results.add_error(BAGINFO_FILE, "Unable to read file: "+str(ex))
            return

        for tag in self.required_tags:
            if not info.has_tag(tag):
                results.add_error(BAGINFO_FILE, "Required tag is missing: "+tag)

        for tag in NON_REPEATABLE_TAGS:
            if len(info.get_values(tag)) > 1:
                results.add_warning(BAGINFO_FILE, "Tag should not be repeated: "+
                                    info.canonical_name(tag))

        self.validate_oxum(filesys, results, info)

    def validate_oxum(self, filesys, results, info):
        """
        check the Payload-Oxum tag value against the payload directory
        """
        oxum = info.get('Payload-Oxum')
        if oxum is None:
            return

        parts = oxum.split('.', 1)
        if len(parts) != 2 or not parts[0].isdigit() or not parts[1].isdigit():
            results.add_error(BAGINFO_FILE, "Malformed Payload-Oxum value: "+oxum)
            return

        oxum_bytes, oxum_files = int(parts[0]), int(parts[1])
        files = payload_files(filesys)
        nbytes = sum(filesys.getsize(f) for f in files)
        if oxum_files != len(files) or oxum_bytes != nbytes:
            results.add_error(BAGINFO_FILE,
                              "Payload-Oxum validation failed. Expected {0} files "
                              "and {1} bytes but found {2} files and {3} bytes"
                              .format(oxum_files, oxum_bytes, len(files), nbytes))

    def validate_fetch(self, filesys, results, version, encoding, manifests):
        """
        check the syntax of fetch.txt (if it exists) and cross-check its
        references against the payload manifests.
        """
        fetch = FetchRegistry(version, encoding).load(filesys, results)
        fetch.cross_check(manifests, results, filesys)

def validate(bagpath, required_tags=None):
    """
    validate the bag at the given location, returning the results

    :param str bagpath:  the path to a bag directory or serialized bag file
    :rtype: ValidationResults
    """
    valid8r = BagValidator(bagpath, required_tags)
    try:
        return valid8r.validate()
    finally:
        if isinstance(bagpath, str):
            valid8r.bag.close()

"""
Functions for resolving file paths against a bag's root directory.

Paths recorded in a bag (in manifests and fetch.txt) are always relative to
the bag's root directory, use forward slashes as delimiters, and are never
allowed to point outside of the bag.  The functions here do this resolution
arithmetically (i.e. without consulting the filesystem) so that they work
for paths that do not exist yet.
"""
import os, re

import fs.path
import fs.osfs
from fs.errors import IllegalBackReference, FSError

from ..constants import PAYLOAD_DIR
from .exceptions import BagError

_ossepre = re.compile(re.escape(os.sep))

def _to_slashes(path):
    if os.sep != '/':
        path = _ossepre.sub('/', path)
    return path

def resolve_relative(path, bagroot=None):
    """
    return the given path as a normalized path relative to the bag's root
    directory.  An empty string is returned if the path does not resolve to
    a location inside the bag.

    :param str path:     the path to resolve; this can either be an absolute
                         path that starts with bagroot or a path relative to
                         bagroot.
    :param str bagroot:  the absolute path to the bag's root directory
    """
    if not path:
        return ""
    path = _to_slashes(path)

    if bagroot:
        root = _to_slashes(bagroot).rstrip('/')
        if path == root:
            return ""
        if path.startswith(root + '/'):
            path = path[len(root)+1:]
        elif fs.path.isabs(path):
            # it might land in the bag after normalization
            try:
                path = fs.path.normpath(path)
            except IllegalBackReference:
                return ""
            if not path.startswith(root + '/'):
                return ""
            path = path[len(root)+1:]

    if path.startswith('/'):
        path = path[1:]

    try:
        # a '..' that would climb above the root raises rather than clamps
        out = fs.path.normpath(path)
    except IllegalBackReference:
        return ""

    out = out.lstrip('/')
    if out == '.':
        return ""
    return out

def in_payload(path, bagroot=None):
    """
    return True if the given path resolves to a location under the bag's
    payload directory (data/).  The payload directory itself is not
    considered to be in the payload.
    """
    rel = resolve_relative(path, bagroot)
    if not rel:
        return False
    parts = rel.split('/')
    return len(parts) > 1 and parts[0] == PAYLOAD_DIR

def base_in_data(path):
    """
    return the given bag-relative path with the payload directory prepended
    to it if it is not already there.
    """
    path = _to_slashes(path).lstrip('/')
    if not path.startswith(PAYLOAD_DIR + '/'):
        path = PAYLOAD_DIR + '/' + path
    return path

def get_directory(dirpath):
    """
    return the absolute path to the single subdirectory found within the
    given directory.  This is used to find the root of a bag extracted from
    a serialized (archive) file.

    :raises BagError:  if the directory contains no subdirectories or more
                       than one.
    """
    try:
        with fs.osfs.OSFS(dirpath) as dirfs:
            subdirs = [info.name for info in dirfs.scandir("/") if info.is_dir]
    except FSError as ex:
        raise BagError("Unable to read directory {0}: {1}".format(dirpath,
                                                                   str(ex)))

    if len(subdirs) == 0:
        raise BagError("No directory found in "+dirpath)
    if len(subdirs) > 1:
        raise BagError("Unable to determine the bag directory in {0}: found {1}"
                       .format(dirpath, ", ".join(sorted(subdirs))))

    return os.path.join(os.path.abspath(dirpath), subdirs[0])

def encode_filename(path):
    """
    percent-encode the characters in a file path that cannot appear
    literally in a manifest or fetch.txt file (as required since BagIt 1.0).
    """
    return path.replace("%", "%25").replace("\n", "%0A").replace("\r", "%0D")

def decode_filename(path):
    """
    reverse the encoding done by encode_filename()
    """
    path = re.sub(r"%0[Aa]", "\n", path)
    path = re.sub(r"%0[Dd]", "\r", path)
    return path.replace("%25", "%")

def is_dangerous(path):
    """
    return True if path looks dangerous, i.e. potentially operates outside
    the bag's directory structure (e.g. ~/.bashrc, ../../../secrets.json,
    /etc/passwd, D:\\sys32\\cmd.exe).  The path is expected to be given
    relative to the bag's root directory.
    """
    if fs.path.isabs(path) or re.match(r'^[A-Za-z]:[\\/]', path):
        return True
    if path.startswith('~'):
        return True
    return not resolve_relative(path)

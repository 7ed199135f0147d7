# encoding: utf-8
import os, logging
import unittest as test
from unittest import mock

import requests
from fs.memoryfs import MemoryFS

import bagkit.access.fetch as fetch
from bagkit.access.manifest import PayloadManifest
from bagkit.access.exceptions import BagError, BagFormatError
from bagkit.validate.base import ValidationResults

logging.basicConfig(filename='test.log', level=logging.DEBUG)
logging.raiseExceptions = True

def _response(blocks, status=200):
    resp = mock.MagicMock()
    resp.__enter__.return_value = resp
    resp.iter_content.return_value = iter(blocks)
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError("404 Not Found")
    return resp

class TestFetchRegistry(test.TestCase):

    def setUp(self):
        self.reg = fetch.FetchRegistry()

    def test_parse_line(self):
        entry = self.reg.parse_line("http://example.org/a.txt 12 data/a.txt\n")
        self.assertEqual(entry, fetch.FetchEntry("http://example.org/a.txt", 12,
                                                 "data/a.txt"))

        entry = self.reg.parse_line("https://example.org/b - data/sub/b file.txt")
        self.assertIsNone(entry.size)
        self.assertEqual(entry.path, "data/sub/b file.txt")

        entry = self.reg.parse_line("ftp://example.org/c 5 data/100%25.txt")
        self.assertEqual(entry.path, "data/100%.txt")

    def test_parse_bad_lines(self):
        for bad in ["http://example.org/a.txt 12",
                    "notaurl 12 data/a.txt",
                    "file:///etc/passwd 12 data/a.txt",
                    "http://example.org/a.txt twelve data/a.txt",
                    "http://example.org/a.txt -12 data/a.txt",
                    "http://example.org/a.txt 12 bag-info.txt",
                    "http://example.org/a.txt 12 data/../../a.txt",
                    "http://example.org/a.txt 12 /data/a.txt"]:
            with self.assertRaises(BagFormatError, msg=bad):
                self.reg.parse_line(bad)

    def test_unknown_size_gate(self):
        reg = fetch.FetchRegistry("0.96")
        with self.assertRaises(BagFormatError):
            reg.parse_line("http://example.org/a.txt - data/a.txt")
        with self.assertRaises(BagFormatError):
            reg.add("http://example.org/a.txt", "data/a.txt")
        self.assertEqual(reg.add("http://example.org/a.txt", "data/a.txt", 3).size, 3)

        reg = fetch.FetchRegistry("0.97")
        self.assertIsNone(reg.parse_line("http://example.org/a.txt - data/a.txt").size)

    def test_add_remove(self):
        self.reg.add("http://example.org/a.txt", "data/a.txt", 10)
        self.reg.add("http://example.org/b.txt", "data/./b.txt")
        self.assertEqual(len(self.reg), 2)
        self.assertIn("data/b.txt", self.reg)
        self.assertEqual([e.path for e in self.reg], ["data/a.txt", "data/b.txt"])

        with self.assertRaises(BagError):
            self.reg.add("http://example.org/again.txt", "data/a.txt")

        self.assertTrue(self.reg.remove("data/a.txt"))
        self.assertFalse(self.reg.remove("data/a.txt"))
        self.assertIsNone(self.reg.get("data/a.txt"))
        self.assertEqual(self.reg.get("data/b.txt").url, "http://example.org/b.txt")

    def test_write_load(self):
        with MemoryFS() as mfs:
            self.reg.add("http://example.org/a.txt", "data/a.txt", 10)
            self.reg.add("http://example.org/b.txt", "data/50%.txt")
            self.reg.write(mfs)
            self.assertEqual(mfs.readtext("fetch.txt"),
                             "http://example.org/a.txt 10 data/a.txt\n"
                             "http://example.org/b.txt - data/50%25.txt\n")

            reg = fetch.FetchRegistry().load(mfs)
            self.assertEqual(list(reg), list(self.reg))

            self.reg.remove("data/a.txt")
            self.reg.remove("data/50%.txt")
            self.reg.write(mfs)
            self.assertFalse(mfs.exists("fetch.txt"))

    def test_load_errors(self):
        with MemoryFS() as mfs:
            mfs.writetext("fetch.txt",
                          "http://example.org/a.txt 10 data/a.txt\n"
                          "garbage\n"
                          "http://example.org/b.txt 10 data/a.txt\n"
                          "http://example.org/c.txt 10 data/c.txt\n")
            results = ValidationResults("testbag")
            reg = fetch.FetchRegistry().load(mfs, results)

            self.assertEqual([e.path for e in reg], ["data/a.txt", "data/c.txt"])
            self.assertEqual([e.file for e in results.errors],
                             ["fetch.txt:2", "fetch.txt:3"])

    def test_cross_check(self):
        manifest = PayloadManifest("sha256")
        manifest.add_entry("data/a.txt", "abcd")
        self.reg.add("http://example.org/a.txt", "data/a.txt", 10)
        self.reg.add("http://example.org/b.txt", "data/b.txt")

        results = ValidationResults("testbag")
        with MemoryFS() as mfs:
            mfs.makedirs("data")
            mfs.writebytes("data/a.txt", b"short")
            self.reg.cross_check([manifest], results, mfs)

        self.assertTrue(results.ok())
        self.assertEqual(len(results.warnings), 2)
        self.assertEqual(results.warnings[0].file, "data/a.txt")
        self.assertIn("data/b.txt", results.warnings[1].message)

class TestDownload(test.TestCase):

    def setUp(self):
        self.reg = fetch.FetchRegistry()
        self.fs = MemoryFS()

    def tearDown(self):
        self.fs.close()

    @mock.patch("bagkit.access.fetch.requests.get")
    def test_download(self, get):
        get.return_value = _response([b"hello ", b"world"])
        entry = self.reg.add("http://example.org/a.txt", "data/sub/a.txt", 11)

        self.assertEqual(self.reg.download(self.fs, entry), 11)
        self.assertEqual(self.fs.readbytes("data/sub/a.txt"), b"hello world")
        get.assert_called_once_with("http://example.org/a.txt", stream=True,
                                    timeout=fetch.DEFAULT_TIMEOUT)

    @mock.patch("bagkit.access.fetch.requests.get")
    def test_download_wrong_size(self, get):
        get.return_value = _response([b"hello"])
        entry = self.reg.add("http://example.org/a.txt", "data/a.txt", 11)

        with self.assertRaises(BagError):
            self.reg.download(self.fs, entry)
        self.assertFalse(self.fs.exists("data/a.txt"))

    @mock.patch("bagkit.access.fetch.requests.get")
    def test_download_failure(self, get):
        get.return_value = _response([], 404)
        entry = self.reg.add("http://example.org/a.txt", "data/a.txt")

        with self.assertRaises(BagError):
            self.reg.download(self.fs, entry)
        self.assertFalse(self.fs.exists("data/a.txt"))

        get.side_effect = requests.ConnectionError("no route")
        with self.assertRaises(BagError):
            self.reg.download(self.fs, entry)

    @mock.patch("bagkit.access.fetch.requests.get")
    def test_download_all(self, get):
        get.side_effect = lambda *a, **kw: _response([b"abc"])
        self.reg.add("http://example.org/a.txt", "data/a.txt", 3)
        self.reg.add("http://example.org/b.txt", "data/b.txt")
        self.fs.makedirs("data")
        self.fs.writebytes("data/a.txt", b"xyz")

        self.assertEqual(self.reg.download_all(self.fs), ["data/b.txt"])
        self.assertEqual(self.fs.readbytes("data/a.txt"), b"xyz")
        self.assertEqual(self.reg.download_all(self.fs, overwrite=True),
                         ["data/a.txt", "data/b.txt"])
        self.assertEqual(self.fs.readbytes("data/a.txt"), b"abc")


if __name__ == '__main__':
    test.main()

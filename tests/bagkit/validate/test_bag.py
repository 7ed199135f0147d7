# encoding: utf-8
import os, logging, hashlib
import tempfile, shutil
import unittest as test

import bagkit.validate.bag as bagv
import bagkit.validate.base as val
from bagkit.access.bagit import create_bag, open_bag
from bagkit.access.exceptions import BagError, BagValidationError

logging.basicConfig(filename='test.log', level=logging.DEBUG)
logging.raiseExceptions = True

class TestBagValidator(test.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="_test_bagv.")
        self.bagdir = os.path.join(self.tmpdir, "testbag")
        self.bag = create_bag(self.bagdir)
        self.bag.create_file("one", "one.txt")
        self.bag.create_file("two", "sub/two.txt")
        self.bag.update()

    def tearDown(self):
        self.bag.close()
        if os.path.exists(self.tmpdir):
            shutil.rmtree(self.tmpdir)

    def path(self, *parts):
        return os.path.join(self.bagdir, *parts)

    def write(self, relpath, content, mode='w'):
        with open(self.path(*relpath.split('/')), mode) as fd:
            fd.write(content)

    def test_validate(self):
        valid8r = bagv.BagValidator(self.bag)
        self.assertEqual(valid8r.state, bagv.FRESH)

        results = valid8r.validate()
        self.assertEqual(valid8r.state, bagv.VALID)
        self.assertTrue(results.ok())
        self.assertEqual(results.count(), 0)
        self.assertEqual(results.version, "1.0")

        self.assertTrue(valid8r.is_valid())
        valid8r.ensure_valid()

    def test_validate_path(self):
        valid8r = bagv.BagValidator(self.bagdir)
        self.assertTrue(valid8r.validate().ok())
        valid8r.bag.close()

        zipfile = os.path.join(self.tmpdir, "testbag.zip")
        self.bag.package(zipfile)
        results = bagv.validate(zipfile)
        self.assertTrue(results.ok())
        self.assertEqual(results.target, zipfile)

    def test_modified_file(self):
        self.bag.add_algorithm("sha1")
        self.bag.update()
        self.write("data/one.txt", "changed")

        valid8r = bagv.BagValidator(self.bag)
        results = valid8r.validate()
        self.assertEqual(valid8r.state, bagv.INVALID)
        self.assertEqual(len(results.errors), 2)
        self.assertTrue(all(e.file == "data/one.txt" for e in results.errors))
        self.assertIn("for sha512", results.errors[0].message)
        self.assertIn("for sha1", results.errors[1].message)

        # sha1 is not recommended for 1.0 bags
        self.assertEqual(len(results.warnings), 1)
        self.assertEqual(results.warnings[0].file, "manifest-sha1.txt")

        with self.assertRaises(BagValidationError):
            valid8r.ensure_valid()

    def test_untracked_file(self):
        self.bag.add_algorithm("sha256")
        self.bag.update()
        self.write("data/oops.txt", "")

        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual([e.message for e in results.errors],
                         ["file not in manifest manifest-sha512.txt",
                          "file not in manifest manifest-sha256.txt"])
        self.assertTrue(all(e.file == "data/oops.txt" for e in results.errors))

    def test_missing_file(self):
        os.remove(self.path("data", "sub", "two.txt"))
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.errors), 1)
        self.assertEqual(results.errors[0].file, "data/sub/two.txt")
        self.assertIn("payload file missing", results.errors[0].message)

    def test_reads_disk_only(self):
        self.write("manifest-sha512.txt", "abcd data/one.txt\n")
        before = self.bag.manifests["sha512"].paths()

        results = bagv.BagValidator(self.bag).validate()
        self.assertFalse(results.ok())
        self.assertEqual(self.bag.manifests["sha512"].paths(), before)
        self.assertEqual(len(before), 2)

    def test_reset_between_runs(self):
        self.write("data/oops.txt", "")
        valid8r = bagv.BagValidator(self.bag)
        results = val.ValidationResults("goob")
        results.add_warning("stale", "left over")

        self.assertIs(valid8r.validate(results), results)
        self.assertEqual(results.count(), 1)
        valid8r.validate(results)
        self.assertEqual(results.count(), 1)

        os.remove(self.path("data", "oops.txt"))
        valid8r.validate(results)
        self.assertEqual(valid8r.state, bagv.VALID)
        self.assertEqual(results.count(), 0)

    def test_missing_bagit_txt(self):
        os.remove(self.path("bagit.txt"))
        valid8r = bagv.BagValidator(self.bag)
        with self.assertRaises(BagError):
            valid8r.validate()
        self.assertEqual(valid8r.state, bagv.INVALID)

        with self.assertRaises(BagError):
            self.bag.validate()

    def test_missing_data_dir(self):
        shutil.rmtree(self.path("data"))
        valid8r = bagv.BagValidator(self.bag)
        with self.assertRaises(BagError):
            valid8r.validate()
        self.assertEqual(valid8r.state, bagv.INVALID)

    def test_bad_bagit_txt(self):
        for content in ["BagIt-Version: 2.0\nTag-File-Character-Encoding: UTF-8\n",
                        "BagIt-Version: 1.0\nTag-File-Character-Encoding: GOOB\n",
                        "BagIt-Version: 1.0\n"]:
            self.write("bagit.txt", content)
            with self.assertRaises(BagError):
                bagv.BagValidator(self.bag).validate()

    def test_bagit_txt_bom(self):
        self.write("bagit.txt", b"\xef\xbb\xbfBagIt-Version: 1.0\n"
                                b"Tag-File-Character-Encoding: UTF-8\n", 'wb')
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.errors), 1)
        self.assertEqual(results.errors[0].file, "bagit.txt")
        self.assertIn("byte-order mark", results.errors[0].message)

    def test_encoding_warning(self):
        self.write("bagit.txt", "BagIt-Version: 1.0\n"
                                "Tag-File-Character-Encoding: ISO-8859-1\n")
        results = bagv.BagValidator(self.bag).validate()
        self.assertTrue(results.ok())
        self.assertEqual(len(results.warnings), 1)
        self.assertEqual(results.warnings[0].file, "bagit.txt")

    def test_no_payload_manifest(self):
        os.remove(self.path("manifest-sha512.txt"))
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.errors), 1)
        self.assertIn("No payload manifest", results.errors[0].message)

    def test_bad_manifest_lines(self):
        self.write("manifest-sha512.txt", "garbage\n", 'a')
        self.write("manifest-sha512.txt", "abcd /etc/passwd\n", 'a')
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual([e.file for e in results.errors],
                         ["manifest-sha512.txt:3", "manifest-sha512.txt:4"])

    def test_duplicate_manifest_entry(self):
        # the same checksum repeated is not reported
        good = hashlib.sha512(b"one").hexdigest()
        self.write("manifest-sha512.txt", good+" data/one.txt\n", 'a')
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(results.count(), 0)

        # a different checksum replaces the earlier one
        self.write("manifest-sha512.txt", "abcd data/one.txt\n", 'a')
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.warnings), 1)
        self.assertEqual(results.warnings[0].file, "manifest-sha512.txt:4")
        self.assertIn("duplicate entry", results.warnings[0].message)
        self.assertEqual(len(results.errors), 1)
        self.assertEqual(results.errors[0].file, "data/one.txt")
        self.assertIn("checksum mismatch", results.errors[0].message)

        # ...and the last value listed is the one checked
        self.write("manifest-sha512.txt", good+" data/one.txt\n", 'a')
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual([w.file for w in results.warnings],
                         ["manifest-sha512.txt:4", "manifest-sha512.txt:5"])
        self.assertTrue(results.ok())

    def test_tag_manifest(self):
        self.bag.add_bag_info_tag("Contact-Name", "Bob")
        self.bag.update()
        self.assertTrue(bagv.BagValidator(self.bag).validate().ok())

        self.write("bag-info.txt", "Contact-Name: Alice\n", 'a')
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.errors), 1)
        self.assertEqual(results.errors[0].file, "bag-info.txt")
        self.assertIn("checksum mismatch", results.errors[0].message)

        self.write("extra-tags.txt", "extra")
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.errors), 2)
        self.assertEqual(results.errors[1].file, "extra-tags.txt")

    def test_bag_info(self):
        self.bag.add_bag_info_tag("Contact-Name", "Bob")
        self.bag.update()
        self.bag.clear_tag_manifests()

        self.write("bag-info.txt", "Contact-Name: Bob\n"
                                   "Payload-Oxum: 6.2\n"
                                   "Payload-Oxum: 6.2\n")
        results = bagv.BagValidator(self.bag, ["Contact-Name"]).validate()
        self.assertTrue(results.ok())
        self.assertEqual(len(results.warnings), 1)
        self.assertIn("Payload-Oxum", results.warnings[0].message)

        results = bagv.BagValidator(self.bag, ["Source-Organization"]).validate()
        self.assertEqual(len(results.errors), 1)
        self.assertIn("Source-Organization", results.errors[0].message)

        self.write("bag-info.txt", "Payload-Oxum: 7.2\n")
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual(len(results.errors), 1)
        self.assertIn("Payload-Oxum", results.errors[0].message)

        self.write("bag-info.txt", "Payload-Oxum: many\nno colon\n")
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual([e.file for e in results.errors],
                         ["bag-info.txt:2", "bag-info.txt"])

    def test_required_tags_without_bag_info(self):
        self.assertFalse(self.bag.validate(["Contact-Name"]))
        self.assertEqual(len(self.bag.errors), 1)
        self.assertEqual(self.bag.errors[0].file, "bag-info.txt")

    def test_fetch(self):
        self.write("fetch.txt", "http://example.org/one.txt 3 data/one.txt\n"
                                "http://example.org/else.txt - data/else.txt\n"
                                "http://example.org/bad.txt 3 ../bad.txt\n")
        results = bagv.BagValidator(self.bag).validate()
        self.assertEqual([e.file for e in results.errors], ["fetch.txt:3"])
        self.assertEqual(len(results.warnings), 1)
        self.assertIn("data/else.txt", results.warnings[0].message)

    def test_not_recommended_algorithm(self):
        self.bag.set_algorithm("md5")
        self.bag.update()
        results = bagv.BagValidator(self.bag).validate()
        self.assertTrue(results.ok())
        self.assertEqual(len(results.warnings), 1)
        self.assertEqual(results.warnings[0].file, "manifest-md5.txt")

class TestOlderVersions(test.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp(prefix="_test_bagv.")

    def tearDown(self):
        if os.path.exists(self.tmpdir):
            shutil.rmtree(self.tmpdir)

    def make_bag(self, version):
        bag = create_bag(os.path.join(self.tmpdir, "bag"+version), version)
        bag.set_algorithm("md5")
        bag.add_bag_info_tag("Contact-Name", "Bob")
        bag.create_file("one", "one.txt")
        bag.update()
        with open(os.path.join(bag.path, "bag-info.txt"), 'a') as fd:
            fd.write("Contact-Name: Alice\n")
        return bag

    def test_096(self):
        bag = self.make_bag("0.96")
        try:
            self.assertTrue(bag.validate())
            self.assertEqual(len(bag.warnings), 1)
            self.assertIn("not verified", bag.warnings[0].message)
            self.assertEqual(bag.results.version, "0.96")
        finally:
            bag.close()

    def test_097(self):
        bag = self.make_bag("0.97")
        try:
            self.assertFalse(bag.validate())
            self.assertEqual(len(bag.errors), 1)
            self.assertEqual(bag.errors[0].file, "bag-info.txt")
            self.assertEqual(len(bag.warnings), 0)
        finally:
            bag.close()

    def test_097_unencoded_paths(self):
        bag = create_bag(os.path.join(self.tmpdir, "bag097"), "0.97")
        try:
            bag.create_file("pct", "100%.txt")
            bag.update()
            with open(os.path.join(bag.path, "manifest-sha512.txt")) as fd:
                self.assertIn(" data/100%.txt", fd.read())
            self.assertTrue(bag.validate())
        finally:
            bag.close()

        with open_bag(os.path.join(self.tmpdir, "bag097")) as bag:
            self.assertIn("data/100%.txt", bag.manifests["sha512"])


if __name__ == '__main__':
    test.main()

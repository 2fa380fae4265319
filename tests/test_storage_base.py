import io
import pathlib
import tempfile
import unittest as ut
from gcstore.storage.base import (
    join_object_path, as_directory_prefix, copy_stream, local_file_error_wrap,
    ObjectLocator, ObjectAttributes, ListingQuery, StorageError, ListingError,
)
from gcstore.util import HaltFlag, HaltInterrupt
from gcstore.exc import GCStoreError


class _CountdownHaltFlag(HaltFlag):

    def __init__(self, checks: int):
        self._checks = checks

    def _should_continue(self) -> bool:
        self._checks -= 1
        return self._checks >= 0


class TestPathJoin(ut.TestCase):

    def test_prefix_and_name(self):
        self.assertEqual(join_object_path("a/b/", "c.txt"), "a/b/c.txt")

    def test_name_only(self):
        self.assertEqual(join_object_path("", "a/b/c.txt"), "a/b/c.txt")

    def test_directory_prefix_drops_trailing_separator(self):
        self.assertEqual(join_object_path("a/b/", ""), "a/b")

    def test_collapses_separators(self):
        self.assertEqual(join_object_path("a//b/", "/c"), "a/b/c")

    def test_resolves_dots(self):
        self.assertEqual(join_object_path("a/./b/../c", "d"), "a/c/d")

    def test_leading_double_separator(self):
        self.assertEqual(join_object_path("//a", "b"), "/a/b")

    def test_empty(self):
        self.assertEqual(join_object_path("", ""), "")
        self.assertEqual(join_object_path(), "")


class TestDirectoryPrefix(ut.TestCase):

    def test_adds_separator(self):
        self.assertEqual(as_directory_prefix("foo"), "foo/")

    def test_keeps_single_separator(self):
        self.assertEqual(as_directory_prefix("foo/"), "foo/")

    def test_trims_spaces_and_separators(self):
        self.assertEqual(as_directory_prefix("foo/bar// "), "foo/bar/")


class TestObjectLocator(ut.TestCase):

    def test_from_url(self):
        loc = ObjectLocator.from_url("gs://bucket/some/path.txt")
        self.assertEqual(loc.bucket, "bucket")
        self.assertEqual(loc.path, "some/path.txt")
        self.assertEqual(loc.url(), "gs://bucket/some/path.txt")

    def test_equality(self):
        self.assertEqual(ObjectLocator("b", "p"), ObjectLocator("b", "p"))
        self.assertNotEqual(ObjectLocator("b", "p"), ObjectLocator("b2", "p"))
        self.assertEqual(len({ObjectLocator("b", "p"), ObjectLocator("b", "p")}), 1)

    def test_bad_scheme(self):
        with self.assertRaises(StorageError) as h:
            ObjectLocator.from_url("https://bucket/path")
        self.assertEqual(h.exception.internal_code, "STORAGE-1000")

    def test_missing_bucket(self):
        with self.assertRaises(StorageError) as h:
            ObjectLocator.from_url("gs:///path")
        self.assertEqual(h.exception.internal_code, "STORAGE-1001")


class TestObjectAttributes(ut.TestCase):

    def test_file_entry(self):
        attrs = ObjectAttributes("bucket", name="a/b.txt", size=3)
        self.assertFalse(attrs.is_dir())
        self.assertEqual(attrs.path(), "a/b.txt")
        self.assertEqual(attrs.locator(), ObjectLocator("bucket", "a/b.txt"))

    def test_directory_entry(self):
        attrs = ObjectAttributes("bucket", prefix="a/sub/")
        self.assertTrue(attrs.is_dir())
        self.assertEqual(attrs.path(), "a/sub")


class TestListingQuery(ut.TestCase):

    def test_recursive(self):
        self.assertTrue(ListingQuery("b", "p/", "").recursive())
        self.assertFalse(ListingQuery("b", "p/", "/").recursive())


class TestErrors(ut.TestCase):

    def test_base_error_arguments(self):
        ex = GCStoreError("bad thing", "GEN", 5, True)
        self.assertEqual(ex.internal_code, "GEN-5")
        self.assertTrue(ex.is_recoverable)
        self.assertEqual(GCStoreError("bad thing").internal_code, "")

    def test_storage_error_code(self):
        ex = StorageError("bad thing", 2004)
        self.assertIsInstance(ex, GCStoreError)
        self.assertEqual(ex.internal_code, "STORAGE-2004")
        self.assertIn("[STORAGE-2004]", str(ex))
        self.assertFalse(ex.is_recoverable)

    def test_listing_error_not_recoverable(self):
        ex = ListingError("broken")
        self.assertIsInstance(ex, StorageError)
        self.assertEqual(ex.internal_code, "STORAGE-3300")
        self.assertFalse(ex.is_recoverable)

    def test_local_file_not_found(self):
        opener = local_file_error_wrap(open)
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(StorageError) as h:
                opener(pathlib.Path(d) / "missing.txt", "rb")
            self.assertEqual(h.exception.internal_code, "STORAGE-1002")
            self.assertIsInstance(h.exception.__cause__, FileNotFoundError)

    def test_local_file_is_directory(self):
        opener = local_file_error_wrap(open)
        with tempfile.TemporaryDirectory() as d:
            with self.assertRaises(StorageError) as h:
                opener(pathlib.Path(d), "rb")
            self.assertIn(h.exception.internal_code, ("STORAGE-1004", "STORAGE-1003"))


class TestCopyStream(ut.TestCase):

    def test_copy_in_chunks(self):
        dest = io.BytesIO()
        total = copy_stream(io.BytesIO(b"hello world"), dest, 3)
        self.assertEqual(total, 11)
        self.assertEqual(dest.getvalue(), b"hello world")

    def test_copy_empty(self):
        dest = io.BytesIO()
        self.assertEqual(copy_stream(io.BytesIO(b""), dest, 3), 0)
        self.assertEqual(dest.getvalue(), b"")

    def test_halt_between_chunks(self):
        dest = io.BytesIO()
        with self.assertRaises(HaltInterrupt):
            copy_stream(io.BytesIO(b"hello world"), dest, 3, _CountdownHaltFlag(1))
        self.assertEqual(dest.getvalue(), b"hel")

    def test_read_error_is_converted(self):
        class _Broken(io.BytesIO):
            def read(self, size=-1):
                raise OSError("read failed")
        with self.assertRaises(StorageError) as h:
            copy_stream(_Broken(), io.BytesIO(), 3,
                        read_error=lambda ex: StorageError("read side", 1),
                        write_error=lambda ex: StorageError("write side", 2))
        self.assertEqual(h.exception.internal_code, "STORAGE-1")
        self.assertIsInstance(h.exception.__cause__, OSError)

    def test_write_error_is_converted(self):
        class _Broken(io.BytesIO):
            def write(self, b):
                raise OSError("write failed")
        with self.assertRaises(StorageError) as h:
            copy_stream(io.BytesIO(b"hello"), _Broken(), 3,
                        read_error=lambda ex: StorageError("read side", 1),
                        write_error=lambda ex: StorageError("write side", 2))
        self.assertEqual(h.exception.internal_code, "STORAGE-2")
        self.assertIsInstance(h.exception.__cause__, OSError)

    def test_errors_propagate_without_converters(self):
        class _Broken(io.BytesIO):
            def write(self, b):
                raise OSError("write failed")
        with self.assertRaises(OSError):
            copy_stream(io.BytesIO(b"hello"), _Broken(), 3)

    def test_halt_is_not_converted(self):
        with self.assertRaises(HaltInterrupt):
            copy_stream(io.BytesIO(b"hello world"), io.BytesIO(), 3, _CountdownHaltFlag(1),
                        read_error=lambda ex: StorageError("read side", 1))

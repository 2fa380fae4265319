from __future__ import annotations
import datetime
import functools
import posixpath
import typing as t
from urllib.parse import urlparse
from gcstore.util import HaltFlag, GCStoreError


DEFAULT_CHUNK_SIZE = 2621440

SEPARATOR = "/"


class StorageError(GCStoreError):
    """Error class specifically for storage errors."""

    def __init__(self, msg, code, is_recoverable: bool = False):
        super().__init__(msg, "STORAGE", code, is_recoverable=is_recoverable)


class ListingError(StorageError):
    """Raised when iterating over a listing fails part way through. Not safe to retry."""

    def __init__(self, msg, code: int = 3300):
        super().__init__(msg, code, False)


def local_file_error_wrap(cb):
    """Converts typical local file-system errors into appropriate StorageErrors with recoverable set properly."""

    @functools.wraps(cb)
    def _inner(*args, **kwargs):
        try:
            return cb(*args, **kwargs)
        except FileNotFoundError as ex:
            raise StorageError(f"Local file not found", 1002) from ex
        except PermissionError as ex:
            raise StorageError(f"Access to local file denied", 1003, True) from ex
        except IsADirectoryError as ex:
            raise StorageError(f"Local file is a directory", 1004) from ex
        except OSError as ex:
            raise StorageError(f"Exception processing local file: {ex.__class__.__name__}: {str(ex)}", 1005) from ex

    return _inner


def join_object_path(*parts: str) -> str:
    """Join path components the way object names are joined in the store.

        Empty components are ignored, redundant separators are collapsed,
        '.' and '..' are resolved and any trailing separator is dropped.
    """
    non_empty = [p for p in parts if p]
    if not non_empty:
        return ""
    joined = posixpath.normpath(SEPARATOR.join(non_empty))
    # normpath keeps a leading '//' as-is
    if joined.startswith("//"):
        joined = SEPARATOR + joined.lstrip(SEPARATOR)
    return joined


def as_directory_prefix(path: str) -> str:
    """Force exactly one trailing separator, so that 'foo' never matches 'foobar'."""
    return path.rstrip(" " + SEPARATOR) + SEPARATOR


def read_in_chunks(readable, buffer_size: int, halt_flag: t.Optional[HaltFlag] = None) -> t.Iterable[bytes]:
    """Read in chunks from a readable object."""
    if halt_flag:
        halt_flag.check_continue(True)
    x = readable.read(buffer_size)
    while x:
        yield x
        if halt_flag:
            halt_flag.check_continue(True)
        x = readable.read(buffer_size)


def copy_stream(source,
                dest,
                buffer_size: int,
                halt_flag: t.Optional[HaltFlag] = None,
                read_error: t.Optional[t.Callable[[Exception], Exception]] = None,
                write_error: t.Optional[t.Callable[[Exception], Exception]] = None) -> int:
    """Copy everything from a readable into a writable, returning the bytes written.

        read_error and write_error, when given, build the exception raised in
        place of an error from the source or the destination respectively.
    """
    total = 0
    chunks = read_in_chunks(source, buffer_size, halt_flag)
    while True:
        try:
            chunk = next(chunks, None)
        except Exception as ex:
            if read_error is None:
                raise
            raise read_error(ex) from ex
        if chunk is None:
            return total
        try:
            dest.write(chunk)
        except Exception as ex:
            if write_error is None:
                raise
            raise write_error(ex) from ex
        total += len(chunk)


class ObjectLocator:
    """Identifies an object by bucket and path."""

    def __init__(self, bucket: str, path: str):
        self._bucket = bucket
        self._path = path

    @property
    def bucket(self) -> str:
        return self._bucket

    @property
    def path(self) -> str:
        return self._path

    def url(self) -> str:
        return f"gs://{self._bucket}/{self._path}"

    def __str__(self):
        return self.url()

    def __repr__(self):
        return f"ObjectLocator({self._bucket!r}, {self._path!r})"

    def __eq__(self, other):
        if not isinstance(other, ObjectLocator):
            return NotImplemented
        return self._bucket == other._bucket and self._path == other._path

    def __hash__(self):
        return hash((self._bucket, self._path))

    @staticmethod
    def from_url(url: str) -> ObjectLocator:
        """Parse a gs://bucket/path URL."""
        pieces = urlparse(url)
        if pieces.scheme != "gs":
            raise StorageError(f"Not a gs:// URL: [{url}]", 1000)
        if not pieces.netloc:
            raise StorageError(f"Missing bucket name in [{url}]", 1001)
        return ObjectLocator(pieces.netloc, pieces.path.lstrip(SEPARATOR))


class ObjectAttributes:
    """Metadata about an object or a synthetic directory entry returned by a listing.

        Directory entries only exist for delimited listings; they have a prefix
        but no name. Real objects have a name and an empty prefix.
    """

    def __init__(self,
                 bucket: str,
                 name: str = "",
                 prefix: str = "",
                 size: t.Optional[int] = None,
                 content_type: t.Optional[str] = None,
                 updated: t.Optional[datetime.datetime] = None):
        self.bucket = bucket
        self.name = name or ""
        self.prefix = prefix or ""
        self.size = size
        self.content_type = content_type
        self.updated = updated

    def path(self) -> str:
        return join_object_path(self.prefix, self.name)

    def is_dir(self) -> bool:
        return bool(self.prefix) and not self.name

    def locator(self) -> ObjectLocator:
        return ObjectLocator(self.bucket, self.path())

    def __repr__(self):
        return f"ObjectAttributes({self.bucket!r}, name={self.name!r}, prefix={self.prefix!r})"

    @staticmethod
    def from_blob(blob) -> ObjectAttributes:
        return ObjectAttributes(
            blob.bucket.name,
            name=blob.name,
            size=blob.size,
            content_type=blob.content_type,
            updated=blob.updated
        )


class ListingQuery:
    """Prefix and delimiter for listing a bucket.

        An empty delimiter lists every object under the prefix; "/" lists only
        the direct children, including sub-directories.
    """

    def __init__(self, bucket: str, prefix: str, delimiter: str = ""):
        self.bucket = bucket
        self.prefix = prefix
        self.delimiter = delimiter

    def recursive(self) -> bool:
        return self.delimiter == ""

    def __repr__(self):
        return f"ListingQuery({self.bucket!r}, {self.prefix!r}, {self.delimiter!r})"

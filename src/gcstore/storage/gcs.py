"""Google Cloud Storage client wrapper.

    Every operation forwards to the google-cloud-storage client handle held by
    an ObjectStoreClient. Calls are given the configured timeout and never
    retried; failures are raised as StorageError with the vendor exception
    chained as the cause.
"""
from __future__ import annotations
import functools
import io
import pathlib
import typing as t
import requests
import urllib3.exceptions
import zrlog
import zirconium as zr
from autoinject import injector
from google.cloud import storage
import google.api_core.exceptions as gexc
import google.auth.exceptions as gae
from gcstore.util import HaltFlag, ConfigError
from .base import (
    StorageError, ListingError, ListingQuery, ObjectAttributes, ObjectLocator,
    DEFAULT_CHUNK_SIZE, SEPARATOR, as_directory_prefix, copy_stream, local_file_error_wrap,
)


DEFAULT_TIMEOUT = 60.0

LOCAL_READ_FAILED = 1006
LOCAL_WRITE_FAILED = 1007
REMOTE_READ_FAILED = 3201
REMOTE_WRITE_FAILED = 3204


def is_recoverable(ex: BaseException) -> bool:
    """Check if an error is of the sort that might go away if tried again later."""
    if isinstance(ex, StorageError):
        return ex.is_recoverable
    if isinstance(ex, (requests.Timeout, requests.ConnectionError, urllib3.exceptions.ConnectTimeoutError)):
        return True
    if isinstance(ex, (gexc.TooManyRequests, gexc.ServiceUnavailable, gexc.GatewayTimeout)):
        return True
    return False


def wrap_gcs_errors(cb):
    """Converts errors from the storage client into StorageErrors."""

    @functools.wraps(cb)
    def _inner(*args, **kwargs):
        try:
            return cb(*args, **kwargs)
        except StorageError:
            raise
        except (requests.Timeout, urllib3.exceptions.ConnectTimeoutError) as ex:
            raise StorageError(f"GCS: Connection timeout error: {ex.__class__.__name__}: {str(ex)}", 2001, True) from ex
        except requests.ConnectionError as ex:
            raise StorageError(f"GCS: Connection error: {ex.__class__.__name__}: {str(ex)}", 2002, True) from ex
        except (gexc.Unauthorized, gexc.Forbidden, gae.GoogleAuthError) as ex:
            raise StorageError(f"GCS: Client authentication error: {ex.__class__.__name__}: {str(ex)}", 2003) from ex
        except gexc.NotFound as ex:
            raise StorageError(f"GCS: Resource not found error: {ex.__class__.__name__}: {str(ex)}", 2004) from ex
        except gexc.GoogleAPIError as ex:
            raise StorageError(f"GCS: {ex.__class__.__name__}: {str(ex)}", 2000, is_recoverable(ex)) from ex

    return _inner


@injector.inject
def _configured_credentials_file(config: zr.ApplicationConfig = None) -> pathlib.Path:
    credentials_file = config.as_path(("gcstore", "gcs", "credentials_file"), default=None)
    if credentials_file is None:
        raise ConfigError("gcstore.gcs.credentials_file")
    return credentials_file


class ObjectStoreClient:
    """Convenience operations on top of an authenticated storage client.

        The handle is read-only once constructed and may be shared between
        threads issuing independent operations.
    """

    config: zr.ApplicationConfig = None

    @injector.construct
    def __init__(self, handle: storage.Client, halt_flag: t.Optional[HaltFlag] = None):
        self._handle = handle
        self._halt_flag = halt_flag
        self._log = zrlog.get_logger("gcstore.gcs")
        self._timeout = self.config.as_float(("gcstore", "gcs", "timeout"), default=DEFAULT_TIMEOUT)
        self._chunk_size = self.config.as_int(("gcstore", "gcs", "chunk_size"), default=DEFAULT_CHUNK_SIZE)

    @classmethod
    def authenticate(cls, credentials_file: t.Union[str, pathlib.Path], halt_flag: t.Optional[HaltFlag] = None) -> ObjectStoreClient:
        """Build a client from a service account credentials file."""
        try:
            handle = storage.Client.from_service_account_json(str(credentials_file))
        except (OSError, ValueError, KeyError, gae.GoogleAuthError) as ex:
            raise StorageError(f"Could not load credentials from [{credentials_file}]: {ex.__class__.__name__}: {str(ex)}", 3000) from ex
        zrlog.get_logger("gcstore.gcs").info(f"Authenticated to project [{handle.project}]")
        return cls(handle, halt_flag=halt_flag)

    @classmethod
    def from_config(cls, halt_flag: t.Optional[HaltFlag] = None) -> ObjectStoreClient:
        """Build a client from the credentials file named in the configuration."""
        return cls.authenticate(_configured_credentials_file(), halt_flag=halt_flag)

    def handle(self) -> storage.Client:
        return self._handle

    def _blob(self, bucket: str, path: str) -> storage.Blob:
        # No network access here, just a handle
        return self._handle.bucket(bucket).blob(path)

    @wrap_gcs_errors
    def _fetch(self, blob: storage.Blob):
        self._log.debug(f"Fetching metadata for [gs://{blob.bucket.name}/{blob.name}]")
        try:
            blob.reload(timeout=self._timeout, retry=None)
        except gexc.NotFound as ex:
            raise StorageError(f"Object [gs://{blob.bucket.name}/{blob.name}] does not exist", 3100) from ex

    def attributes(self, bucket: str, path: str) -> ObjectAttributes:
        """Retrieve the metadata of an object."""
        blob = self._blob(bucket, path)
        self._fetch(blob)
        return ObjectAttributes.from_blob(blob)

    def exists(self, bucket: str, path: str) -> bool:
        """Check if an object exists.

            Any error while fetching the metadata is reported as the object not
            existing, including permission and network errors.
        """
        try:
            self._fetch(self._blob(bucket, path))
            return True
        except Exception as ex:
            self._log.debug(f"Treating [gs://{bucket}/{path}] as missing: {ex.__class__.__name__}: {str(ex)}")
            return False

    def query(self, query: ListingQuery) -> list[ObjectAttributes]:
        """Run a prefix/delimiter listing and collect every entry.

            Errors while iterating raise ListingError; no partial results are
            returned and the listing should not be retried.
        """
        self._log.debug(f"Listing {query}")
        results = []
        try:
            iterator = self._handle.list_blobs(
                query.bucket,
                prefix=query.prefix,
                delimiter=query.delimiter or None,
                timeout=self._timeout,
                retry=None
            )
            for page in HaltFlag.iterate(iterator.pages, self._halt_flag, True):
                for blob in page:
                    results.append(ObjectAttributes.from_blob(blob))
                for prefix in sorted(page.prefixes):
                    results.append(ObjectAttributes(query.bucket, prefix=prefix))
        except Exception as ex:
            raise ListingError(f"Error iterating over {query}: {ex.__class__.__name__}: {str(ex)}") from ex
        return results

    def _list(self, bucket: str, path: str, delimiter: str) -> list[str]:
        return [attrs.path() for attrs in self.query(ListingQuery(bucket, as_directory_prefix(path), delimiter))]

    def list_direct_children(self, bucket: str, path: str) -> list[str]:
        """List the files and directories directly under the given path."""
        return self._list(bucket, path, SEPARATOR)

    def list_children_files(self, bucket: str, path: str) -> list[str]:
        """List all files under the given path, recursively. Directories are not included."""
        return self._list(bucket, path, "")

    @wrap_gcs_errors
    def copy(self, src_bucket: str, src_path: str, dst_bucket: str, dst_path: str):
        """Copy an object within the store, without passing the content through this process."""
        src = self._blob(src_bucket, src_path)
        dst = self._blob(dst_bucket, dst_path)
        token, _, _ = dst.rewrite(src, timeout=self._timeout, retry=None)
        while token is not None:
            token, _, _ = dst.rewrite(src, token=token, timeout=self._timeout, retry=None)
        self._log.info(f"Copied [gs://{src_bucket}/{src_path}] to [gs://{dst_bucket}/{dst_path}]")

    @local_file_error_wrap
    def _open_local(self, local_path: pathlib.Path, mode: str):
        return open(local_path, mode)

    def _open_remote_reader(self, blob: storage.Blob):
        try:
            return blob.open("rb", chunk_size=self._chunk_size, timeout=self._timeout, retry=None)
        except Exception as ex:
            raise StorageError(f"Could not open [gs://{blob.bucket.name}/{blob.name}] for reading: {ex.__class__.__name__}: {str(ex)}", 3200, is_recoverable(ex)) from ex

    def _open_remote_writer(self, blob: storage.Blob):
        try:
            return blob.open("wb", chunk_size=self._chunk_size, timeout=self._timeout, retry=None)
        except Exception as ex:
            raise StorageError(f"Could not open [gs://{blob.bucket.name}/{blob.name}] for writing: {ex.__class__.__name__}: {str(ex)}", 3203, is_recoverable(ex)) from ex

    def _transfer(self, source, dest, description: str, read_code: int, write_code: int) -> int:
        return copy_stream(
            source,
            dest,
            self._chunk_size,
            self._halt_flag,
            read_error=lambda ex: StorageError(f"Read failed while transferring [{description}]: {ex.__class__.__name__}: {str(ex)}", read_code, is_recoverable(ex)),
            write_error=lambda ex: StorageError(f"Write failed while transferring [{description}]: {ex.__class__.__name__}: {str(ex)}", write_code, is_recoverable(ex))
        )

    def open_reader(self, bucket: str, path: str) -> io.BufferedIOBase:
        """Open a readable stream on an object after checking it exists.

            The caller must close the stream, preferably by using it as a context manager.
        """
        blob = self._blob(bucket, path)
        self._fetch(blob)
        return self._open_remote_reader(blob)

    def read(self, bucket: str, path: str) -> bytes:
        """Read the full content of an object into memory."""
        with self.open_reader(bucket, path) as reader:
            buffer = io.BytesIO()
            self._transfer(reader, buffer, f"gs://{bucket}/{path}", REMOTE_READ_FAILED, LOCAL_WRITE_FAILED)
            return buffer.getvalue()

    def read_url(self, url: str) -> bytes:
        """Read the full content of an object given as a gs:// URL."""
        locator = ObjectLocator.from_url(url)
        return self.read(locator.bucket, locator.path)

    def download(self, bucket: str, src_path: str, dst_path: t.Union[str, pathlib.Path]):
        """Download an object to a local file, overwriting it if it exists."""
        blob = self._blob(bucket, src_path)
        self._fetch(blob)
        dst_path = pathlib.Path(dst_path)
        with self._open_local(dst_path, "wb") as dest:
            try:
                reader = self._open_remote_reader(blob)
                try:
                    total = self._transfer(reader, dest, f"gs://{bucket}/{src_path}", REMOTE_READ_FAILED, LOCAL_WRITE_FAILED)
                finally:
                    reader.close()
            except BaseException:
                # Only a file this call created or truncated is removed
                dest.close()
                dst_path.unlink(True)
                raise
        self._log.info(f"Downloaded {total} bytes from [gs://{bucket}/{src_path}] to [{dst_path}]")

    def upload(self, bucket: str, dst_path: str, src_path: t.Union[str, pathlib.Path]):
        """Upload a local file to an object, overwriting it if it exists.

            The remote writer is always closed. Closing is what finalizes the
            object, so an error while closing is raised if the content was
            fully written and only logged if an earlier error is already being raised.
        """
        blob = self._blob(bucket, dst_path)
        with self._open_local(pathlib.Path(src_path), "rb") as src:
            writer = self._open_remote_writer(blob)
            try:
                total = self._transfer(src, writer, f"gs://{bucket}/{dst_path}", LOCAL_READ_FAILED, REMOTE_WRITE_FAILED)
            except BaseException:
                self._close_after_error(writer, bucket, dst_path)
                raise
            self._finalize(writer, bucket, dst_path)
        self._log.info(f"Uploaded {total} bytes from [{src_path}] to [gs://{bucket}/{dst_path}]")

    def _finalize(self, writer, bucket: str, dst_path: str):
        try:
            writer.close()
        except Exception as ex:
            raise StorageError(f"Could not finalize [gs://{bucket}/{dst_path}]: {ex.__class__.__name__}: {str(ex)}", 3202, is_recoverable(ex)) from ex

    def _close_after_error(self, writer, bucket: str, dst_path: str):
        try:
            writer.close()
        except Exception:
            self._log.warning(f"Error closing writer for [gs://{bucket}/{dst_path}] after a failed upload", exc_info=True)

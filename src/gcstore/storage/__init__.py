"""
    Provides object storage functionality on Google Cloud Storage.

    Objects are addressed by a bucket name and a path. Paths use "/" as a
    separator, but the store has no real directories: a directory is only a
    prefix shared by the names of some objects. Listing the direct children of
    a path therefore always forces a trailing separator onto it first;
    otherwise listing "foo" would also find everything under "foobar".

    Use ObjectStoreClient.authenticate() or ObjectStoreClient.from_config() to
    obtain a client.
"""
from .base import StorageError, ListingError, ObjectLocator, ObjectAttributes, ListingQuery, join_object_path
from .gcs import ObjectStoreClient

from .exc import GCStoreError, ConfigError
from .storage import ObjectStoreClient, StorageError, ListingError, ObjectLocator, ObjectAttributes, ListingQuery

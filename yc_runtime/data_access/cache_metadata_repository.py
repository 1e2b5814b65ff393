"""
Repository for ISR metadata rows and their tag/path index rows.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from .document_store_client import DocumentStoreClient
from ..models.cache_entry import METADATA_SORT_KEY, tag_partition_key

logger = logging.getLogger(__name__)


class CacheMetadataRepository:
    """
    Repository for managing ISR metadata in the Document API.

    Three tables are involved: the entries table holds one metadata row per
    cache entry (``pk={buildId}#{key}``, ``sk='metadata'``), the tags table
    holds one row per (entry, tag) pair (``pk=tag#{tag}``, ``sk=<entry pk>``)
    and the paths table one row per (entry, path) pair (``pk=<path>``,
    ``sk=<entry pk>``).
    """

    def __init__(
        self,
        entries_table: str,
        tags_table: str,
        paths_table: str,
        client: Optional[DocumentStoreClient] = None,
        batch_write_limit: int = 25
    ):
        """
        Initialize metadata repository.

        Args:
            entries_table: Name of the entries table
            tags_table: Name of the tag index table
            paths_table: Name of the path index table
            client: Optional Document API client instance
            batch_write_limit: Maximum rows per batch write call
        """
        self.entries_table = entries_table
        self.tags_table = tags_table
        self.paths_table = paths_table
        self.client = client or DocumentStoreClient()
        self.batch_write_limit = batch_write_limit

    def get_metadata(self, entry_key: str) -> Optional[Dict[str, Any]]:
        """
        Get metadata row.

        Args:
            entry_key: Metadata partition key ({buildId}#{key})

        Returns:
            Row dict or None if absent
        """
        return self.client.get_item(
            table_name=self.entries_table,
            key={'pk': entry_key, 'sk': METADATA_SORT_KEY}
        )

    def put_metadata(self, item: Dict[str, Any]) -> None:
        """
        Write (replace) a metadata row.

        Args:
            item: Row built by CacheEntry.to_metadata_item
        """
        self.client.put_item(table_name=self.entries_table, item=item)

    def delete_metadata(self, entry_key: str) -> None:
        """
        Delete metadata row; a missing row is not an error.

        Args:
            entry_key: Metadata partition key
        """
        self.client.delete_item(
            table_name=self.entries_table,
            key={'pk': entry_key, 'sk': METADATA_SORT_KEY}
        )

    def put_tag_rows(self, entry_key: str, tags: Iterable[str], expires_at: int) -> int:
        """
        Write one tag index row per tag, chunked to the batch write limit.

        Args:
            entry_key: Metadata partition key the rows point at
            tags: Tags of the entry
            expires_at: Epoch seconds of the retention TTL

        Returns:
            Number of batch calls issued
        """
        rows = [
            {'pk': tag_partition_key(tag), 'sk': entry_key, 'tag': tag, 'expiresAt': expires_at}
            for tag in dict.fromkeys(tags)
        ]
        if not rows:
            return 0
        return self.client.batch_write(
            self.tags_table, rows, operation='put', chunk_size=self.batch_write_limit
        )

    def put_path_row(self, entry_key: str, path: str, expires_at: int) -> None:
        """
        Write the path index row for an entry.

        Args:
            entry_key: Metadata partition key the row points at
            path: Request path the entry was rendered for
            expires_at: Epoch seconds of the retention TTL
        """
        self.client.put_item(
            table_name=self.paths_table,
            item={'pk': path, 'sk': entry_key, 'expiresAt': expires_at}
        )

    def keys_for_tag(self, tag: str) -> List[str]:
        """
        Find metadata keys indexed under a tag.

        Args:
            tag: Cache tag

        Returns:
            Metadata partition keys
        """
        rows = self.client.query(
            table_name=self.tags_table,
            key_condition_expression='pk = :pk',
            expression_attribute_values={':pk': tag_partition_key(tag)}
        )
        return [row['sk'] for row in rows]

    def keys_for_path(self, path: str) -> List[str]:
        """
        Find metadata keys indexed under a path.

        Args:
            path: Request path

        Returns:
            Metadata partition keys
        """
        rows = self.client.query(
            table_name=self.paths_table,
            key_condition_expression='pk = :pk',
            expression_attribute_values={':pk': path}
        )
        return [row['sk'] for row in rows]

    def delete_tag_rows(self, tag: str, entry_keys: List[str]) -> None:
        """Delete the given tag index rows."""
        if not entry_keys:
            return
        keys = [{'pk': tag_partition_key(tag), 'sk': entry_key} for entry_key in entry_keys]
        self.client.batch_write(
            self.tags_table, keys, operation='delete', chunk_size=self.batch_write_limit
        )

    def delete_path_rows(self, path: str, entry_keys: List[str]) -> None:
        """Delete the given path index rows."""
        if not entry_keys:
            return
        keys = [{'pk': path, 'sk': entry_key} for entry_key in entry_keys]
        self.client.batch_write(
            self.paths_table, keys, operation='delete', chunk_size=self.batch_write_limit
        )

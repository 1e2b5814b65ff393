"""
Repository for short-lived regeneration lock rows.
"""
import logging
import time
from typing import Optional

from .document_store_client import DocumentStoreClient
from .exceptions import ConditionalCheckFailedError

logger = logging.getLogger(__name__)


class RegenerationLocksRepository:
    """
    Claims and releases per-entry regeneration locks.

    A lock row is ``{pk, owner, lockedAt, expiresAt}``. A claim succeeds when
    no row exists or the existing row has expired, so a crashed holder
    blocks regeneration for at most the lock TTL.
    """

    def __init__(self, table_name: str, client: Optional[DocumentStoreClient] = None):
        """
        Initialize locks repository.

        Args:
            table_name: Name of the locks table
            client: Optional Document API client instance
        """
        self.table_name = table_name
        self.client = client or DocumentStoreClient()

    def try_acquire(
        self,
        lock_key: str,
        owner: str,
        ttl_seconds: int,
        now: Optional[float] = None
    ) -> bool:
        """
        Attempt to claim a lock.

        Args:
            lock_key: Lock partition key (metadata key of the entry)
            owner: Claim token identifying this holder
            ttl_seconds: Lock lifetime
            now: Current epoch seconds (defaults to time.time())

        Returns:
            True if the lock was claimed, False if another holder owns it
        """
        current = int(now if now is not None else time.time())
        try:
            self.client.put_item(
                table_name=self.table_name,
                item={
                    'pk': lock_key,
                    'owner': owner,
                    'lockedAt': current,
                    'expiresAt': current + ttl_seconds,
                },
                condition_expression='attribute_not_exists(pk) OR expiresAt < :now',
                expression_attribute_values={':now': current}
            )
        except ConditionalCheckFailedError:
            logger.info(f"Regeneration lock {lock_key} already held")
            return False

        logger.debug(f"Acquired regeneration lock {lock_key}")
        return True

    def release(self, lock_key: str, owner: str) -> bool:
        """
        Release a lock if this owner still holds it.

        Args:
            lock_key: Lock partition key
            owner: Claim token used to acquire the lock

        Returns:
            True if released, False if the lock was lost to another holder
        """
        try:
            self.client.delete_item(
                table_name=self.table_name,
                key={'pk': lock_key},
                condition_expression='#owner = :owner',
                expression_attribute_values={':owner': owner},
                expression_attribute_names={'#owner': 'owner'}
            )
        except ConditionalCheckFailedError:
            logger.warning(f"Regeneration lock {lock_key} was taken over before release")
            return False
        return True

"""
Cloudant / CouchDB changes feed source.

Uses the ChangesFollower from the IBM Cloudant SDK, which handles transient
errors and reconnection internally. Client configuration (URL, credentials)
comes from the SDK's CLOUDANT_* environment variables.
"""

from typing import Any, Dict, Iterator, Optional
import logging

from ibmcloudant.cloudant_v1 import CloudantV1
from ibmcloudant.features.changes_follower import ChangesFollower

from .errors import SourceError
from .models import ChangeEvent

logger = logging.getLogger(__name__)


class CloudantChangesSource:
    """
    Follows a Cloudant database's changes feed.

    ``follow=True`` runs indefinitely (continuous feed); ``follow=False``
    stops once the feed has caught up, which ends the pipeline normally.

    Example:
        >>> source = CloudantChangesSource(CloudantV1.new_instance())
        >>> for event in source.open("orders", since="0"):
        ...     print(event.seq, event.id)
    """

    def __init__(self, client: CloudantV1, follow: bool = True):
        self.client = client
        self.follow = follow
        self._follower: Optional[ChangesFollower] = None

    @classmethod
    def from_settings(cls, settings, follow: bool = True) -> "CloudantChangesSource":
        """Build a source from CloudantSettings."""
        return cls(CloudantV1.new_instance(service_name=settings.service_name), follow=follow)

    def open(self, feed: str, since: str, include_docs: bool = True) -> Iterator[ChangeEvent]:
        """
        Open the changes feed after ``since``.

        Args:
            feed: Database name
            since: Sequence token to resume after ("0" for the beginning)
            include_docs: Include document bodies

        Yields:
            ChangeEvent per change, in feed order

        Raises:
            SourceError: If the feed fails
        """
        self._follower = ChangesFollower(
            service=self.client,
            db=feed,
            since=since,
            include_docs=include_docs
        )
        logger.info(
            f"Opening changes feed for database {feed}",
            extra={"feed": feed, "since": since[:20], "follow": self.follow}
        )
        return self._iterate(self._follower, feed)

    def _iterate(self, follower: ChangesFollower, feed: str) -> Iterator[ChangeEvent]:
        items = follower.start() if self.follow else follower.start_one_off()
        try:
            for item in items:
                yield to_change_event(item)
        except Exception as e:
            logger.error(
                f"Changes feed failed: {e}",
                extra={"feed": feed, "error": str(e)}
            )
            raise SourceError(f"Changes feed for {feed} failed: {e}") from e

    def close(self) -> None:
        """Stop following; the open iterator ends after its current item."""
        if self._follower is not None:
            self._follower.stop()
            self._follower = None


def to_change_event(item: Any) -> ChangeEvent:
    """Convert a ChangesResultItem into a ChangeEvent."""
    deleted = bool(getattr(item, "deleted", False))
    document = _document_body(getattr(item, "doc", None))
    if not document:
        document = {"_id": item.id}
        if deleted:
            document["_deleted"] = True
    return ChangeEvent(seq=item.seq, document=document, id=item.id, deleted=deleted)


def _document_body(doc: Any) -> Dict[str, Any]:
    if doc is None:
        return {}
    if isinstance(doc, dict):
        return dict(doc)
    return doc.to_dict()

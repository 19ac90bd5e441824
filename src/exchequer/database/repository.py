"""Record store: document-style reads and writes over the documents table."""

import uuid
import logging
from typing import Optional, Dict, Any, List

from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import StoreError
from .models import Document, document_path, utcnow

logger = logging.getLogger(__name__)


def _collection_name(collection: Any) -> str:
    return getattr(collection, "value", collection)


class RecordStore:
    """Hierarchical document store keyed by organization and member.

    Documents live at
    ``organizations/{organization_id}/members/{member_id}/{collection}/{doc_id}``.
    Every database failure is raised as ``StoreError``.
    """

    def __init__(self, session: AsyncSession):
        """Initialize the store with a database session.

        Args:
            session: AsyncSession instance for database operations.
        """
        self.session = session

    async def _get_document(
        self,
        organization_id: str,
        member_id: str,
        collection: str,
        doc_id: str,
    ) -> Optional[Document]:
        result = await self.session.execute(
            select(Document).where(
                and_(
                    Document.organization_id == organization_id,
                    Document.member_id == member_id,
                    Document.collection == collection,
                    Document.doc_id == doc_id,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get(
        self,
        organization_id: str,
        member_id: str,
        collection: Any,
        doc_id: str,
    ) -> Optional[Dict[str, Any]]:
        """Get a document's fields.

        Returns:
            The document fields (with ``id``), or None if it does not exist.
        """
        collection = _collection_name(collection)
        try:
            document = await self._get_document(organization_id, member_id, collection, doc_id)
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to read {document_path(organization_id, member_id, collection, doc_id)}: {e}"
            ) from e
        return document.to_dict() if document else None

    async def set(
        self,
        organization_id: str,
        member_id: str,
        collection: Any,
        doc_id: str,
        data: Dict[str, Any],
        merge: bool = True,
    ) -> Dict[str, Any]:
        """Create a document or write into an existing one.

        Args:
            organization_id: Owning organization.
            member_id: Owning member.
            collection: Collection name.
            doc_id: Document id within the collection.
            data: Fields to write.
            merge: If True, merge ``data`` into the existing fields;
                otherwise replace them.

        Returns:
            The resulting document fields.
        """
        collection = _collection_name(collection)
        path = document_path(organization_id, member_id, collection, doc_id)
        try:
            document = await self._get_document(organization_id, member_id, collection, doc_id)
            if document is None:
                document = Document(
                    organization_id=organization_id,
                    member_id=member_id,
                    collection=collection,
                    doc_id=doc_id,
                )
                document.data = data
                self.session.add(document)
            else:
                fields = {**document.data, **data} if merge else dict(data)
                document.data = fields
                document.updated_at = utcnow()
            await self.session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to write {path}: {e}") from e

        logger.debug(f"Wrote {path} (merge={merge})")
        return document.to_dict()

    async def add(
        self,
        organization_id: str,
        member_id: str,
        collection: Any,
        data: Dict[str, Any],
    ) -> str:
        """Append a document under a generated id and return the id."""
        doc_id = uuid.uuid4().hex
        await self.set(organization_id, member_id, collection, doc_id, data, merge=False)
        return doc_id

    async def create_if_absent(
        self,
        organization_id: str,
        member_id: str,
        collection: Any,
        doc_id: str,
        data: Dict[str, Any],
    ) -> bool:
        """Create a document unless one already exists at that path.

        Returns:
            True if the document was created, False if it already existed.
        """
        if await self.get(organization_id, member_id, collection, doc_id) is not None:
            return False
        await self.set(organization_id, member_id, collection, doc_id, data, merge=False)
        return True

    async def list(
        self,
        organization_id: str,
        member_id: str,
        collection: Any,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        """List the documents of a collection.

        Args:
            organization_id: Owning organization.
            member_id: Owning member.
            collection: Collection name.
            order_by: Optional document field to sort on. Documents missing
                the field sort last.
            descending: Sort direction for ``order_by``.

        Returns:
            List of document fields, each with its ``id``.
        """
        collection = _collection_name(collection)
        try:
            result = await self.session.execute(
                select(Document)
                .where(
                    and_(
                        Document.organization_id == organization_id,
                        Document.member_id == member_id,
                        Document.collection == collection,
                    )
                )
                .order_by(Document.created_at)
            )
            documents = [d.to_dict() for d in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreError(
                f"Failed to list {document_path(organization_id, member_id, collection)}: {e}"
            ) from e

        if order_by:
            present = [d for d in documents if d.get(order_by) is not None]
            missing = [d for d in documents if d.get(order_by) is None]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            documents = present + missing
        return documents

from sqlalchemy import Column, String, JSON, Index

from .base import Base


class DocumentModel(Base):
    """One stored document, addressed by its slash-separated path.

    ``collection`` is the parent collection path (``classes/c1/members``) and
    ``collection_id`` its last segment (``members``), used by collection-group
    queries. ``version`` is an ETag regenerated on every write.
    """

    __tablename__ = "documents"
    __table_args__ = (
        Index("ix_documents_collection_doc", "collection", "doc_id"),
    )

    path = Column(String, primary_key=True)
    collection = Column(String, nullable=False, index=True)
    collection_id = Column(String, nullable=False, index=True)
    doc_id = Column(String, nullable=False)
    data = Column(JSON, nullable=False, default=dict)
    version = Column(String, nullable=False)
    create_at = Column(String, nullable=False)  # ISO format string
    update_at = Column(String, nullable=False)

"""Repository modules for persistence layers used by the RFP mail ingestion service."""

__all__ = [
    "procurement_store",
]

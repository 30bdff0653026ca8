"""Client for the external document renderer.

The renderer produces the purchase order PDF and stores it in the file
store, returning the stored path. Only called once a PO is fully approved.
"""

import logging
from typing import Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from procureflow.core.config import Settings, get_settings
from procureflow.core.exceptions import DependencyFailure
from procureflow.db.models import PurchaseOrder

logger = logging.getLogger(__name__)


class DocumentService:
    def __init__(self, db: Session, settings: Optional[Settings] = None, client: Optional[httpx.Client] = None):
        self.db = db
        self.settings = settings or get_settings()
        self._client = client

    def render_and_store(self, artifact_id: UUID) -> Optional[str]:
        """
        Ask the renderer for a PO document and record where it was stored.

        Returns:
            Stored path, or None when no renderer is configured

        Raises:
            DependencyFailure: If the renderer call fails
        """
        if not self.settings.document_renderer_url:
            logger.warning("Document renderer not configured, skipping PO document")
            return None

        po = self.db.query(PurchaseOrder).filter(PurchaseOrder.id == artifact_id).first()
        if po is None:
            raise DependencyFailure(f"Purchase order {artifact_id} not found for rendering")

        url = self.settings.document_renderer_url.rstrip("/") + "/render"
        try:
            if self._client is not None:
                response = self._client.post(url, json={"po_id": str(artifact_id)})
            else:
                with httpx.Client(timeout=self.settings.document_renderer_timeout) as client:
                    response = client.post(url, json={"po_id": str(artifact_id)})
            response.raise_for_status()
            stored_path = response.json()["path"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            raise DependencyFailure(f"Document rendering failed for PO {po.po_number}: {e}") from e

        po.pdf_url = stored_path
        self.db.flush()
        logger.info(f"Stored document for PO {po.po_number} at {stored_path}")
        return stored_path

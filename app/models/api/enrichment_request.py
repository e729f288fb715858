# app/models/api/enrichment_request.py
from pydantic import BaseModel, Field


class EnrichRequest(BaseModel):
    """Request body for POST /admin/users/{user_id}/enrich"""

    force: bool = Field(False, description="Re-enrich even if the profile is already enriched")

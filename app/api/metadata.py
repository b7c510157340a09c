"""Generic metadata store query: GET /v1/metadata/{key}.

This is the read side of the metadata and enumeration extensions.  An
indexer derives the key itself (see app.services.metadata_store) and
gets back the raw stored string.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from app.services.metadata_store import metadata_store

router = APIRouter(prefix="/v1/metadata", tags=["metadata"])


class MetadataValueOut(BaseModel):
    key: str
    value: str


@router.get("/{key}", response_model=MetadataValueOut)
async def get_metadata_value(key: str) -> MetadataValueOut:
    value = await metadata_store.get(key)
    if value is None:
        raise HTTPException(status_code=404, detail="key not found")
    return MetadataValueOut(key=key, value=value)

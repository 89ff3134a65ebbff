"""
Thumbgate shared data models.

These models define the structure of all data passed between
components in the Thumbgate system.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

DEFAULT_LONGEST_SIDE = 96


class ThumbnailCtx(BaseModel):
    """
    Dispatch payload for thumbnail requests.

    Serialized with camelCase aliases, the layout the thumbnail endpoints
    have always exchanged.
    """

    model_config = ConfigDict(populate_by_name=True)

    omero_session_key: str = Field(
        ..., alias="omeroSessionKey", description="OMERO session key"
    )
    longest_side: int = Field(
        default=DEFAULT_LONGEST_SIDE,
        alias="longestSide",
        gt=0,
        le=1024,
        description="Size of the longest side of the thumbnail",
    )
    image_id: Optional[int] = Field(None, alias="imageId", description="Image identifier")
    image_ids: List[int] = Field(
        default_factory=list, alias="imageIds", description="Image identifiers"
    )
    rendering_def_id: Optional[int] = Field(
        None, alias="renderingDefId", description="Rendering definition identifier"
    )

    @model_validator(mode="after")
    def require_image(self):
        """Ensure at least one image is requested."""
        if self.image_id is None and not self.image_ids:
            raise ValueError("No image identifiers given")
        return self

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class MicroserviceDetails(BaseModel):
    """Response to OPTIONS requests identifying the microservice."""

    provider: str = "ThumbnailMicroservice"
    version: str
    features: List[str] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    session_store: str
    pool_size: int
    busy_slots: int
    pending: int
    version: str

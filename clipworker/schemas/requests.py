"""
Request schemas for the clip worker API.
"""

from pydantic import BaseModel, Field


class EnqueueJobRequest(BaseModel):
    """Request body for POST /api/klap/jobs."""

    project_id: str = Field(..., alias="projectId", min_length=1, description="Owning content project")
    source_media_url: str = Field(
        ...,
        alias="sourceMediaUrl",
        min_length=1,
        description="Publicly fetchable URL of the source video",
    )

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "projectId": "proj_8f2c1a",
                "sourceMediaUrl": "https://cdn.example.com/uploads/episode-42.mp4",
            }
        }

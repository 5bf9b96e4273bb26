"""Seed endpoint for loading QA scenarios outside production."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from mantle.services.seed import SeedLoader, UnknownScenarioError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/seed", tags=["seed"])


class SeedRequest(BaseModel):
    scenario: str = Field(min_length=1, max_length=50)


class SeedResponse(BaseModel):
    success: bool
    scenario: str
    message: str | None = None


def get_seed_loader(request: Request) -> SeedLoader:
    """Dependency returning the seed capability, or 403 where it is not built."""
    loader: SeedLoader | None = getattr(request.app.state, "seed_loader", None)
    if loader is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Seed endpoint is only available in development and preview environments",
        )
    return loader


@router.post("", response_model=SeedResponse)
async def load_seed_scenario(
    body: SeedRequest,
    loader: SeedLoader = Depends(get_seed_loader),
) -> SeedResponse:
    try:
        result = await loader.load(body.scenario)
    except UnknownScenarioError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    return SeedResponse(
        success=True,
        scenario=result.scenario,
        message=f"Seeded {result.users} users and {result.repos} repos",
    )

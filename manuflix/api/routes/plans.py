"""
Plan Routes
Read-only catalog shown on the checkout page
"""
from fastapi import APIRouter, Depends

from manuflix.api.dependencies import get_catalog
from manuflix.schemas.checkout import PlanListResponse
from manuflix.services.plan_catalog import PlanCatalog

router = APIRouter(tags=["plans"])


@router.get("", response_model=PlanListResponse)
async def list_plans(catalog: PlanCatalog = Depends(get_catalog)):
    """
    List subscription plans sorted by price.
    Falls back to the built-in plans when the store is empty or unreachable.
    """
    return PlanListResponse(success=True, plans=catalog.list_plans())

from fastapi import APIRouter

from fulfillment_engine.models.admin import AvailabilityResponse
from fulfillment_engine.services.inventory import count_available


router = APIRouter(prefix="/marketplace", tags=["marketplace"])


@router.get("/availability", response_model=AvailabilityResponse)
async def marketplace_availability():
    return AvailabilityResponse(available=count_available())

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.models.schemas import (
    ABTestListResponse,
    ABTestResponse,
    ABTestResults,
    AllocateRequest,
    AllocationResponse,
    CleanupResponse,
    ConversionResponse,
    CreateABTestBody,
    RebalanceTrafficRequest,
    RecordConversionRequest,
    UpdateStatusRequest,
)
from app.services.experiments.service import ABTestService

router = APIRouter()


@router.post("", response_model=ABTestResponse, status_code=201)
async def create_test(request: CreateABTestBody, db: AsyncSession = Depends(get_db)):
    service = ABTestService(db)
    test = await service.create_test(request.landing_page_id, request)
    return service.to_response(test)


@router.get("/pages/{landing_page_id}/active", response_model=ABTestListResponse)
async def get_active_tests_for_page(landing_page_id: str, db: AsyncSession = Depends(get_db)):
    service = ABTestService(db)
    tests = await service.get_active_tests_for_page(landing_page_id)

    return ABTestListResponse(tests=[service.to_response(t) for t in tests], total=len(tests))


@router.post("/maintenance/cleanup", response_model=CleanupResponse)
async def cleanup(
    days_to_keep: Optional[int] = Query(None, ge=0, description="Retention window in days"),
    db: AsyncSession = Depends(get_db),
):
    service = ABTestService(db)
    result = await service.cleanup(days_to_keep)

    return CleanupResponse(
        conversions_deleted=result.conversions_deleted,
        allocations_deleted=result.allocations_deleted,
        cutoff=result.cutoff,
    )


@router.get("/{test_id}", response_model=ABTestResponse)
async def get_test(test_id: str, db: AsyncSession = Depends(get_db)):
    service = ABTestService(db)
    test = await service.get_test(test_id)
    return service.to_response(test)


@router.put("/{test_id}/status", response_model=ABTestResponse)
async def update_status(
    test_id: str, request: UpdateStatusRequest, db: AsyncSession = Depends(get_db)
):
    service = ABTestService(db)
    test = await service.update_status(test_id, request.status)
    return service.to_response(test)


@router.put("/{test_id}/traffic", response_model=ABTestResponse)
async def rebalance_traffic(
    test_id: str, request: RebalanceTrafficRequest, db: AsyncSession = Depends(get_db)
):
    service = ABTestService(db)
    test = await service.rebalance_traffic(test_id, request.traffic)
    return service.to_response(test)


@router.post("/{test_id}/allocate", response_model=AllocationResponse)
async def allocate(test_id: str, request: AllocateRequest, db: AsyncSession = Depends(get_db)):
    service = ABTestService(db)
    variant = await service.allocate(test_id, request.visitor_id)

    if variant is None:
        return AllocationResponse(test_id=test_id, allocated=False)

    return AllocationResponse(
        test_id=test_id, allocated=True, variant=service.variant_response(variant)
    )


@router.post("/{test_id}/conversions", response_model=ConversionResponse, status_code=201)
async def record_conversion(
    test_id: str, request: RecordConversionRequest, db: AsyncSession = Depends(get_db)
):
    service = ABTestService(db)
    conversion = await service.record_conversion(
        test_id,
        request.variant_id,
        request.visitor_id,
        request.conversion_type,
        request.value,
    )
    return ConversionResponse.model_validate(conversion)


@router.get("/{test_id}/results", response_model=ABTestResults)
async def get_results(
    test_id: str,
    conversion_type: Optional[str] = Query(None, description="Only count this event type"),
    db: AsyncSession = Depends(get_db),
):
    service = ABTestService(db)
    return await service.get_results(test_id, conversion_type)


@router.delete("/{test_id}", status_code=204)
async def delete_test(test_id: str, db: AsyncSession = Depends(get_db)):
    service = ABTestService(db)
    await service.delete_test(test_id)
    return None

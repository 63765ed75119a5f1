from fastapi import APIRouter, Depends

from tempreport.models.report import ReportRequest, ReportResult
from tempreport.services.report_service import (
    TemperatureReportService,
    get_report_service,
)

router = APIRouter()


@router.post("/temperature", response_model=ReportResult)
async def generate_temperature_report(
    request: ReportRequest,
    service: TemperatureReportService = Depends(get_report_service),
):
    return await service.generate_report(request)

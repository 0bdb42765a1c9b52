"""
Dependency injection for FastAPI.
"""
from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends

from cropwatch.config import settings
from cropwatch.infrastructure.imagery_client import get_imagery_client
from cropwatch.infrastructure.memory_repositories import (
    InMemoryAlertRepository,
    InMemoryAnalysisRepository,
    InMemoryFarmRepository,
    InMemoryRunReportRepository,
)
from cropwatch.infrastructure.messaging_client import get_messaging_client
from cropwatch.infrastructure.vision_client import get_vision_client
from cropwatch.services.application.batch_orchestrator import BatchOrchestrator
from cropwatch.services.application.farm_pipeline import FarmPipeline
from cropwatch.services.domain.alert_aggregator import AlertAggregator
from cropwatch.services.domain.vegetation_index import IndexRuleConfig, VegetationIndexEngine


# Process-wide singletons
_farm_repository: Optional[InMemoryFarmRepository] = None
_analysis_repository: Optional[InMemoryAnalysisRepository] = None
_alert_repository: Optional[InMemoryAlertRepository] = None
_report_repository: Optional[InMemoryRunReportRepository] = None
_pipeline: Optional[FarmPipeline] = None
_orchestrator: Optional[BatchOrchestrator] = None


def get_farm_repository() -> InMemoryFarmRepository:
    global _farm_repository
    if _farm_repository is None:
        if settings.farm_registry_file:
            _farm_repository = InMemoryFarmRepository.from_json_file(settings.farm_registry_file)
        else:
            _farm_repository = InMemoryFarmRepository()
    return _farm_repository


def get_analysis_repository() -> InMemoryAnalysisRepository:
    global _analysis_repository
    if _analysis_repository is None:
        _analysis_repository = InMemoryAnalysisRepository()
    return _analysis_repository


def get_alert_repository() -> InMemoryAlertRepository:
    global _alert_repository
    if _alert_repository is None:
        _alert_repository = InMemoryAlertRepository()
    return _alert_repository


def get_report_repository() -> InMemoryRunReportRepository:
    global _report_repository
    if _report_repository is None:
        _report_repository = InMemoryRunReportRepository()
    return _report_repository


def get_index_engine() -> VegetationIndexEngine:
    """
    Dependency factory for VegetationIndexEngine.

    Returns:
        VegetationIndexEngine instance
    """
    return VegetationIndexEngine(IndexRuleConfig(
        variability_std_threshold=settings.variability_std_threshold,
        bare_soil_percent_threshold=settings.bare_soil_percent_threshold,
    ))


def get_orchestrator() -> BatchOrchestrator:
    """
    Get or create the single BatchOrchestrator of this process.

    The orchestrator owns the run state, so every caller (HTTP routes and
    the daily scheduler) must share the same instance.

    Returns:
        BatchOrchestrator instance
    """
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = BatchOrchestrator(
            pipeline=get_pipeline(),
            farm_repository=get_farm_repository(),
            analysis_repository=get_analysis_repository(),
            report_repository=get_report_repository(),
            dispatcher=get_messaging_client(),
            batch_size=settings.batch_size,
            inter_batch_delay_seconds=settings.inter_batch_delay_seconds,
            admin_notification_enabled=settings.admin_notification_enabled,
            admin_contacts=settings.admin_contacts,
            call_timeout=settings.external_call_timeout_seconds,
        )
    return _orchestrator


def get_pipeline() -> FarmPipeline:
    """
    Get or create the FarmPipeline shared by batch runs and on-demand analysis.

    Returns:
        FarmPipeline instance
    """
    global _pipeline
    if _pipeline is None:
        timeout = settings.external_call_timeout_seconds
        aggregator = AlertAggregator(
            alert_repository=get_alert_repository(),
            dispatcher=get_messaging_client(),
            notifications_enabled=settings.alert_notifications_enabled,
            call_timeout=timeout,
        )
        _pipeline = FarmPipeline(
            band_provider=get_imagery_client(),
            vision_provider=get_vision_client(),
            engine=get_index_engine(),
            aggregator=aggregator,
            farm_repository=get_farm_repository(),
            analysis_repository=get_analysis_repository(),
            thresholds=settings.ndvi_thresholds(),
            freshness_window=timedelta(hours=settings.freshness_window_hours),
            max_image_age_days=settings.max_image_age_days,
            call_timeout=timeout,
        )
    return _pipeline


# Type aliases for cleaner route signatures
OrchestratorDep = Annotated[BatchOrchestrator, Depends(get_orchestrator)]
PipelineDep = Annotated[FarmPipeline, Depends(get_pipeline)]
FarmRepositoryDep = Annotated[InMemoryFarmRepository, Depends(get_farm_repository)]
AnalysisRepositoryDep = Annotated[InMemoryAnalysisRepository, Depends(get_analysis_repository)]
AlertRepositoryDep = Annotated[InMemoryAlertRepository, Depends(get_alert_repository)]
ReportRepositoryDep = Annotated[InMemoryRunReportRepository, Depends(get_report_repository)]
IndexEngineDep = Annotated[VegetationIndexEngine, Depends(get_index_engine)]

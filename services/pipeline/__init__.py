"""
Pipeline services for micropad processing.

Main orchestrator: MicropadPipelineService
Pipeline steps: CardDetectionService, ContourExtractionService,
CalibrationDetectionService, DotDetectionService, ColorRebalanceService
"""

from services.pipeline.pipeline import MicropadPipelineService, serialize_sample

__all__ = ['MicropadPipelineService', 'serialize_sample']

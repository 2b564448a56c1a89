# pipeline/__init__.py
from pipeline.errors import (
    IntegrationError,
    InternalError,
    MalformedPayload,
    MappingUnresolved,
    MissingOrderReference,
    OrderNotFound,
    PipelineError,
    PriceDivergence,
    UnrecognizedEventType,
)
from pipeline.normalizer import NormalizedEvent, normalize, parse_body
from pipeline.status_mapper import map_gateway_status

__all__ = [
    "IntegrationError",
    "InternalError",
    "MalformedPayload",
    "MappingUnresolved",
    "MissingOrderReference",
    "OrderNotFound",
    "PipelineError",
    "PriceDivergence",
    "UnrecognizedEventType",
    "NormalizedEvent",
    "normalize",
    "parse_body",
    "map_gateway_status",
]

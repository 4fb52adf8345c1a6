"""Source adapters for county, recorder, court and federal records."""

from .arcgis import ArcGISAssessorAdapter
from .base import (
    FederalSource,
    FieldMap,
    RetryConfig,
    SourceAdapter,
    with_retry,
)
from .federal import CensusAcsAdapter, SecEdgarAdapter
from .json_index import JsonIndexAdapter
from .jurisdictions import (
    JURISDICTIONS,
    ArcGISLayer,
    JsonIndexEndpoint,
    JurisdictionConfig,
    get_jurisdiction,
    list_jurisdictions,
)
from .mapping import map_case_type, map_document_type, map_property_type
from .registry import AdapterRegistry
from .skip_trace import SkipTraceClient, SkipTraceRequest, SkipTraceResult
from .static import StaticAdapter

__all__ = [
    "JURISDICTIONS",
    "AdapterRegistry",
    "ArcGISAssessorAdapter",
    "ArcGISLayer",
    "CensusAcsAdapter",
    "FederalSource",
    "FieldMap",
    "JsonIndexAdapter",
    "JsonIndexEndpoint",
    "JurisdictionConfig",
    "RetryConfig",
    "SecEdgarAdapter",
    "SkipTraceClient",
    "SkipTraceRequest",
    "SkipTraceResult",
    "SourceAdapter",
    "StaticAdapter",
    "get_jurisdiction",
    "list_jurisdictions",
    "map_case_type",
    "map_document_type",
    "map_property_type",
    "with_retry",
]

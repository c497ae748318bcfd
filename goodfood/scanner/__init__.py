"""Barcode scan to meal log: camera decoding, tiered lookup, label-photo fallback."""

from .camera import CameraManager, FrameSource, OpenCVFrameSource
from .config import ScannerConfig, load_config
from .decoder import BarcodeDecoder, DecoderLoop
from .editor import ConfirmationEditor
from .errors import (
    CameraBusyError,
    CameraError,
    CameraErrorKind,
    InvalidTransition,
    ScannerError,
    ServiceError,
    SessionBusyError,
    StreamError,
)
from .models import (
    AnalysisFailed,
    AnalysisSuccess,
    CapturedImage,
    LimitReached,
    LookupHit,
    LookupMiss,
    MealEntry,
    Provenance,
    ResolvedProduct,
)
from .resolution import CodeResolutionClient, ProductService, create_product_service
from .sinks import InMemoryMealLog, JsonlMealLog, MealLogSink, WorkflowObserver
from .vision import LabelAnalysisClient, LabelAnalyzer, create_analyzer
from .workflow import ScanWorkflow, WorkflowEvent, WorkflowSession, WorkflowState, next_state

__all__ = [
    "AnalysisFailed",
    "AnalysisSuccess",
    "BarcodeDecoder",
    "CameraBusyError",
    "CameraError",
    "CameraErrorKind",
    "CameraManager",
    "CapturedImage",
    "CodeResolutionClient",
    "ConfirmationEditor",
    "DecoderLoop",
    "FrameSource",
    "InMemoryMealLog",
    "InvalidTransition",
    "JsonlMealLog",
    "LabelAnalysisClient",
    "LabelAnalyzer",
    "LimitReached",
    "LookupHit",
    "LookupMiss",
    "MealEntry",
    "MealLogSink",
    "OpenCVFrameSource",
    "ProductService",
    "Provenance",
    "ResolvedProduct",
    "ScanWorkflow",
    "ScannerConfig",
    "ScannerError",
    "ServiceError",
    "SessionBusyError",
    "StreamError",
    "WorkflowEvent",
    "WorkflowObserver",
    "WorkflowSession",
    "WorkflowState",
    "create_analyzer",
    "create_product_service",
    "load_config",
    "next_state",
]

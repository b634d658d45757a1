"""Strategy selection and workflow execution for peakresolve."""

from .component_registry import Component, ComponentDescriptor, ComponentRegistry, ComponentType
from .config_manager import ConfigManager, DEFAULT_CONFIGS, deep_merge
from .strategy_builder import (
    PREDEFINED_STRATEGIES,
    ProcessingContext,
    ProcessingStrategy,
    StrategyBuilder,
    predefined_strategies,
)
from .strategy_controller import (
    Automatic,
    Hybrid,
    Manual,
    StrategyController,
)
from .component_factories import create_default_registry, register_default_components
from .workflow_controller import (
    CancellationToken,
    RetryOnError,
    SkipOnError,
    StageResult,
    StopOnError,
    WorkflowConfig,
    WorkflowController,
    WorkflowResult,
)
from .batch_processor import BatchItem, BatchProcessor, BatchResult
from .processing_controller import PeakProcessingController

__all__ = [
    # Registry
    'Component',
    'ComponentDescriptor',
    'ComponentRegistry',
    'ComponentType',
    'create_default_registry',
    'register_default_components',
    # Configuration
    'ConfigManager',
    'DEFAULT_CONFIGS',
    'deep_merge',
    # Strategies
    'PREDEFINED_STRATEGIES',
    'ProcessingContext',
    'ProcessingStrategy',
    'StrategyBuilder',
    'predefined_strategies',
    'Automatic',
    'Hybrid',
    'Manual',
    'StrategyController',
    # Workflow
    'CancellationToken',
    'RetryOnError',
    'SkipOnError',
    'StageResult',
    'StopOnError',
    'WorkflowConfig',
    'WorkflowController',
    'WorkflowResult',
    'BatchItem',
    'BatchProcessor',
    'BatchResult',
    'PeakProcessingController',
]

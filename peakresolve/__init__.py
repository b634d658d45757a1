"""
peakresolve: peak detection, overlap resolution and fitting for 1-D traces.

Subpackages
-----------
fitting
    Peak shapes, optimizer, detection, multi-peak fitting, advanced refinements
data
    Curve, Peak and the ProcessingData bundle
overlap
    Overlap metrics and resolution strategies
controllers
    Component registry, strategies, workflow, batch processing
visualization
    Diagnostic plots (import explicitly; pulls in matplotlib)
"""

# fitting first: data and overlap import its submodules
from peakresolve import fitting
from peakresolve.data import Curve, Peak, ProcessingData
from peakresolve.errors import ConfigError, DataError, MathError, PeakResolveError, ProcessError
from peakresolve.fitting.peak_shapes import PeakShapeParams
from peakresolve.overlap import OverlapResolver
from peakresolve.controllers import (
    Automatic,
    CancellationToken,
    Hybrid,
    Manual,
    PeakProcessingController,
    ProcessingStrategy,
    RetryOnError,
    SkipOnError,
    StopOnError,
    WorkflowResult,
)

__version__ = "0.1.0"

__all__ = [
    'fitting',
    'Curve',
    'Peak',
    'ProcessingData',
    'PeakShapeParams',
    'OverlapResolver',
    'PeakProcessingController',
    'ProcessingStrategy',
    'Automatic',
    'Manual',
    'Hybrid',
    'StopOnError',
    'SkipOnError',
    'RetryOnError',
    'CancellationToken',
    'WorkflowResult',
    'PeakResolveError',
    'ConfigError',
    'DataError',
    'MathError',
    'ProcessError',
]

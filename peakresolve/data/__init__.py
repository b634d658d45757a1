"""
Data containers for peakresolve.

- Curve: intensity trace with derived statistics
- Peak: detected or fitted peak record
- ProcessingData: bundle passed between workflow stages
"""

from .curve import Curve
from .peak import Peak
from .processing import ProcessingData

__all__ = [
    'Curve',
    'Peak',
    'ProcessingData',
]

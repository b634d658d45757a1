"""
Component registry.

Maps ``(ComponentType, name)`` to a descriptor and a factory that builds a
runnable component from a configuration dict. Registration happens once at
start-up; after ``freeze()`` the registry is read-only and can be shared by
concurrent workflow runs.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from peakresolve.data import ProcessingData
from peakresolve.errors import ConfigError

logger = logging.getLogger(__name__)


class ComponentType(Enum):
    PEAK_DETECTION = "peak_detection"
    OVERLAP_ANALYSIS = "overlap_analysis"
    OVERLAP_PROCESSING = "overlap_processing"
    SHAPE_ANALYSIS = "peak_shape_analysis"
    FITTING = "fitting"
    OPTIMIZATION = "parameter_optimization"
    POST_PROCESSING = "post_processing"
    VALIDATION = "validation"


@dataclass(frozen=True)
class ComponentDescriptor:
    """
    Attributes:
        component_type: Stage the component can run in
        name: Lookup name within its type
        version: Component version string
        description: One-line summary
        capabilities: Free-form capability tags
        configuration_schema: Accepted config keys mapped to a type or description
    """
    component_type: ComponentType
    name: str
    version: str = "1.0.0"
    description: str = ""
    capabilities: Tuple[str, ...] = ()
    configuration_schema: Dict[str, str] = field(default_factory=dict)


class Component:
    """Narrow interface every stage component implements."""

    name = "component"

    def process(self, data: ProcessingData, config: Dict[str, Any]) -> ProcessingData:
        raise NotImplementedError

    def validate_config(self, config: Dict[str, Any]):
        """Raise ConfigError for an unusable configuration."""

    def quality(self, data: ProcessingData) -> Tuple[Optional[float], bool]:
        """Stage-specific check on the output: (score or None, passed)."""
        return None, True


Factory = Callable[[Dict[str, Any]], Component]


class ComponentRegistry:
    """Name-keyed directory of component factories."""

    def __init__(self):
        self._entries: Dict[Tuple[ComponentType, str], Tuple[ComponentDescriptor, Factory]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, descriptor: ComponentDescriptor, factory: Factory):
        if self._frozen:
            raise ConfigError(
                f"registry is frozen; cannot register {descriptor.component_type.value}/{descriptor.name}"
            )
        key = (descriptor.component_type, descriptor.name)
        if key in self._entries:
            raise ConfigError(
                f"component {descriptor.component_type.value}/{descriptor.name} already registered"
            )
        self._entries[key] = (descriptor, factory)
        logger.debug("registered component %s/%s", descriptor.component_type.value, descriptor.name)

    def freeze(self) -> "ComponentRegistry":
        self._frozen = True
        return self

    def contains(self, component_type: ComponentType, name: str) -> bool:
        return (component_type, name) in self._entries

    def get_descriptor(self, component_type: ComponentType, name: str) -> ComponentDescriptor:
        return self._lookup(component_type, name)[0]

    def create(self, component_type: ComponentType, name: str,
               config: Optional[Dict[str, Any]] = None) -> Component:
        """Build a component and validate ``config`` against it."""
        _, factory = self._lookup(component_type, name)
        config = config or {}
        component = factory(config)
        component.validate_config(config)
        return component

    def list_components(self, component_type: Optional[ComponentType] = None) -> List[ComponentDescriptor]:
        return [
            descriptor for (ctype, _), (descriptor, _) in sorted(
                self._entries.items(), key=lambda item: (item[0][0].value, item[0][1])
            )
            if component_type is None or ctype == component_type
        ]

    def names(self, component_type: ComponentType) -> List[str]:
        return [d.name for d in self.list_components(component_type)]

    def _lookup(self, component_type, name):
        try:
            return self._entries[(component_type, name)]
        except KeyError:
            raise ConfigError(
                f"no {component_type.value} component named '{name}'. "
                f"Available: {', '.join(self.names(component_type)) or 'none'}"
            ) from None

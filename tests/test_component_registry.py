import pytest

from peakresolve.controllers import (
    Component,
    ComponentDescriptor,
    ComponentRegistry,
    ComponentType,
    create_default_registry,
)
from peakresolve.errors import ConfigError


class EchoComponent(Component):
    name = "echo"

    def __init__(self, config):
        self.config = config

    def process(self, data, config):
        return data

    def validate_config(self, config):
        if config.get("bad"):
            raise ConfigError("bad setting")


def _echo_descriptor(name="echo"):
    return ComponentDescriptor(ComponentType.VALIDATION, name, description="echo",
                               capabilities=("validate",))


def test_register_and_create():
    registry = ComponentRegistry()
    registry.register(_echo_descriptor(), EchoComponent)

    component = registry.create(ComponentType.VALIDATION, "echo", {"level": 1})

    assert isinstance(component, EchoComponent)
    assert component.config == {"level": 1}
    assert registry.contains(ComponentType.VALIDATION, "echo")
    assert not registry.contains(ComponentType.FITTING, "echo")
    assert registry.get_descriptor(ComponentType.VALIDATION, "echo").capabilities == ("validate",)


def test_create_validates_config():
    registry = ComponentRegistry()
    registry.register(_echo_descriptor(), EchoComponent)

    with pytest.raises(ConfigError, match="bad setting"):
        registry.create(ComponentType.VALIDATION, "echo", {"bad": True})


def test_duplicate_registration_raises():
    registry = ComponentRegistry()
    registry.register(_echo_descriptor(), EchoComponent)

    with pytest.raises(ConfigError, match="already registered"):
        registry.register(_echo_descriptor(), EchoComponent)


def test_frozen_registry_rejects_registration():
    registry = ComponentRegistry().freeze()

    assert registry.frozen
    with pytest.raises(ConfigError, match="frozen"):
        registry.register(_echo_descriptor(), EchoComponent)


def test_unknown_component_lists_available():
    registry = ComponentRegistry()
    registry.register(_echo_descriptor("b"), EchoComponent)
    registry.register(_echo_descriptor("a"), EchoComponent)

    with pytest.raises(ConfigError, match="Available: a, b"):
        registry.create(ComponentType.VALIDATION, "c")
    assert registry.names(ComponentType.VALIDATION) == ["a", "b"]


def test_default_registry_contents():
    registry = create_default_registry()

    assert registry.frozen
    assert registry.names(ComponentType.PEAK_DETECTION) == ["multi_peak", "simple"]
    assert registry.names(ComponentType.OVERLAP_PROCESSING) == [
        "auto", "emg_nlls", "extreme_overlap", "fbf", "none", "sharpen_cwt"]
    assert registry.names(ComponentType.OPTIMIZATION) == [
        "bi_gaussian", "emg_algorithm", "gmg_bayesian"]
    for component_type in (ComponentType.OVERLAP_ANALYSIS, ComponentType.SHAPE_ANALYSIS,
                           ComponentType.POST_PROCESSING, ComponentType.VALIDATION):
        assert registry.names(component_type) == ["standard"]
    assert registry.names(ComponentType.FITTING) == ["multi_peak"]


def test_list_components_is_sorted_by_type_and_name():
    descriptors = create_default_registry().list_components()
    keys = [(d.component_type.value, d.name) for d in descriptors]
    assert keys == sorted(keys)

"""
Entry point for peak processing.

Examples
--------
>>> from peakresolve import Curve, PeakProcessingController
>>> controller = PeakProcessingController()
>>> result = controller.process_automatic(Curve(x, y))
>>> result.peak_table()
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from peakresolve.data import Curve, Peak
from .batch_processor import BatchProcessor, BatchResult
from .component_factories import create_default_registry
from .component_registry import ComponentRegistry, ComponentType
from .config_manager import ConfigManager
from .strategy_builder import SIMPLE_PEAKS, ProcessingStrategy
from .strategy_controller import Automatic, Hybrid, Manual, ProcessingMode, StrategyController
from .workflow_controller import CancellationToken, WorkflowConfig, WorkflowController, WorkflowResult

logger = logging.getLogger(__name__)


class PeakProcessingController:
    """
    Facade over the registry, configuration and workflow.

    Parameters
    ----------
    registry : ComponentRegistry, optional
        Frozen registry (default: every built-in component)
    config_manager : ConfigManager, optional
    workflow_config : WorkflowConfig, optional
        Default: the ``workflow`` section of ``config_manager``
    """

    def __init__(self, registry: Optional[ComponentRegistry] = None,
                 config_manager: Optional[ConfigManager] = None,
                 workflow_config: Optional[WorkflowConfig] = None):
        self.registry = registry or create_default_registry()
        self.config_manager = config_manager or ConfigManager()
        self.workflow_config = workflow_config or WorkflowConfig.from_config(
            self.config_manager.get_config("workflow"))
        self._custom_strategies: Dict[str, ProcessingStrategy] = {}

    def register_strategy(self, strategy: ProcessingStrategy):
        """Make a custom strategy available by name in every mode."""
        self.strategy_controller(Automatic()).register_strategy(strategy)
        self._custom_strategies[strategy.name] = strategy

    def strategy_controller(self, mode: ProcessingMode) -> StrategyController:
        controller = StrategyController(self.registry)
        for strategy in self._custom_strategies.values():
            controller.register_strategy(strategy)
        controller.set_mode(mode)
        return controller

    def workflow(self, mode: ProcessingMode) -> WorkflowController:
        return WorkflowController(self.registry, self.strategy_controller(mode),
                                  self.config_manager, self.workflow_config)

    def process_automatic(self, curve: Curve, candidates: Optional[Sequence[Peak]] = None,
                          fallback_strategy=SIMPLE_PEAKS, user_config: Optional[Dict[str, Any]] = None,
                          cancellation: Optional[CancellationToken] = None) -> WorkflowResult:
        """Choose the strategy from the curve's features."""
        return self.workflow(Automatic(fallback_strategy)).execute(
            curve, candidates, user_config, cancellation=cancellation)

    def process_manual(self, curve: Curve, strategy, candidates: Optional[Sequence[Peak]] = None,
                       allow_override: bool = False, overrides: Optional[Dict[str, Any]] = None,
                       user_config: Optional[Dict[str, Any]] = None,
                       cancellation: Optional[CancellationToken] = None) -> WorkflowResult:
        """
        Run with ``strategy`` (a name or a ProcessingStrategy).

        ``overrides`` are only accepted when ``allow_override`` is set.
        """
        return self.workflow(Manual(strategy, allow_override)).execute(
            curve, candidates, user_config, overrides, cancellation)

    def process_hybrid(self, curve: Curve, manual_overrides: Dict[str, Any],
                       candidates: Optional[Sequence[Peak]] = None,
                       fallback_strategy=SIMPLE_PEAKS, user_config: Optional[Dict[str, Any]] = None,
                       cancellation: Optional[CancellationToken] = None) -> WorkflowResult:
        """Automatic choice with ``manual_overrides`` applied on top."""
        return self.workflow(Hybrid(manual_overrides, fallback_strategy)).execute(
            curve, candidates, user_config, cancellation=cancellation)

    def process_batch(self, curves: Sequence[Curve], mode: Optional[ProcessingMode] = None,
                      candidates: Optional[Sequence[Optional[List[Peak]]]] = None,
                      user_config: Optional[Dict[str, Any]] = None, max_workers: int = 4,
                      use_processes: bool = False,
                      cancellation: Optional[CancellationToken] = None) -> BatchResult:
        mode = mode or Automatic()
        if self._custom_strategies and use_processes:
            logger.warning("custom strategies are not available in worker processes")
        processor = BatchProcessor(max_workers=max_workers, use_processes=use_processes)
        return processor.run(curves, mode=mode, candidates=candidates, user_config=user_config,
                             config_manager=self.config_manager,
                             workflow_config=self.workflow_config,
                             registry=self.registry,
                             strategy_controller=self.strategy_controller(mode),
                             cancellation=cancellation)

    def list_strategies(self) -> List[str]:
        return self.strategy_controller(Automatic()).list_strategies()

    def list_components(self, component_type: Optional[ComponentType] = None):
        return self.registry.list_components(component_type)

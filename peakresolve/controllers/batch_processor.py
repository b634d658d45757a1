"""
Batch processing of independent curves on a fixed-size worker pool.

Threads share one read-only registry and workflow controller. With
``use_processes=True`` each task runs in a spawned process that builds its
own default registry. Results keep the input order; a failing curve is
logged and recorded without stopping the batch.
"""

import logging
import multiprocessing
from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from peakresolve.data import Curve, Peak
from .component_factories import create_default_registry
from .config_manager import ConfigManager
from .strategy_controller import Automatic, ProcessingMode, StrategyController
from .workflow_controller import CancellationToken, WorkflowConfig, WorkflowController, WorkflowResult

logger = logging.getLogger(__name__)


@dataclass
class BatchItem:
    """
    Attributes:
        index: Position of the curve in the input
        curve_id: Identifier of the curve
        result: Workflow result, None when the curve failed or was cancelled
        error: "ExceptionType: message" of a failed curve
        cancelled: Curve was not processed because the batch was cancelled
    """
    index: int
    curve_id: str
    result: Optional[WorkflowResult] = None
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.result is not None and self.result.success


@dataclass
class BatchResult:
    items: List[BatchItem] = field(default_factory=list)

    @property
    def results(self) -> List[Optional[WorkflowResult]]:
        return [item.result for item in self.items]

    @property
    def failed(self) -> List[BatchItem]:
        return [item for item in self.items if item.error is not None]

    def summary(self) -> pd.DataFrame:
        rows = []
        for item in self.items:
            result = item.result
            cancelled = item.cancelled or (result is not None and result.cancelled)
            rows.append({
                'index': item.index,
                'curve_id': item.curve_id,
                'success': item.success,
                'cancelled': cancelled,
                'strategy': result.strategy.name if result is not None and result.strategy else None,
                'peak_count': len(result.peaks) if result is not None else 0,
                'quality': result.quality if result is not None else None,
                'error': item.error,
            })
        return pd.DataFrame(rows, columns=["index", "curve_id", "success", "cancelled", "strategy",
                                           "peak_count", "quality", "error"])


def _process_curve_task(curve: Curve, candidates, mode, config_manager, workflow_config,
                        user_config) -> WorkflowResult:
    registry = create_default_registry()
    controller = WorkflowController(registry, StrategyController(registry, mode),
                                    config_manager, workflow_config)
    return controller.execute(curve, candidates, user_config)


class BatchProcessor:
    """
    Parameters
    ----------
    max_workers : int
        Pool size
    use_processes : bool
        Spawn-context process pool instead of threads
    """

    def __init__(self, max_workers: int = 4, use_processes: bool = False):
        self.max_workers = max(1, int(max_workers))
        self.use_processes = use_processes

    def run(self, curves: Sequence[Curve], mode: Optional[ProcessingMode] = None,
            candidates: Optional[Sequence[Optional[List[Peak]]]] = None,
            user_config: Optional[Dict[str, Any]] = None,
            config_manager: Optional[ConfigManager] = None,
            workflow_config: Optional[WorkflowConfig] = None,
            registry=None,
            strategy_controller: Optional[StrategyController] = None,
            cancellation: Optional[CancellationToken] = None) -> BatchResult:
        curves = list(curves)
        mode = mode or Automatic()
        config_manager = config_manager or ConfigManager()
        workflow_config = workflow_config or WorkflowConfig.from_config(config_manager.get_config("workflow"))
        candidates = list(candidates) if candidates is not None else [None] * len(curves)
        items: List[Optional[BatchItem]] = [None for _ in curves]

        if self.use_processes:
            ctx = multiprocessing.get_context("spawn")
            executor = ProcessPoolExecutor(mp_context=ctx, max_workers=self.max_workers)

            def submit(idx):
                return executor.submit(_process_curve_task, curves[idx], candidates[idx], mode,
                                       config_manager, workflow_config, user_config)
        else:
            registry = registry or create_default_registry()
            strategy_controller = strategy_controller or StrategyController(registry, mode)
            workflow = WorkflowController(registry, strategy_controller,
                                          config_manager, workflow_config)
            executor = ThreadPoolExecutor(max_workers=self.max_workers)

            def submit(idx):
                return executor.submit(workflow.execute, curves[idx], candidates[idx],
                                       user_config, None, cancellation)

        logger.info("batch of %d curves on %d %s", len(curves), self.max_workers,
                    "processes" if self.use_processes else "threads")
        with executor:
            future_map = {submit(idx): idx for idx in range(len(curves))}
            for future in as_completed(future_map):
                idx = future_map[future]
                curve_id = curves[idx].curve_id
                if future.cancelled():
                    items[idx] = BatchItem(idx, curve_id, cancelled=True)
                    continue
                try:
                    items[idx] = BatchItem(idx, curve_id, result=future.result())
                except Exception as exc:
                    error_text = f"{type(exc).__name__}: {exc}"
                    logger.exception("Batch item %s (%s) failed: %s", idx, curve_id, error_text)
                    items[idx] = BatchItem(idx, curve_id, error=error_text)
                if cancellation is not None and cancellation.cancelled:
                    for pending in future_map:
                        pending.cancel()

        for idx, item in enumerate(items):
            if item is None:
                items[idx] = BatchItem(idx, curves[idx].curve_id, cancelled=True)
        result = BatchResult(items)
        logger.info("batch finished: %d succeeded, %d failed",
                    sum(item.success for item in result.items), len(result.failed))
        return result

"""
Strategy selection.

The controller runs in one of three modes:

``Automatic(fallback_strategy)``
    Score every rule against the ProcessingContext; the best informative
    score wins (ties go to the earlier rule), otherwise the fallback is used.
``Manual(strategy, allow_override)``
    Always use the given strategy; per-run overrides are only accepted when
    ``allow_override`` is set.
``Hybrid(manual_overrides)``
    Automatic selection, then the overrides are applied slot by slot.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from peakresolve.errors import ConfigError
from .component_registry import ComponentRegistry
from .strategy_builder import (
    COMPLEX_PEAKS,
    HIGH_PRECISION,
    OVERLAPPING_PEAKS,
    PREDEFINED_STRATEGIES,
    SIMPLE_PEAKS,
    ProcessingContext,
    ProcessingStrategy,
    validate_strategy,
)

logger = logging.getLogger(__name__)

StrategyRef = Union[str, ProcessingStrategy]
Rule = Callable[[ProcessingContext], Optional[Tuple[float, str]]]


@dataclass(frozen=True)
class Automatic:
    fallback_strategy: StrategyRef = SIMPLE_PEAKS


@dataclass(frozen=True)
class Manual:
    strategy: StrategyRef
    allow_override: bool = False


@dataclass(frozen=True)
class Hybrid:
    manual_overrides: Dict[str, Any] = field(default_factory=dict, compare=False)
    fallback_strategy: StrategyRef = SIMPLE_PEAKS


ProcessingMode = Union[Automatic, Manual, Hybrid]


def overlap_ratio_rule(context: ProcessingContext):
    if context.overlap_ratio < 0.1:
        return 1.0, SIMPLE_PEAKS
    if context.overlap_ratio < 0.5:
        return 0.8, OVERLAPPING_PEAKS
    return 0.8, COMPLEX_PEAKS


def snr_rule(context: ProcessingContext):
    if context.snr >= 100:
        return 0.9, HIGH_PRECISION
    if context.snr >= 10:
        return 0.5, OVERLAPPING_PEAKS
    return 0.6, SIMPLE_PEAKS


def complexity_rule(context: ProcessingContext):
    if context.complexity >= 0.7:
        name = COMPLEX_PEAKS
    elif context.complexity >= 0.3:
        name = OVERLAPPING_PEAKS
    else:
        name = SIMPLE_PEAKS
    return context.complexity, name


def data_quality_rule(context: ProcessingContext):
    if context.data_quality > 0.8:
        return 0.7, HIGH_PRECISION
    if context.data_quality > 0.5:
        return 0.5, OVERLAPPING_PEAKS
    return 0.4, SIMPLE_PEAKS


DEFAULT_RULES: Tuple[Rule, ...] = (overlap_ratio_rule, snr_rule, complexity_rule, data_quality_rule)


@dataclass(frozen=True)
class RuleEvaluation:
    rule: str
    score: float
    strategy: str


class StrategyController:
    """
    Pick a ProcessingStrategy for a curve.

    Parameters
    ----------
    registry : ComponentRegistry, optional
        Used to validate registered and manual strategies
    mode : Automatic, Manual or Hybrid
    rules : sequence of callables
        ``rule(context) -> (score, strategy_name)`` or None
    min_score : float
        Scores below this are treated as uninformative
    """

    def __init__(self, registry: Optional[ComponentRegistry] = None, mode: Optional[ProcessingMode] = None,
                 rules: Sequence[Rule] = DEFAULT_RULES, min_score: float = 0.1):
        self.registry = registry
        self.rules = list(rules)
        self.min_score = min_score
        self._strategies: Dict[str, ProcessingStrategy] = dict(PREDEFINED_STRATEGIES)
        self.mode: ProcessingMode = Automatic()
        self.set_mode(mode or Automatic())

    def set_mode(self, mode: ProcessingMode):
        if not isinstance(mode, (Automatic, Manual, Hybrid)):
            raise ConfigError(f"unknown processing mode {mode!r}")
        if isinstance(mode, Manual):
            self.resolve(mode.strategy)
        else:
            fallback = self.resolve(mode.fallback_strategy)
            if isinstance(mode, Hybrid):
                self._apply(fallback, mode.manual_overrides)
        self.mode = mode

    def register_strategy(self, strategy: ProcessingStrategy):
        if self.registry is not None:
            validate_strategy(strategy, self.registry)
        self._strategies[strategy.name] = strategy

    def get_strategy(self, name: str) -> ProcessingStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise ConfigError(
                f"unknown strategy '{name}'. Available: {', '.join(sorted(self._strategies))}"
            ) from None

    def list_strategies(self) -> List[str]:
        return sorted(self._strategies)

    def resolve(self, strategy: StrategyRef) -> ProcessingStrategy:
        if isinstance(strategy, ProcessingStrategy):
            if self.registry is not None:
                validate_strategy(strategy, self.registry)
            return strategy
        return self.get_strategy(strategy)

    def evaluate_rules(self, context: ProcessingContext) -> List[RuleEvaluation]:
        evaluations = []
        for rule in self.rules:
            outcome = rule(context)
            if outcome is None:
                continue
            score, name = outcome
            evaluations.append(RuleEvaluation(getattr(rule, "__name__", repr(rule)), float(score), name))
        return evaluations

    def recommend(self, context: ProcessingContext) -> Optional[RuleEvaluation]:
        """Best informative rule outcome; the earlier rule wins a tie."""
        best = None
        for evaluation in self.evaluate_rules(context):
            if evaluation.score < self.min_score:
                continue
            if best is None or evaluation.score > best.score:
                best = evaluation
        return best

    def initial_strategy(self) -> ProcessingStrategy:
        """Strategy in effect before a context exists (used by peak detection)."""
        mode = self.mode
        if isinstance(mode, Manual):
            return self.resolve(mode.strategy)
        strategy = self.resolve(mode.fallback_strategy)
        if isinstance(mode, Hybrid):
            strategy = self._apply(strategy, mode.manual_overrides)
        return strategy

    def select_strategy(self, context: ProcessingContext) -> ProcessingStrategy:
        mode = self.mode
        if isinstance(mode, Manual):
            strategy = self.resolve(mode.strategy)
            logger.info("manual strategy: %s", strategy.name)
            return strategy

        best = self.recommend(context)
        if best is None:
            strategy = self.resolve(mode.fallback_strategy)
            logger.info("no informative rule; using fallback strategy %s", strategy.name)
        else:
            strategy = self.get_strategy(best.strategy)
            logger.info("selected strategy %s (%s, score %.2f; overlap %.2f, SNR %.1f)",
                        strategy.name, best.rule, best.score, context.overlap_ratio, context.snr)

        if isinstance(mode, Hybrid):
            strategy = self._apply(strategy, mode.manual_overrides)
        return strategy

    def apply_overrides(self, strategy: ProcessingStrategy, overrides: Optional[Dict[str, Any]]) -> ProcessingStrategy:
        """Per-run overrides; refused in Manual mode unless ``allow_override`` is set."""
        if not overrides:
            return strategy
        if isinstance(self.mode, Manual) and not self.mode.allow_override:
            raise ConfigError(f"manual strategy '{strategy.name}' does not allow overrides")
        return self._apply(strategy, overrides)

    def _apply(self, strategy, overrides):
        updated = strategy.with_overrides(overrides)
        if self.registry is not None:
            validate_strategy(updated, self.registry)
        logger.debug("strategy %s overridden: %s", strategy.name, sorted(overrides))
        return updated

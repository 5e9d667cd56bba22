# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import re
import time
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Callable, List, Optional, Tuple

from loguru import logger as LOG  # type: ignore

STEP_KEYWORDS = ("Given", "When", "Then", "And", "But")


class UndefinedStep(Exception):
    pass


class AmbiguousStep(Exception):
    pass


class FeatureParseError(Exception):
    pass


class StepRegistry:
    """
    Maps step text patterns to the callables implementing them.
    """

    def __init__(self):
        self.steps: List[Tuple["re.Pattern", Callable]] = []

    def step(self, pattern: str, fn: Callable):
        self.steps.append((re.compile(pattern), fn))

    def match(self, text: str) -> Tuple[Callable, Tuple[str, ...]]:
        found = []
        for pattern, fn in self.steps:
            m = pattern.search(text)
            if m is not None:
                found.append((fn, m.groups()))
        if not found:
            raise UndefinedStep(f"No step matches: {text}")
        if len(found) > 1:
            raise AmbiguousStep(f"{len(found)} steps match: {text}")
        return found[0]


@dataclass
class Step:
    keyword: str
    text: str
    line: int

    def __str__(self):
        return f"{self.keyword} {self.text}"


@dataclass
class Scenario:
    name: str
    line: int
    tags: List[str] = field(default_factory=list)
    steps: List[Step] = field(default_factory=list)


@dataclass
class Feature:
    name: str
    path: str
    tags: List[str] = field(default_factory=list)
    background: List[Step] = field(default_factory=list)
    scenarios: List[Scenario] = field(default_factory=list)


def parse_feature(text: str, path: str = "<string>") -> Feature:
    """
    Parses the subset of Gherkin used by the bundled features: a single
    ``Feature:``, an optional ``Background:``, ``Scenario:`` blocks, steps,
    ``@tags`` and ``#`` comments.
    """
    feature: Optional[Feature] = None
    current: Optional[List[Step]] = None
    pending_tags: List[str] = []

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("@"):
            pending_tags.extend(t.lstrip("@") for t in line.split())
            continue

        head, _, rest = line.partition(":")
        if head == "Feature":
            if feature is not None:
                raise FeatureParseError(f"{path}:{lineno}: only one Feature is allowed")
            feature = Feature(rest.strip(), path, tags=pending_tags)
            pending_tags = []
            current = None
            continue

        if feature is None:
            raise FeatureParseError(f"{path}:{lineno}: expected Feature, got {line!r}")

        if head == "Background":
            if feature.scenarios:
                raise FeatureParseError(f"{path}:{lineno}: Background must precede scenarios")
            current = feature.background
        elif head == "Scenario":
            scenario = Scenario(
                rest.strip(), lineno, tags=feature.tags + pending_tags
            )
            pending_tags = []
            feature.scenarios.append(scenario)
            current = scenario.steps
        else:
            keyword, _, step_text = line.partition(" ")
            if keyword not in STEP_KEYWORDS:
                # Free text description under Feature
                if current is None:
                    continue
                raise FeatureParseError(f"{path}:{lineno}: unexpected line {line!r}")
            if current is None:
                raise FeatureParseError(f"{path}:{lineno}: step outside of a scenario")
            current.append(Step(keyword, step_text.strip(), lineno))

    if feature is None:
        raise FeatureParseError(f"{path}: no Feature found")
    return feature


def load_feature(path: str) -> Feature:
    with open(path, encoding="utf-8") as f:
        return parse_feature(f.read(), path)


class Status(Enum):
    success = auto()
    failure = auto()
    skipped = auto()


@dataclass
class StepResult:
    step: Step
    status: Status
    error: Optional[Exception] = None


@dataclass
class ScenarioResult:
    feature: str
    scenario: str
    status: Status
    steps: List[StepResult] = field(default_factory=list)
    duration: float = 0

    @property
    def error(self) -> Optional[Exception]:
        for r in self.steps:
            if r.error is not None:
                return r.error
        return None


class Runner:
    """
    Runs feature scenarios one after the other. Each scenario gets a fresh
    steps instance, built by ``steps_factory``, so that no state is carried
    over from a previous scenario.

    :param steps_factory: Callable returning an object with a ``register_steps(registry)`` method.
    :param str name_filter: Only run scenarios whose name contains this string (optional).
    :param list tags: Only run scenarios carrying at least one of these tags (optional).
    """

    def __init__(
        self,
        steps_factory: Callable,
        name_filter: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ):
        self.steps_factory = steps_factory
        self.name_filter = name_filter
        self.tags = tags

    def selected(self, scenario: Scenario) -> bool:
        if self.name_filter and self.name_filter not in scenario.name:
            return False
        if self.tags and not set(self.tags).intersection(scenario.tags):
            return False
        return True

    def run_scenario(self, feature: Feature, scenario: Scenario) -> ScenarioResult:
        LOG.opt(colors=True).info(f"<magenta>Scenario: {scenario.name}</>")
        steps = self.steps_factory()
        registry = StepRegistry()
        steps.register_steps(registry)

        result = ScenarioResult(feature.name, scenario.name, Status.success)
        start = time.time()
        try:
            for step in feature.background + scenario.steps:
                if result.status != Status.success:
                    result.steps.append(StepResult(step, Status.skipped))
                    continue
                try:
                    fn, args = registry.match(step.text)
                    fn(*args)
                except Exception as e:
                    LOG.error(f"{feature.path}:{step.line}: {step} failed: {e}")
                    result.steps.append(StepResult(step, Status.failure, e))
                    result.status = Status.failure
                else:
                    LOG.success(f"{step}")
                    result.steps.append(StepResult(step, Status.success))
        finally:
            close = getattr(steps, "close", None)
            if close is not None:
                close()
        result.duration = time.time() - start
        return result

    def run_feature(self, feature: Feature) -> List[ScenarioResult]:
        LOG.opt(colors=True).info(f"<magenta>Feature: {feature.name}</>")
        results = []
        for scenario in feature.scenarios:
            if not self.selected(scenario):
                LOG.warning(f'Scenario "{scenario.name}" not selected, skipping')
                results.append(
                    ScenarioResult(feature.name, scenario.name, Status.skipped)
                )
                continue
            results.append(self.run_scenario(feature, scenario))
        return results

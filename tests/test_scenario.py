# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.

import os

import pytest

from vctbdd.main import DEFAULT_FEATURES_DIR
from vctbdd.scenario import (
    AmbiguousStep,
    FeatureParseError,
    Runner,
    Status,
    StepRegistry,
    UndefinedStep,
    load_feature,
    parse_feature,
)
from vctbdd.steps import Steps

BUNDLED_FEATURE = os.path.join(DEFAULT_FEATURES_DIR, "vct.feature")

FEATURE = """
@smoke
Feature: Counter
  Counts things.

  Background:
    Given a counter

  # comment
  @fast
  Scenario: Increment
    When I add "1"
    Then the total is "1"

  Scenario: Broken
    When I add "2"
    And I do something unknown
    Then the total is "2"
"""


class CounterSteps:
    instances = []

    def __init__(self):
        self.total = None
        self.closed = False
        CounterSteps.instances.append(self)

    def register_steps(self, registry):
        registry.step(r"a counter$", self.start)
        registry.step(r'I add "([^"]*)"$', self.add)
        registry.step(r'the total is "([^"]*)"$', self.check)

    def start(self):
        self.total = 0

    def add(self, n):
        self.total += int(n)

    def check(self, n):
        assert str(self.total) == n, f"expected {n}, got {self.total}"

    def close(self):
        self.closed = True


@pytest.fixture(autouse=True)
def reset_counter_steps():
    CounterSteps.instances = []


def test_parse_feature():
    feature = parse_feature(FEATURE, "counter.feature")

    assert feature.name == "Counter"
    assert feature.tags == ["smoke"]
    assert [str(s) for s in feature.background] == ["Given a counter"]
    assert [s.name for s in feature.scenarios] == ["Increment", "Broken"]
    increment = feature.scenarios[0]
    assert increment.tags == ["smoke", "fast"]
    assert [s.keyword for s in increment.steps] == ["When", "Then"]
    assert increment.steps[0].text == 'I add "1"'
    assert increment.line == 11
    assert increment.steps[0].line == 12


def test_parse_bundled_feature():
    feature = load_feature(BUNDLED_FEATURE)

    assert len(feature.background) == 1
    assert len(feature.scenarios) == 2
    registry = StepRegistry()
    Steps().register_steps(registry)
    for scenario in feature.scenarios:
        for step in feature.background + scenario.steps:
            registry.match(step.text)


@pytest.mark.parametrize(
    "text",
    [
        "",
        "Scenario: no feature\n  Given a counter\n",
        "Feature: a\nFeature: b\n",
        "Feature: a\n  Given a counter\n",
        "Feature: a\n  Scenario: s\n  Background:\n",
        "Feature: a\n  Scenario: s\n    Whence a counter\n",
    ],
)
def test_parse_errors(text):
    with pytest.raises(FeatureParseError):
        parse_feature(text)


def test_registry_match():
    registry = StepRegistry()
    registry.step(r'add "([^"]*)"$', "add")
    registry.step(r"total$", "total")

    assert registry.match('I add "3"') == ("add", ("3",))
    with pytest.raises(UndefinedStep):
        registry.match("nothing")

    registry.step(r"to(tal)$", "other")
    with pytest.raises(AmbiguousStep):
        registry.match("the total")


def test_runner_uses_fresh_steps_per_scenario():
    feature = parse_feature(FEATURE)
    results = Runner(CounterSteps).run_feature(feature)

    assert [r.status for r in results] == [Status.success, Status.failure]
    assert len(CounterSteps.instances) == 2
    assert all(s.closed for s in CounterSteps.instances)
    assert CounterSteps.instances[0].total == 1
    assert CounterSteps.instances[1].total == 2


def test_failed_step_skips_remaining_steps():
    feature = parse_feature(FEATURE)
    broken = Runner(CounterSteps).run_scenario(feature, feature.scenarios[1])

    assert broken.status == Status.failure
    assert [r.status for r in broken.steps] == [
        Status.success,
        Status.success,
        Status.failure,
        Status.skipped,
    ]
    assert isinstance(broken.error, UndefinedStep)


def test_runner_filters():
    feature = parse_feature(FEATURE)

    by_tag = Runner(CounterSteps, tags=["fast"]).run_feature(feature)
    assert [r.status for r in by_tag] == [Status.success, Status.skipped]

    by_name = Runner(CounterSteps, name_filter="Broken").run_feature(feature)
    assert [r.status for r in by_name] == [Status.skipped, Status.failure]


def test_bundled_feature_against_fake_log(fake_log, fixtures, sleeps):
    """
    Runs the bundled scenarios, one after the other, against the same log.
    """
    fake_log.merge_after = 2

    def make_steps():
        return Steps(client_factory=fake_log.factory, sleep=sleeps.append)

    results = Runner(make_steps).run_feature(load_feature(BUNDLED_FEATURE))

    assert [r.status for r in results] == [Status.success, Status.success], [
        str(r.error) for r in results
    ]
    assert len(fake_log.leaves) == 3
    assert sleeps

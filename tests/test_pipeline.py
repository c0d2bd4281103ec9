"""Tests for stages and flows."""

from typing import List

import pytest

from cleaning_core.cache import RuleCache
from cleaning_core.datamodel import Schema
from cleaning_core.errors import AssemblyError, RecycledTableError
from cleaning_core.observability import Diagnostics
from cleaning_core.pipeline import Flow, FlowContext, FlowStatus, RuleInput, Stage
from cleaning_core.rules import Rule
from cleaning_core.table import MemoryTable


class Lookup(Stage[str, Rule]):
    name = "lookup"
    input_type = str
    output_type = Rule

    def execute(self, payload: str, context: FlowContext) -> Rule:
        return context.cache.get(payload)


class Describe(Stage[Rule, str]):
    name = "describe"
    input_type = Rule
    output_type = str

    def __init__(self, seen: List[str]):
        self.seen = seen

    def execute(self, payload: Rule, context: FlowContext) -> str:
        self.seen.append(payload.name)
        return f"{payload.name} reads {', '.join(payload.tables)}"


class Explode(Stage[Rule, str]):
    name = "explode"
    input_type = Rule
    output_type = str

    def __init__(self, table: MemoryTable):
        self.table = table

    def execute(self, payload: Rule, context: FlowContext) -> str:
        context.register(self.table)
        raise RuntimeError("detector crashed")


@pytest.fixture
def cache() -> RuleCache:
    return RuleCache()


@pytest.fixture
def rule() -> Rule:
    return Rule("zip_city", ["hospital"])


def test_flow_runs_stages_in_order(cache: RuleCache, rule: Rule) -> None:
    """Test a flow passes each stage's output to the next."""
    seen: List[str] = []
    diagnostics = Diagnostics()
    flow = Flow(rule.name, cache, diagnostics).set_input_key(cache.put(rule))
    flow.add_stage(Lookup()).add_stage(Describe(seen))

    result = flow.run()

    assert result.status == FlowStatus.SUCCEEDED
    assert result.succeeded
    assert result.output == "zip_city reads hospital"
    assert result.stages_run == 2
    assert seen == ["zip_city"]
    assert diagnostics.stats()["flow"]["count"] == 1


def test_flow_releases_cache_entry(cache: RuleCache, rule: Rule) -> None:
    """Test a finished flow removes its cache entry."""
    key = cache.put(rule)
    flow = Flow(rule.name, cache).set_input_key(key).add_stage(Lookup())

    flow.run()

    assert key not in cache


def test_add_stage_checks_types(cache: RuleCache) -> None:
    """Test add_stage rejects mismatched payload types."""
    flow = Flow("f", cache)

    with pytest.raises(AssemblyError):
        flow.add_stage(Describe([]))

    flow.add_stage(Lookup())
    with pytest.raises(AssemblyError):
        flow.add_stage(Lookup())


def test_run_requires_assembly(cache: RuleCache) -> None:
    """Test running a flow without stages."""
    with pytest.raises(AssemblyError):
        Flow("f", cache).run()


def test_failure_is_contained(cache: RuleCache, rule: Rule) -> None:
    """Test a stage failure ends the flow as FAILED."""
    table = MemoryTable("hospital", Schema("hospital", ["tid"]))
    flow = Flow(rule.name, cache).set_input_key(cache.put(rule))
    flow.add_stage(Lookup()).add_stage(Explode(table))

    result = flow.run()

    assert result.status == FlowStatus.FAILED
    assert isinstance(result.error, RuntimeError)
    assert result.stages_run == 1
    assert result.output is None
    with pytest.raises(RecycledTableError):
        table.size()


def test_cancelled_flow_runs_no_stage(cache: RuleCache, rule: Rule) -> None:
    """Test a cancelled flow runs no stage."""
    seen: List[str] = []
    flow = Flow(rule.name, cache).set_input_key(cache.put(rule))
    flow.add_stage(Lookup()).add_stage(Describe(seen))

    flow.cancel()
    result = flow.run()

    assert result.status == FlowStatus.CANCELLED
    assert result.stages_run == 0
    assert seen == []


def test_rule_input_payload(rule: Rule) -> None:
    """Test the RuleInput payload."""
    payload = RuleInput(rule, ["csv_hospital"])
    assert payload.rule is rule
    assert payload.table_names == ["csv_hospital"]

"""
Configuration models for clean plans using Pydantic.
Provides type-safe, validated configuration loaded from YAML.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, field_validator

from cleaning_core.rules import Rule, create_rule


class StoreConfig(BaseModel):
    """A named, externally configured relational store."""

    name: str = Field("default", description="Name identifying the store")
    path: Optional[str] = Field(None, description="DuckDB file path; None for in-memory")
    timeout_seconds: Optional[float] = Field(
        None, gt=0, description="Upper bound on a single store statement"
    )

    model_config = {"frozen": True}


class RuleSpec(BaseModel):
    """Declaration of one rule inside a clean plan."""

    name: str = Field(..., description="Unique rule name, used as its identity")
    type: str = Field(..., description="Registered rule type")
    tables: List[str] = Field(..., min_length=1, max_length=2, description="Input tables")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Rule parameters")
    enabled: bool = Field(True, description="Whether this rule is active")
    order: int = Field(0, description="Execution order (lower numbers first)")


class ExecutionSettings(BaseModel):
    """How the orchestrator runs flows."""

    max_workers: int = Field(4, ge=1, description="Flows executed concurrently")
    violation_table: str = Field("violation", description="Table violations are exported to")


class CleanPlan(BaseModel):
    """Complete configuration of one cleaning run."""

    version: str = Field("1.0", description="Configuration schema version")
    name: str = Field(..., description="Name of this clean plan")
    description: Optional[str] = Field(None, description="Description of the plan")

    source: StoreConfig = Field(default_factory=StoreConfig, description="Source store")
    csv_sources: List[str] = Field(
        default_factory=list, description="CSV files imported into the source store"
    )
    rules: List[RuleSpec] = Field(..., description="Rules to run")
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)

    observability: Dict[str, Any] = Field(
        default_factory=lambda: {"enabled": True, "service_name": "cleaning-core"},
        description="OpenTelemetry and logging configuration",
    )

    @field_validator("rules")
    @classmethod
    def sort_rules_by_order(cls, v: List[RuleSpec]) -> List[RuleSpec]:
        """Ensure rules are sorted by execution order."""
        return sorted(v, key=lambda r: r.order)

    @field_validator("rules")
    @classmethod
    def unique_rule_names(cls, v: List[RuleSpec]) -> List[RuleSpec]:
        names = [r.name for r in v]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate rule names: {sorted(duplicates)}")
        return v

    def build_rules(self) -> List[Rule]:
        """Instantiate the enabled rules through the rule registry."""
        return [
            create_rule(spec.type, spec.name, spec.tables, spec.parameters)
            for spec in self.rules
            if spec.enabled
        ]


def load_plan(path: Union[str, Path]) -> CleanPlan:
    """
    Load a clean plan from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated CleanPlan
    """
    with open(Path(path), "r") as f:
        plan_dict = yaml.safe_load(f)
    return CleanPlan(**plan_dict)


def save_plan(plan: CleanPlan, path: Union[str, Path]) -> None:
    """
    Save a clean plan to a YAML file.

    Args:
        plan: Plan to save
        path: Output file path
    """
    plan_dict = plan.model_dump(mode="json")
    with open(path, "w") as f:
        yaml.safe_dump(plan_dict, f, default_flow_style=False, sort_keys=False)

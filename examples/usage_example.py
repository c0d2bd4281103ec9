"""
Example usage of the cleaning core.

Demonstrates:
- Writing a rule against the Rule contract
- Lazily synchronized, store-backed tables and grouping
- Running detection and repair flows for a list of rules
- Loading a clean plan from YAML

Run from the repository root so the plan's CSV path resolves.
"""

from pathlib import Path

import polars as pl

from cleaning_core import (
    CleanExecutor,
    DuckDBStorage,
    ExecutionContext,
    Fix,
    RelationalTable,
    Rule,
    Violation,
    load_plan,
    register_rule,
)


@register_rule("not_null")
class NotNullRule(Rule):
    """Flags null values in ``column`` and fills them with ``default``."""

    def detect(self, table):
        column = self.parameters["column"]
        return [
            Violation(self.name, [row.get_cell(column)]) for row in table if row.get(column) is None
        ]

    def repair(self, violation):
        return [Fix(cell, self.parameters["default"]) for cell in violation.cells]


def table_example() -> None:
    """Shaping and grouping a store-backed table."""
    print("=" * 80)
    print("TABLE EXAMPLE")
    print("=" * 80)

    with DuckDBStorage() as storage:
        storage.save_dataframe(
            pl.DataFrame(
                {
                    "tid": [1, 2, 3, 4],
                    "region": ["EU", "EU", "US", "APAC"],
                    "quantity": [5, 0, 3, -1],
                }
            ),
            "orders",
        )

        table = RelationalTable("orders", storage).filter(["quantity > 0"]).order_by(["tid"])
        print(f"\n1. Query: {table.spec.build()}")
        print(f"   Rows: {[row.row_id for row in table]}")

        for partition in RelationalTable("orders", storage).group_on("region"):
            regions = {row.get('region') for row in partition}
            print(f"2. Partition {regions}: {partition.size()} row(s)")


def executor_example() -> None:
    """Detecting and repairing violations."""
    print("\n" + "=" * 80)
    print("EXECUTOR EXAMPLE")
    print("=" * 80)

    with DuckDBStorage() as storage:
        storage.save_dataframe(
            pl.DataFrame(
                {
                    "tid": [1, 2, 3],
                    "name": ["Ann", "Bo", "Cy"],
                    "email": ["ann@example.com", None, "cy@example.com"],
                }
            ),
            "customers",
        )

        rule = NotNullRule("email_not_null", ["customers"], {"column": "email", "default": "unknown"})
        executor = CleanExecutor(ExecutionContext(storage))

        report = executor.detect([rule])
        print(f"\n1. {report}")
        print(storage.query("SELECT * FROM violation"))

        report = executor.repair([rule])
        print(f"\n2. {report}")
        print(storage.load_dataframe("customers"))


def plan_example() -> None:
    """Running the rules of a YAML clean plan."""
    print("\n" + "=" * 80)
    print("PLAN EXAMPLE")
    print("=" * 80)

    plan = load_plan(Path(__file__).parent / "example_plan.yaml")
    print(f"\n1. Loaded plan: {plan.name} ({len(plan.rules)} rule(s))")

    with ExecutionContext.from_plan(plan) as context:
        report = CleanExecutor(context).detect()
        for result in report.results:
            print(f"2. {result.name}: {result.status.value} -> {result.output}")


def main() -> None:
    """Run all examples."""
    table_example()
    executor_example()
    plan_example()

    print("\n" + "=" * 80)
    print("Examples completed successfully!")
    print("=" * 80)


if __name__ == "__main__":
    main()

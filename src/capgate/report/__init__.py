"""
Reporting module for capgate.

Output formats:
    - Console: Rich terminal output with outcome icons
    - JSON: Structured output for programmatic consumption

Reports:
    - Decision log: Recent decisions with a summary by reason
    - Effective permissions: What an actor holds, and what is explicitly denied
    - Single decision: Outcome, reason and policy trail

Example:
    from capgate.report import generate_decisions_console_report, generate_decisions_json_report

    generate_decisions_console_report("capgate.db", limit=20)
    print(generate_decisions_json_report("capgate.db", allowed=False))
"""

from capgate.report.console import (
    generate_decisions_console_report,
    print_decision,
    print_permissions,
)
from capgate.report.json import (
    build_decision_dict,
    build_decisions_dict,
    build_permissions_dict,
    generate_decisions_json_report,
)

__all__ = [
    "build_decision_dict",
    "build_decisions_dict",
    "build_permissions_dict",
    "generate_decisions_console_report",
    "generate_decisions_json_report",
    "print_decision",
    "print_permissions",
]

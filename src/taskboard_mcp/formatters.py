"""Formatting functions for MCP responses."""
from typing import Any


def format_task(task: dict) -> str:
    """One-line task reference: number, title, status, priority, assignee."""
    assignee = task.get('assignee')
    assignee_info = f" → {assignee.get('full_name') or assignee['email']}" if assignee else ""
    return f"#{task['number']} {task['title']} [{task['status']}, {task['priority']}]{assignee_info} (ID: {task['id']})"


def format_blocked_task(entry: dict) -> str:
    """A blocked task followed by the unfinished tasks it waits on."""
    lines = [f"- {format_task(entry['task'])}"]
    for edge in entry['blocking']:
        lines.append(f"    waits on ({edge['type']}): {format_task(edge['depends_on'])}")
    return "\n".join(lines)


def format_dependency_chain(chain: list[dict]) -> str:
    """Indented tree of a task's transitive dependencies."""
    lines = []
    for entry in chain:
        indent = "  " * entry['depth']
        marker = "•" if entry['depth'] == 0 else "↳"
        lines.append(f"{indent}{marker} {format_task(entry['task'])}")
    return "\n".join(lines)


def format_dependency(edge: dict) -> str:
    return f"{edge['dependent_id']} depends on {edge['depends_on_id']} ({edge['type']}, ID: {edge['id']})"


def _format_value(value: Any) -> str:
    if isinstance(value, list):
        return "[" + ", ".join(str(v) for v in value) + "]"
    return f"'{value}'"


def format_history(entry: dict) -> str:
    """Format a history entry: version, action and per-field changes."""
    changes = dict(entry['changes'])
    action = changes.pop('action', 'updated')
    header = f"- v{entry['version']} [{entry['changed_at']}] {action}"
    if entry.get('changed_by_user_id'):
        header += f" by {entry['changed_by_user_id']}"

    lines = [header]
    for field, change in changes.items():
        if isinstance(change, dict) and 'from' in change:
            lines.append(f"    {field}: {_format_value(change['from'])} → {_format_value(change['to'])}")
        else:
            lines.append(f"    {field}: {_format_value(change)}")
    return "\n".join(lines)


def format_quality_analysis(result: dict) -> str:
    """Quality score, completeness checklist, issues and suggestions."""
    completeness = result['completeness']
    checks = [
        ("Title", completeness['has_title']),
        ("Description", completeness['has_description']),
        ("Acceptance criteria", completeness['has_acceptance_criteria']),
        ("Testable", completeness['is_testable']),
    ]
    parts = [
        f"**Quality Score: {result['quality_score']}/100**",
        "",
        "**Completeness:**",
    ]
    parts.extend(f"  {'✓' if ok else '✗'} {label}" for label, ok in checks)

    if result['potential_issues']:
        parts.append("\n**Potential Issues:**")
        parts.extend(f"  • {issue}" for issue in result['potential_issues'])
    if result['suggestions']:
        parts.append("\n**Suggestions:**")
        parts.extend(f"  • {suggestion}" for suggestion in result['suggestions'])
    return "\n".join(parts)


def format_coverage(coverage: dict) -> str:
    return f"""**Requirement Coverage**
Total requirements: {coverage['total']}
Implemented: {coverage['implemented']} ({coverage['implementation_coverage']:.1f}%)
With test cases: {coverage['tested']} ({coverage['test_coverage']:.1f}%)"""


def format_error_detail(detail: Any) -> str:
    """Render an API error detail, which is either a string or a structured dict."""
    if isinstance(detail, dict):
        message = detail.get('message', str(detail))
        if detail.get('cycle'):
            message += f"\nCycle: {' → '.join(detail['cycle'])}"
        return message
    if isinstance(detail, list):
        # FastAPI request validation errors
        return "; ".join(f"{'.'.join(str(p) for p in err.get('loc', []))}: {err.get('msg')}" for err in detail)
    return str(detail)

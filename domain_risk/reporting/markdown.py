from __future__ import annotations


def build_summary(report: dict) -> str:
    """Render a stored report (its JSON form) as a short Markdown summary."""
    rules = report.get("applied_rules", [])
    scan_ids = report.get("scan_ids", {})

    lines = [f"# Domain Risk Report: {report.get('domain', 'n/a')}", ""]
    lines.append(f"Generated: {report.get('created_at', 'n/a')}")
    lines.append(f"Report ID: {report.get('report_id', 'n/a')}")
    lines.append("")

    lines.append("## Score")
    lines.append(f"- Risk score: {report.get('score', 'n/a')} / 100")
    lines.append(f"- Risk tier: {report.get('risk_tier', 'n/a')}")
    lines.append("")

    lines.append("## Contributing Rules")
    if not rules:
        lines.append("- No rules triggered.")
    for rule in rules:
        lines.append(f"- +{rule.get('points')} | {rule.get('source')}: {rule.get('rule')}")
    lines.append("")

    lines.append("## Scans")
    if not scan_ids:
        lines.append("- No scans recorded.")
    for kind, scan_id in sorted(scan_ids.items()):
        lines.append(f"- {kind}: {scan_id}")

    return "\n".join(lines)

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable

from jinja2 import Environment, select_autoescape

from .types import Report


env = Environment(autoescape=select_autoescape(["html", "xml"]))

REPORT_EXTENSIONS = {"json": "json", "text": "txt", "markdown": "md", "md": "md", "html": "html"}


def _dependency_rows(report: Report) -> Iterable[dict]:
    summaries = {summary.coordinate: summary for summary in report.verdict.dependencies}
    for result in report.results:
        summary = summaries.get(result.coordinate)
        exemption = summary.exemption if summary else None
        yield {
            "dependency": str(result.coordinate),
            "success": result.success,
            "error_message": result.error_message,
            "errors": result.error_count,
            "warnings": result.warning_count,
            "counted_errors": summary.counted_errors if summary else result.error_count,
            "counted_warnings": summary.counted_warnings if summary else result.warning_count,
            "exemption": exemption.as_dict() if exemption else None,
            "findings": [finding.as_dict() for finding in result.findings],
        }


def render_json(report: Report) -> str:
    verdict = report.verdict
    payload = {
        "generated_at": report.generated_at.isoformat(),
        "dependencies": [result.as_dict() for result in report.results],
        "verdict": {
            "status": verdict.status,
            "totalErrors": verdict.total_errors,
            "totalWarnings": verdict.total_warnings,
            "blocked": verdict.blocked,
            "exempted": [str(coordinate) for coordinate in verdict.exempted],
            "unanalyzed": [str(coordinate) for coordinate in verdict.unanalyzed],
        },
        "summary": verdict.as_dict(),
        "failed_configurations": report.failed_configurations,
    }
    return json.dumps(payload, indent=2)


def render_text(report: Report) -> str:
    rule = "=" * 47
    lines = [rule, " DEPENDENCY COMPLIANCE ANALYSIS REPORT", rule, ""]

    for result in report.results:
        if result.has_findings:
            lines.append(f"Dependency: {result.coordinate}")
            lines.append("")
            lines.extend(str(finding) for finding in result.findings)
            lines.append("")

    verdict = report.verdict
    if verdict.unanalyzed:
        lines.append("Unanalyzed dependencies:")
        messages = {result.coordinate: result.error_message for result in report.results}
        for coordinate in verdict.unanalyzed:
            lines.append(f"  {coordinate}: {messages.get(coordinate) or 'unknown error'}")
        lines.append("")

    if verdict.exempted:
        lines.append("Exempted dependencies:")
        for summary in verdict.dependencies:
            if summary.exemption is not None:
                lines.append(
                    f"  {summary.coordinate}: {summary.exemption.reason} "
                    f"(approved by {summary.exemption.approved_by})"
                )
        lines.append("")

    lines.extend(
        [
            rule,
            "SUMMARY:",
            f"  Total dependencies analyzed: {report.analyzed_count}",
            f"  Dependencies with violations: {report.violating_count}",
            f"  Total errors: {verdict.total_errors}",
            f"  Total warnings: {verdict.total_warnings}",
            f"  Verdict: {verdict.status.upper()}",
            rule,
        ]
    )
    return "\n".join(lines)


def render_markdown(report: Report) -> str:
    verdict = report.verdict
    lines = [
        "# Dependency Compliance Report",
        "",
        f"Generated at: {report.generated_at.isoformat()}",
        f"Verdict: **{verdict.status.upper()}** ({verdict.mode.value} mode)",
        f"Errors: {verdict.total_errors} | Warnings: {verdict.total_warnings}",
    ]

    lines.append("\n## Dependencies\n")
    lines.append("| Dependency | Status | Errors | Warnings | Exemption |")
    lines.append("| --- | --- | --- | --- | --- |")
    for row in _dependency_rows(report):
        status = "analyzed" if row["success"] else f"unanalyzed: {row['error_message']}"
        exemption = row["exemption"]
        waiver = f"{exemption['reason']} ({exemption['approved_by']})" if exemption else "None"
        lines.append(
            f"| {row['dependency']} | {status} | {row['counted_errors']}/{row['errors']} "
            f"| {row['counted_warnings']}/{row['warnings']} | {waiver} |"
        )

    lines.append("\n## Findings\n")
    lines.append("| Dependency | Check | Severity | Location | Message | Suggestion |")
    lines.append("| --- | --- | --- | --- | --- | --- |")
    for row in _dependency_rows(report):
        for finding in row["findings"]:
            lines.append(
                f"| {row['dependency']} | {finding['check']} | {finding['severity']} "
                f"| {finding['file']}:{finding['line']} | {finding['message']} "
                f"| {finding.get('suggestion') or ''} |"
            )

    if verdict.expired_exemptions:
        lines.append("\n## Expired exemptions\n")
        for exemption in verdict.expired_exemptions:
            lines.append(
                f"- {exemption.dependency} (approved by {exemption.approved_by}, "
                f"expired {exemption.expires.isoformat() if exemption.expires else 'unknown'})"
            )

    return "\n".join(lines)


def render_html(report: Report) -> str:
    template = env.from_string(
        """
<!doctype html>
<html lang=\"en\">
<head>
  <meta charset=\"utf-8\" />
  <title>Dependency Compliance Report</title>
  <style>
    body { font-family: Arial, sans-serif; margin: 2rem; }
    h1, h2 { color: #1f2937; }
    table { border-collapse: collapse; width: 100%; margin-bottom: 1.5rem; }
    th, td { border: 1px solid #d1d5db; padding: 0.5rem; }
    th { background: #f3f4f6; text-align: left; }
    .badge { display: inline-block; padding: 0.35rem 0.6rem; border-radius: 0.4rem; font-weight: 600; }
    .badge.pass { background: #d1fae5; color: #065f46; }
    .badge.warn { background: #fef3c7; color: #92400e; }
    .badge.block { background: #fee2e2; color: #991b1b; }
    .badge.sev-ERROR { background: #fee2e2; color: #991b1b; }
    .badge.sev-WARNING { background: #fef3c7; color: #92400e; }
    .badge.sev-INFO { background: #e0f2fe; color: #0369a1; }
  </style>
</head>
<body>
  <h1>Dependency Compliance Report</h1>
  <p>Generated at: {{ generated_at }}</p>
  <p>Verdict: <span class=\"badge {{ status }}\">{{ status | upper }}</span> ({{ mode }} mode)</p>
  <p>Errors: {{ total_errors }} &middot; Warnings: {{ total_warnings }}</p>
  <section>
    <h2>Dependencies</h2>
    <table>
      <thead><tr><th>Dependency</th><th>Status</th><th>Errors (counted/found)</th><th>Warnings (counted/found)</th><th>Exemption</th></tr></thead>
      <tbody>
        {% for row in dependencies %}
        <tr>
          <td>{{ row.dependency }}</td>
          <td>{% if row.success %}analyzed{% else %}unanalyzed: {{ row.error_message }}{% endif %}</td>
          <td>{{ row.counted_errors }}/{{ row.errors }}</td>
          <td>{{ row.counted_warnings }}/{{ row.warnings }}</td>
          <td>{% if row.exemption %}{{ row.exemption.reason }} ({{ row.exemption.approved_by }}){% else %}None{% endif %}</td>
        </tr>
        {% endfor %}
      </tbody>
    </table>
  </section>
  <section>
    <h2>Findings</h2>
    <table>
      <thead><tr><th>Dependency</th><th>Check</th><th>Severity</th><th>Location</th><th>Message</th><th>Suggestion</th></tr></thead>
      <tbody>
        {% for row in dependencies %}
          {% for finding in row.findings %}
          <tr>
            <td>{{ row.dependency }}</td>
            <td>{{ finding.check }}</td>
            <td><span class=\"badge sev-{{ finding.severity }}\">{{ finding.severity }}</span></td>
            <td>{{ finding.file }}:{{ finding.line }}</td>
            <td>{{ finding.message }}</td>
            <td>{{ finding.suggestion or "" }}</td>
          </tr>
          {% endfor %}
        {% endfor %}
      </tbody>
    </table>
  </section>
  {% if expired %}
  <section>
    <h2>Expired exemptions</h2>
    <ul>
      {% for exemption in expired %}
      <li>{{ exemption.dependency }} (approved by {{ exemption.approved_by }}, expired {{ exemption.expires }})</li>
      {% endfor %}
    </ul>
  </section>
  {% endif %}
</body>
</html>
"""
    )

    verdict = report.verdict
    return template.render(
        generated_at=report.generated_at.isoformat(),
        status=verdict.status,
        mode=verdict.mode.value,
        total_errors=verdict.total_errors,
        total_warnings=verdict.total_warnings,
        dependencies=list(_dependency_rows(report)),
        expired=[exemption.as_dict() for exemption in verdict.expired_exemptions],
    )


def render_report(report: Report, fmt: str) -> str:
    fmt = fmt.lower()
    if fmt == "json":
        return render_json(report)
    if fmt == "text":
        return render_text(report)
    if fmt in {"md", "markdown"}:
        return render_markdown(report)
    if fmt == "html":
        return render_html(report)
    raise ValueError(f"Unknown report format: {fmt}")


def default_report_path(directory: Path, fmt: str) -> Path:
    return directory / f"dependency-analysis.{REPORT_EXTENSIONS.get(fmt.lower(), fmt.lower())}"


def write_report(report: Report, fmt: str, destination: Path | None) -> str:
    output = render_report(report, fmt)
    if destination:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(output)
    return output

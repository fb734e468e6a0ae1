"""Render a ResponseBundle as JSON, CSV or Markdown for saving to disk."""
from __future__ import annotations

import csv
import io
import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .types import ResponseBundle, TargetResult, TargetStatus

FORMAT_EXTENSIONS = {"json": "json", "csv": "csv", "markdown": "md"}


def _iso(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).isoformat()


def _single_line(text: str) -> str:
    return text.replace("\r", " ").replace("\n", " ")


def default_filename(fmt: str, prompt: Optional[str] = None, now: Optional[datetime] = None) -> str:
    if fmt not in FORMAT_EXTENSIONS:
        raise ValueError(f"unsupported export format: {fmt}")
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y-%m-%dT%H-%M-%S")
    prefix = re.sub(r"[^a-z0-9]", "_", prompt[:30].lower()) if prompt else "chatbot_responses"
    return f"{prefix}_{stamp}.{FORMAT_EXTENSIONS[fmt]}"


def to_json(bundle: ResponseBundle, include_metadata: bool = True, include_errors: bool = True) -> str:
    responses: List[Dict[str, Any]] = []
    for result in bundle.results:
        entry: Dict[str, Any] = {
            "id": result.target_id,
            "name": result.name,
            "response": result.response,
            "status": result.status.value,
            "timestamp": result.timestamp,
        }
        if include_metadata:
            entry["metadata"] = {"elapsed_ms": result.elapsed_ms, "attempts": result.attempts}
        if include_errors and result.error is not None:
            entry["error"] = {"type": result.error.value, "message": result.detail}
        responses.append(entry)

    document: Dict[str, Any] = {
        "timestamp": bundle.timestamp,
        "prompt": bundle.prompt,
        "responses": responses,
    }
    if include_metadata:
        document["metadata"] = bundle.to_dict()["metadata"]
    return json.dumps(document, indent=2, ensure_ascii=False)


def to_csv(bundle: ResponseBundle, include_metadata: bool = True, include_errors: bool = True) -> str:
    columns = ["id", "name", "status", "response", "timestamp"]
    if include_metadata:
        columns += ["elapsed_ms", "attempts"]
    if include_errors:
        columns += ["error_type", "error_message"]

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=columns, lineterminator="\n")
    writer.writeheader()
    for result in bundle.results:
        row: Dict[str, Any] = {
            "id": result.target_id,
            "name": result.name,
            "status": result.status.value,
            "response": _single_line(result.response),
            "timestamp": _iso(result.timestamp),
        }
        if include_metadata:
            row["elapsed_ms"] = "" if result.elapsed_ms is None else result.elapsed_ms
            row["attempts"] = result.attempts
        if include_errors:
            row["error_type"] = result.error.value if result.error else ""
            row["error_message"] = _single_line(result.detail or "")
        writer.writerow(row)
    return buf.getvalue()


def _markdown_entry(index: int, result: TargetResult, include_metadata: bool, include_errors: bool) -> str:
    lines = [
        f"### {index}. {result.name}",
        "",
        f"**Status:** {result.status.value}",
        "",
        f"**Timestamp:** {_iso(result.timestamp)}",
        "",
    ]
    if include_metadata:
        lines.append("**Metadata:**")
        if result.elapsed_ms is not None:
            lines.append(f"- Response Time: {result.elapsed_ms}ms")
        lines.append(f"- Attempts: {result.attempts}")
        lines.append("")
    if result.status == TargetStatus.SUCCESS and result.response:
        lines += ["**Response:**", "```", result.response, "```", ""]
    if include_errors and result.error is not None:
        lines += ["**Error Details:**", f"- Type: {result.error.value}"]
        if result.detail:
            lines.append(f"- Message: {result.detail}")
        lines.append("")
    lines += ["---", ""]
    return "\n".join(lines)


def to_markdown(
    bundle: ResponseBundle,
    include_metadata: bool = True,
    include_errors: bool = True,
    exported_at: Optional[datetime] = None,
) -> str:
    parts = ["# Chatbot Responses Export", ""]
    if bundle.prompt:
        parts += [f"**Prompt:** {bundle.prompt}", ""]
    parts += [f"**Export Date:** {(exported_at or datetime.now(timezone.utc)).isoformat()}", ""]

    if include_metadata:
        parts += [
            "## Summary",
            "",
            f"- **Total Duration:** {bundle.elapsed_ms}ms",
            f"- **Success Count:** {bundle.success_count}",
            f"- **Error Count:** {bundle.error_count}",
            f"- **Timeout Count:** {bundle.timeout_count}",
            f"- **Total Responses:** {len(bundle.results)}",
            "",
        ]

    parts += ["## Responses", ""]
    for index, result in enumerate(bundle.results, start=1):
        parts.append(_markdown_entry(index, result, include_metadata, include_errors))
    return "\n".join(parts)


RENDERERS = {"json": to_json, "csv": to_csv, "markdown": to_markdown}


def render(bundle: ResponseBundle, fmt: str, **options: Any) -> str:
    try:
        renderer = RENDERERS[fmt]
    except KeyError:
        raise ValueError(f"unsupported export format: {fmt}") from None
    return renderer(bundle, **options)


def export_bundle(
    bundle: ResponseBundle,
    fmt: str,
    path: Optional[Union[str, Path]] = None,
    directory: Union[str, Path] = ".",
    **options: Any,
) -> Path:
    """Write the rendered bundle and return the path written."""
    content = render(bundle, fmt, **options)
    target = Path(path) if path else Path(directory) / default_filename(fmt, bundle.prompt)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")
    return target

"""Structured review extraction from agent CLI output.

The agent is an uncontrolled text producer: the review document may arrive
bare, inside a result envelope, inside a markdown fence, or buried in prose.
Extraction is an ordered chain of small strategies, first match wins:

    unwrap_envelope()        {"type": "result", "result": "<nested text>"}
      → strip_fences()       ```json ... ``` or ``` { ... } ```
      → locate_review_object()   {  "files": ... } with brace matching
      → parse_review_document()  JSON → ReviewOutcome

When no envelope applies, the last three steps run against the raw output.

Nothing here raises. Every failure is reported as an ExtractionFailure so
callers decide the policy (see coerce_unparsed).
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass

from revloop_core.models import FileReviewResult, ReviewComment, ReviewOutcome, Severity
from revloop_core.utils.text import excerpt

logger = logging.getLogger(__name__)

UNPARSED_SUMMARY = "Review completed but response could not be parsed"

# A closing fence on its own line is preferred: JSON string values cannot
# contain raw newlines, so code fences inside comment text never match it.
_JSON_FENCE_LINE_RE = re.compile(r"```json[ \t]*\r?\n(.*?)\r?\n[ \t]*```", re.IGNORECASE | re.DOTALL)
_JSON_FENCE_RE = re.compile(r"```json(.*?)```", re.IGNORECASE | re.DOTALL)
_FENCE_LINE_RE = re.compile(r"```[ \t]*\r?\n(.*?)\r?\n[ \t]*```", re.DOTALL)
_FENCE_RE = re.compile(r"```(.*?)```", re.DOTALL)

# Opening brace, any whitespace (including newlines), then the "files" key.
_ANCHOR_RE = re.compile(r'\{\s*"files"', re.IGNORECASE)


@dataclass
class ExtractionFailure:
    reason: str


def extract(raw: str) -> ReviewOutcome | ExtractionFailure:
    """Extract a ReviewOutcome from raw agent output."""
    if not raw or not raw.strip():
        return ExtractionFailure("empty output")

    nested = unwrap_envelope(raw)
    if nested is not None:
        # The envelope was recognised, so its result text is authoritative.
        return _extract_document(nested)

    return _extract_document(raw)


def coerce_unparsed(result: ReviewOutcome | ExtractionFailure) -> ReviewOutcome:
    """Turn an extraction failure into a successful, empty outcome.

    A malformed response from an agent that exited cleanly is final and is
    never retried.
    """
    if isinstance(result, ReviewOutcome):
        result.success = True
        return result
    logger.warning("Could not extract a review from agent output: %s", result.reason)
    return ReviewOutcome.empty(UNPARSED_SUMMARY)


def unwrap_envelope(raw: str) -> str | None:
    """Return the nested ``result`` text of a CLI result envelope, or None.

    The envelope is the span from the first ``{`` to the last ``}``. The
    bookkeeping fields (type, subtype, duration, session/request ids) are
    only logged.
    """
    start = raw.find("{")
    end = raw.rfind("}")
    if start < 0 or end <= start:
        return None

    try:
        data = json.loads(raw[start : end + 1])
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict):
        return None

    envelope = _lower_keys(data)
    result = envelope.get("result")
    if isinstance(result, dict):
        result = json.dumps(result)
    if not isinstance(result, str) or not result.strip():
        return None

    logger.debug(
        "Parsed agent envelope (type=%s, subtype=%s, duration_ms=%s)",
        envelope.get("type"),
        envelope.get("subtype"),
        envelope.get("duration_ms"),
    )
    return result


def strip_fences(text: str) -> str:
    """Return the content of the review fence in ``text``, or ``text`` unchanged."""
    if "```json" in text.lower():
        match = _JSON_FENCE_LINE_RE.search(text) or _JSON_FENCE_RE.search(text)
        if match:
            logger.debug("Extracted JSON from markdown code block")
            return match.group(1).strip()
        return text

    if "```" in text:
        match = _FENCE_LINE_RE.search(text) or _FENCE_RE.search(text)
        if match:
            content = match.group(1).strip()
            if content.startswith("{"):
                logger.debug("Extracted JSON from generic code block")
                return content

    return text


def locate_review_object(text: str) -> str | None:
    """Return the JSON object whose first key is ``"files"``, or None."""
    match = _ANCHOR_RE.search(text)
    if match is None:
        logger.debug("No review JSON found in agent output: %s", excerpt(text))
        return None

    start = match.start()
    end = _matching_brace(text, start)
    if end is None:
        logger.debug("Could not find closing brace for review JSON")
        return None
    return text[start : end + 1]


def parse_review_document(span: str) -> ReviewOutcome | ExtractionFailure:
    """Parse a located review object. Field names are matched case-insensitively."""
    try:
        data = json.loads(span)
    except json.JSONDecodeError as e:
        logger.debug("Failed to parse review JSON (%s): %s", e, excerpt(span))
        return ExtractionFailure(f"invalid JSON: {e}")

    if not isinstance(data, dict):
        return ExtractionFailure("review document is not an object")

    doc = _lower_keys(data)
    files_raw = doc.get("files") or []
    if not isinstance(files_raw, list):
        return ExtractionFailure("'files' is not an array")

    files = [_parse_file(item) for item in files_raw if isinstance(item, dict)]
    outcome = ReviewOutcome(
        files=files,
        success=True,
        overall_summary=_as_text(doc.get("overallsummary")) or None,
    )
    _backfill_file_paths(outcome)
    return outcome


def _extract_document(text: str) -> ReviewOutcome | ExtractionFailure:
    candidate = strip_fences(text)
    span = locate_review_object(candidate)
    if span is None:
        return ExtractionFailure("no review object found")
    return parse_review_document(span)


def _parse_file(item: dict) -> FileReviewResult:
    entry = _lower_keys(item)
    file_path = _as_text(entry.get("filepath"))

    comments: list[ReviewComment] = []
    comments_raw = entry.get("comments") or []
    if isinstance(comments_raw, list):
        for raw_comment in comments_raw:
            if not isinstance(raw_comment, dict):
                continue
            c = _lower_keys(raw_comment)
            text = _as_text(c.get("comment"))
            if not text:
                continue
            comments.append(
                ReviewComment(
                    file_path=_as_text(c.get("filepath")),
                    text=text,
                    severity=Severity.parse(c.get("severity")),
                    line_number=_as_line(c.get("linenumber")),
                )
            )

    return FileReviewResult(
        file_path=file_path,
        comments=comments,
        summary=_as_text(entry.get("summary")) or None,
    )


def _backfill_file_paths(outcome: ReviewOutcome) -> None:
    for file_result in outcome.files:
        for comment in file_result.comments:
            if not comment.file_path:
                comment.file_path = file_result.file_path


def _matching_brace(text: str, start: int) -> int | None:
    """Index of the brace closing the object opened at ``start``.

    Braces inside JSON string literals do not count, so code snippets in
    comment text cannot end the object early.
    """
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def _lower_keys(data: dict) -> dict:
    return {str(k).lower(): v for k, v in data.items()}


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (dict, list)):
        return ""
    return str(value)


def _as_line(value) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, int) and value > 0:
        return value
    return None

"""
Response parsing for the generative-search provider.

The provider has no guaranteed output schema. An answer can arrive as
``emit_results`` function-call arguments, as JSON in the assistant text
(raw or in a markdown fence), or as tab-delimited ``POST`` lines:

    POST<TAB><date><TAB>@<handle><TAB><status id><TAB><url><TAB><text>

A bare ``NO_RESULTS`` line means the search matched nothing.

Each strategy returns a ``ParseOutcome`` (parsed / empty / unparsable) or
None when its encoding is absent. ``parse_response`` runs them in order and
stops at the first parsed or empty outcome.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

EMIT_RESULTS_FUNCTION = "emit_results"
SNIPPET_CHARS = 240
NO_RESULTS_MARKER = "NO_RESULTS"
POST_LINE_FIELDS = 6

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_DIGITS_RE = re.compile(r"^\d+$")


class ParseStatus(str, Enum):
    PARSED = "parsed"
    EMPTY = "empty"
    UNPARSABLE = "unparsable"


@dataclass
class ParseOutcome:
    status: ParseStatus
    strategy: str
    results: List[Dict[str, Any]] = field(default_factory=list)
    payload: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    line_stats: Optional[Dict[str, int]] = None
    debug: Dict[str, Any] = field(default_factory=dict)

    @property
    def results_count(self) -> Optional[int]:
        return None if self.status == ParseStatus.UNPARSABLE else len(self.results)

    def as_meta(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {
            "parse_status": self.status.value,
            "parse_strategy": self.strategy,
            "results_count": self.results_count,
            "assistant_parse_error": self.status == ParseStatus.UNPARSABLE,
        }
        if self.reason:
            meta["parse_reason"] = self.reason
        if self.line_stats is not None:
            meta["line_stats"] = self.line_stats
        meta.update(self.debug)
        return meta


@dataclass
class ResponseView:
    """The pieces of a provider response the strategies look at."""
    response: Dict[str, Any]
    assistant_text: Optional[str]
    emit_args: Optional[str]

    @classmethod
    def from_response(cls, response: Any) -> "ResponseView":
        rec = response if isinstance(response, dict) else {}
        return cls(
            response=rec,
            assistant_text=extract_assistant_text(rec),
            emit_args=extract_function_call_arguments(rec, EMIT_RESULTS_FUNCTION),
        )


# ============================================================================
# Response inspection
# ============================================================================

def _collect_output_text(output: Any) -> Optional[str]:
    if not isinstance(output, list):
        return None
    parts = []
    for item in output:
        if not isinstance(item, dict):
            continue
        if item.get("type") != "message" or item.get("role") != "assistant":
            continue
        content = item.get("content")
        if isinstance(content, list):
            for part in content:
                if isinstance(part, dict) and part.get("type") in ("output_text", "text"):
                    text = part.get("text")
                    if isinstance(text, str) and text:
                        parts.append(text)
        elif isinstance(content, str) and content:
            parts.append(content)
    return "".join(parts) if parts else None


def extract_assistant_text(response: Dict[str, Any]) -> Optional[str]:
    """Assistant text from a Responses API ``output[]``, ``output_text`` or chat choices."""
    combined = _collect_output_text(response.get("output"))
    if combined:
        return combined

    output_text = response.get("output_text")
    if isinstance(output_text, str) and output_text:
        return output_text

    choices = response.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict):
            content = message.get("content")
            if isinstance(content, str) and content:
                return content
    return None


def extract_function_call_arguments(response: Dict[str, Any], name: str) -> Optional[str]:
    output = response.get("output")
    if not isinstance(output, list):
        return None
    for item in output:
        if not isinstance(item, dict):
            continue
        if item.get("type") != "function_call" or item.get("name") != name:
            continue
        args = item.get("arguments")
        if isinstance(args, str) and args:
            return args
        if isinstance(args, dict):
            return json.dumps(args)
        return None
    return None


def extract_usage(response: Dict[str, Any]) -> Optional[Tuple[int, int]]:
    """(input_tokens, output_tokens) when the provider reported both."""
    usage = response.get("usage")
    if not isinstance(usage, dict):
        return None

    def _number(*keys: str) -> Optional[int]:
        for key in keys:
            value = usage.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                return int(value)
        return None

    prompt = _number("prompt_tokens", "input_tokens")
    completion = _number("completion_tokens", "output_tokens")
    if prompt is None or completion is None:
        return None
    return prompt, completion


def build_snippets(text: str, prefix: str = "assistant_text") -> Dict[str, Any]:
    """Head/tail of the raw text plus its length, for triage without the full payload."""
    trimmed = text.strip()
    length = len(trimmed)
    return {
        f"{prefix}_head": trimmed[:SNIPPET_CHARS],
        f"{prefix}_tail": trimmed[-SNIPPET_CHARS:] if length > SNIPPET_CHARS else trimmed,
        f"{prefix}_length": length,
    }


# ============================================================================
# JSON helpers
# ============================================================================

def try_parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse text as JSON; a top-level array is wrapped as ``{"results": [...]}``."""
    try:
        parsed = json.loads(text)
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(parsed, list):
        return {"results": parsed}
    if isinstance(parsed, dict):
        return parsed
    return None


def strip_markdown_fence(text: str) -> str:
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text


def _bracketed_chunk(text: str, open_char: str, close_char: str) -> Optional[str]:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start:end + 1]


def has_post_lines(text: str) -> bool:
    """True when any line is a tab-delimited POST line or the NO_RESULTS marker."""
    for line in text.splitlines():
        if line.lstrip().startswith("POST\t") or line.strip() == NO_RESULTS_MARKER:
            return True
    return False


def parse_json_from_text(text: str) -> Optional[Dict[str, Any]]:
    stripped = strip_markdown_fence(text).lstrip("\ufeff").strip()
    direct = try_parse_json_object(stripped)
    if direct is not None:
        return direct

    # brackets inside post text are not a JSON payload
    if has_post_lines(stripped):
        return None

    for open_char, close_char in (("[", "]"), ("{", "}")):
        chunk = _bracketed_chunk(stripped, open_char, close_char)
        if chunk:
            parsed = try_parse_json_object(chunk)
            if parsed is not None:
                return parsed
    return None


def extract_structured_error(text: Optional[str]) -> Optional[Dict[str, Optional[str]]]:
    """``{"error": {"code", "message"}}`` emitted by the model in place of results."""
    if not text:
        return None
    obj = parse_json_from_text(text)
    if not obj:
        return None
    err = obj.get("error")
    if not isinstance(err, dict):
        return None
    code = err.get("code")
    if not isinstance(code, str) or not code:
        return None
    message = err.get("message")
    return {"code": code, "message": message if isinstance(message, str) and message else None}


def _outcome_from_payload(payload: Dict[str, Any], strategy: str) -> ParseOutcome:
    results = payload.get("results")
    if not isinstance(results, list):
        return ParseOutcome(
            status=ParseStatus.UNPARSABLE,
            strategy=strategy,
            payload=payload,
            reason="missing_results_array",
        )
    entries = [r for r in results if isinstance(r, dict)]
    if results and not entries:
        return ParseOutcome(
            status=ParseStatus.UNPARSABLE,
            strategy=strategy,
            payload=payload,
            reason="non_object_results",
        )
    status = ParseStatus.PARSED if entries else ParseStatus.EMPTY
    return ParseOutcome(status=status, strategy=strategy, results=entries, payload=payload)


# ============================================================================
# Strategies
# ============================================================================

def parse_emit_results(view: ResponseView) -> Optional[ParseOutcome]:
    if view.emit_args is None:
        return None
    payload = try_parse_json_object(view.emit_args)
    if payload is None:
        return ParseOutcome(
            status=ParseStatus.UNPARSABLE,
            strategy="emit_results",
            reason="invalid_arguments_json",
            debug=build_snippets(view.emit_args, prefix="emit_results_args"),
        )
    return _outcome_from_payload(payload, "emit_results")


def parse_json_text(view: ResponseView) -> Optional[ParseOutcome]:
    if not view.assistant_text:
        return None
    payload = parse_json_from_text(view.assistant_text)
    if payload is None:
        return None
    outcome = _outcome_from_payload(payload, "json_text")
    if outcome.status == ParseStatus.UNPARSABLE:
        outcome.debug = build_snippets(view.assistant_text)
    return outcome


def parse_post_line(line: str) -> Optional[Dict[str, Any]]:
    """One six-field POST line as a result dict; None when malformed."""
    fields = line.split("\t", POST_LINE_FIELDS - 1)
    if len(fields) != POST_LINE_FIELDS or fields[0].strip() != "POST":
        return None
    _, date, handle, status_id, url, text = (f.strip() for f in fields)
    if not handle.startswith("@") or len(handle) < 2:
        return None
    if not _DIGITS_RE.match(status_id):
        return None
    if not text:
        return None
    return {
        "id": status_id,
        "date": date or None,
        "url": url if url.startswith(("http://", "https://")) else None,
        "text": text,
        "user_handle": handle[1:],
        "user_display_name": None,
    }


def parse_post_lines(view: ResponseView) -> Optional[ParseOutcome]:
    if not view.assistant_text:
        return None

    lines = [ln for ln in view.assistant_text.splitlines() if ln.strip()]
    post_lines = [ln for ln in lines if ln.lstrip().startswith("POST")]
    no_results = any(ln.strip() == NO_RESULTS_MARKER for ln in lines)
    if not post_lines and not no_results:
        return None

    results = []
    invalid = 0
    for line in post_lines:
        parsed = parse_post_line(line.lstrip())
        if parsed is None:
            invalid += 1
        else:
            results.append(parsed)

    stats = {"total": len(post_lines), "valid": len(results), "invalid": invalid}
    if results:
        return ParseOutcome(
            status=ParseStatus.PARSED, strategy="post_lines", results=results, line_stats=stats
        )
    if no_results and not post_lines:
        return ParseOutcome(status=ParseStatus.EMPTY, strategy="post_lines", line_stats=stats)
    return ParseOutcome(
        status=ParseStatus.UNPARSABLE,
        strategy="post_lines",
        reason="no_valid_post_lines",
        line_stats=stats,
        debug=build_snippets(view.assistant_text),
    )


Strategy = Callable[[ResponseView], Optional[ParseOutcome]]

STRATEGIES: List[Strategy] = [parse_emit_results, parse_json_text, parse_post_lines]


def parse_response(response: Any, strategies: Optional[List[Strategy]] = None) -> ParseOutcome:
    """
    Run the strategies in priority order.

    The first parsed or empty outcome wins. Otherwise the first unparsable
    outcome is returned, or a ``no_output`` failure when nothing applied.
    """
    view = ResponseView.from_response(response)
    first_failure: Optional[ParseOutcome] = None

    for strategy in strategies or STRATEGIES:
        outcome = strategy(view)
        if outcome is None:
            continue
        if outcome.status != ParseStatus.UNPARSABLE:
            return outcome
        if first_failure is None:
            first_failure = outcome

    if first_failure is not None:
        if view.assistant_text and "assistant_text_head" not in first_failure.debug:
            first_failure.debug.update(build_snippets(view.assistant_text))
        logger.warning(
            f"Unparsable provider output via {first_failure.strategy}: {first_failure.reason}"
        )
        return first_failure

    debug = build_snippets(view.assistant_text) if view.assistant_text else {}
    reason = "unrecognised_text" if view.assistant_text else "no_output"
    logger.warning(f"Provider output could not be parsed ({reason})")
    return ParseOutcome(
        status=ParseStatus.UNPARSABLE, strategy="none", reason=reason, debug=debug
    )

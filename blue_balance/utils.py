"""
Utility functions for the hydration tracker.

This module contains helpers that are not tied to any particular
framework or persistence mechanism: parsing of clock-of-day strings,
cleaning up coach replies, pulling the structured action directive out
of a reply, and a small heuristic coach used whenever the AI service is
not configured or cannot be reached. The heuristic coach is not meant to
be clever; it recognises a handful of settings requests and otherwise
answers from the user's numbers.
"""

import json
import re
from typing import Any, Dict, List, Optional, Tuple

CLOCK_RE = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")

THEME_NAMES = ("midnight", "ocean", "mint", "sunset", "graphite")

FALLBACK_TIPS = [
    "Stay consistent! Regular small sips are better than large amounts at once.",
    "Try setting a water bottle next to your workspace for easy access.",
    "Water helps maintain energy levels throughout the day!",
]


def is_valid_clock(value: str) -> bool:
    """Return True when ``value`` is a 24 hour ``HH:MM`` clock time."""
    return bool(CLOCK_RE.match(value.strip())) if isinstance(value, str) else False


def parse_clock(value: str) -> Tuple[int, int]:
    """
    Split an ``HH:MM`` string into ``(hour, minute)``.

    Never raises. Components that cannot be read as integers become 0 and
    out-of-range values are clamped, so a malformed profile produces an odd
    window rather than a crash.
    """
    parts = str(value or "").split(":")
    numbers: List[int] = []
    for part in parts[:2]:
        try:
            numbers.append(int(part.strip()))
        except ValueError:
            numbers.append(0)
    while len(numbers) < 2:
        numbers.append(0)
    hour = min(max(numbers[0], 0), 23)
    minute = min(max(numbers[1], 0), 59)
    return hour, minute


def sanitize_response(text: str) -> str:
    """Strip markdown emphasis, code and headers from a coach reply.

    Markdown links are kept so the client can render them.
    """
    text = re.sub(r"```[\s\S]*?```", "", text)
    text = re.sub(r"`([^`]+)`", r"\1", text)
    text = re.sub(r"^[ \t]*[-*+][ \t]+", "- ", text, flags=re.MULTILINE)
    text = text.replace("***", "").replace("**", "").replace("*", "")
    text = text.replace("___", "").replace("__", "")
    text = re.sub(r"^#{1,6}\s+", "", text, flags=re.MULTILINE)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def extract_action(text: str) -> Tuple[str, Optional[Dict[str, Any]]]:
    """
    Find a trailing ``{"action": {...}}`` object in a model reply.

    Returns the reply with the JSON removed and the decoded action mapping,
    or the untouched reply and ``None`` when no well-formed directive is
    present. Braces are matched so nested ``params`` objects survive.
    """
    match = re.search(r'\{\s*"action"\s*:', text)
    if not match:
        return text, None
    start = match.start()
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start, len(text)):
        char = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                try:
                    payload = json.loads(text[start : idx + 1])
                except ValueError:
                    return text, None
                action = payload.get("action") if isinstance(payload, dict) else None
                if not isinstance(action, dict):
                    return text, None
                remainder = (text[:start] + text[idx + 1 :]).strip()
                return remainder, action
    return text, None


def _number_near(tokens: List[str], idx: int, span: int = 5) -> Optional[float]:
    """Look for a number within ``span`` tokens after, then before, ``idx``."""
    window = tokens[idx + 1 : idx + 1 + span] + list(reversed(tokens[max(idx - span, 0) : idx]))
    for token in window:
        m = re.match(r"^(\d+(?:\.\d+)?)(?:oz|ml|min|mins|minutes)?$", token)
        if m:
            return float(m.group(1))
    return None


def parse_settings_request(text: str) -> Optional[Dict[str, Any]]:
    """
    Recognise a plain-language settings request and turn it into an
    action mapping of the same shape the AI coach produces.

    Handles goals ("set my goal to 100"), logging ("I drank 12 oz of tea"),
    intervals ("make my interval 45 minutes"), schedules ("I wake at 06:30")
    and themes ("switch to the ocean theme"). Anything else returns None.
    """
    lower_text = text.lower()
    tokens = [t.strip(".,!?") for t in re.split(r"\s+", lower_text) if t.strip(".,!?")]

    wake = re.search(r"wake(?:\s+up)?(?:\s+(?:at|time\s+to|to))?\s+(\d{1,2}:\d{2})", lower_text)
    sleep = re.search(r"(?:sleep|bed(?:time)?)(?:\s+(?:at|time\s+to|to))?\s+(\d{1,2}:\d{2})", lower_text)
    if wake or sleep:
        params: Dict[str, Any] = {}
        if wake and is_valid_clock(wake.group(1)):
            params["wake_time"] = "%02d:%02d" % parse_clock(wake.group(1))
        if sleep and is_valid_clock(sleep.group(1)):
            params["sleep_time"] = "%02d:%02d" % parse_clock(sleep.group(1))
        if params:
            return {"type": "update_schedule", "params": params}

    for idx, token in enumerate(tokens):
        if token == "goal":
            amount = _number_near(tokens, idx)
            if amount:
                return {"type": "update_goal", "params": {"daily_goal": amount}}
        if token == "interval":
            minutes = _number_near(tokens, idx)
            if minutes:
                return {"type": "update_interval", "params": {"interval_length": int(minutes)}}
        if token in ("drank", "drink", "log", "add", "had"):
            amount = _number_near(tokens, idx, span=3)
            if amount:
                drink_type = "Water"
                if "of" in tokens[idx:]:
                    of_idx = tokens.index("of", idx)
                    if of_idx + 1 < len(tokens):
                        drink_type = tokens[of_idx + 1].title()
                return {"type": "add_water", "params": {"amount": amount, "drink_type": drink_type}}

    if "theme" in tokens:
        for name in THEME_NAMES:
            if name in tokens:
                return {"type": "update_theme", "params": {"theme": name}}
    return None


def pick_fallback_tip(on_track: bool, remaining: float, logs_today: int, unit: str) -> str:
    """Choose a canned tip that matches the user's situation."""
    if remaining <= 0:
        return "You've hit your goal for today. Keep sipping with meals to stay topped up."
    if logs_today == 0:
        return "Start with a glass of water now; an early drink makes the rest of the day easier."
    if not on_track:
        return f"You're a little behind. A quick {min(remaining, 8 if unit == 'oz' else 240):.0f} {unit} now will close the gap."
    return FALLBACK_TIPS[logs_today % len(FALLBACK_TIPS)]

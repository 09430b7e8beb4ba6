"""
AI coach helpers built on an OpenAI-compatible chat completion API.

The coach receives a plain-text summary of the user's profile and today's
numbers (produced by the pacing engine), the recent chat history and the
new question. It answers in plain text and may append a settings
directive of the form ``{"action": {"type": ..., "params": {...}}}``
which is split off and returned separately. Applying that directive is
left to the client.

If the API key is not configured or the call fails, both the coach and
the tip generator fall back to the heuristics in `utils.py`, so the
endpoints always answer.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from .pacing import get_filtered_logs, get_progress_snapshot
from .schemas import CoachAction, CoachReply, ProfileRead, ProgressSnapshot
from .utils import (
    THEME_NAMES,
    extract_action,
    parse_settings_request,
    pick_fallback_tip,
    sanitize_response,
)

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.openai.com/v1/chat/completions"
DEFAULT_MODEL = "gpt-4o-mini"
HISTORY_TURNS = 10

RATE_LIMITED_REPLY = "I'm receiving too many requests right now. Please try again in a moment."

SYSTEM_PROMPT = (
    "You are Blue Balance AI Coach, a friendly and knowledgeable hydration assistant.\n\n"
    "FORMATTING RULES:\n"
    "- Write in plain text only. No asterisks, no bold markers, no markdown headers.\n"
    "- Use simple dashes (-) for bullet points if needed.\n\n"
    "YOUR ROLE:\n"
    "1. Answer questions about hydration using the user's actual data.\n"
    "2. Make settings changes when requested (include action JSON at end).\n\n"
    "RESPONSE GUIDELINES:\n"
    "- Be specific and use numbers from the user's data.\n"
    "- Keep responses short (2-4 sentences for simple questions).\n"
    "- If the user asks to change a setting, confirm what you changed.\n\n"
    "SETTINGS ACTIONS (add this JSON at the END of your response when the user requests changes):\n"
    '- Goal change: {"action":{"type":"update_goal","params":{"daily_goal":100}}}\n'
    '- Add beverage: {"action":{"type":"add_water","params":{"amount":8,"drink_type":"Water"}}}\n'
    '- Schedule: {"action":{"type":"update_schedule","params":{"wake_time":"06:00","sleep_time":"22:00"}}}\n'
    '- Interval: {"action":{"type":"update_interval","params":{"interval_length":45}}}\n'
    '- Reminders: {"action":{"type":"update_reminders","params":{"reminders_enabled":true,"reminder_interval":30}}}\n'
    '- Theme: {"action":{"type":"update_theme","params":{"theme":"ocean"}}}\n\n'
    "Available themes: " + ", ".join(THEME_NAMES) + "\n\n"
    "Current User Context:\n"
)

TIP_PROMPT = (
    "You write one short, encouraging hydration tip (a single sentence, plain text)"
    " tailored to the user's situation below. Do not repeat the numbers back verbatim."
)


def build_coach_context(
    profile: ProfileRead,
    logs: Sequence,
    now: datetime,
    snapshot: Optional[ProgressSnapshot] = None,
) -> str:
    """Serialise the profile, today's progress and the last five logs."""
    snapshot = snapshot or get_progress_snapshot(profile, logs, now)
    unit = profile.unit_preference
    recent = "\n".join(
        f"- {log.amount:.1f}{unit} of {log.drink_type} at {log.logged_at.strftime('%H:%M')}"
        for log in list(logs)[:5]
    )
    return (
        "User Profile:\n"
        f"- Name: {profile.first_name or profile.username}\n"
        f"- Daily Goal: {profile.daily_goal:g} {unit}\n"
        f"- Wake Time: {profile.wake_time}\n"
        f"- Sleep Time: {profile.sleep_time}\n"
        f"- Activity Level: {profile.activity_level}\n"
        f"- Interval Length: {profile.interval_length} minutes\n\n"
        "Today's Progress:\n"
        f"- Current Intake: {snapshot.current_intake:.1f} {unit}\n"
        f"- Expected Intake: {snapshot.expected_intake:.1f} {unit}\n"
        f"- Remaining: {snapshot.remaining_amount:.1f} {unit}\n"
        f"- On Track: {'Yes' if snapshot.on_track else 'No'}\n"
        f"- Hydration Score: {snapshot.hydration_score}/100\n"
        f"- Current Streak: {snapshot.streak} days\n\n"
        "Recent Logs (last 5):\n"
        f"{recent or '- none yet'}"
    )


def _to_action(raw: Optional[Dict]) -> Optional[CoachAction]:
    if not raw:
        return None
    try:
        return CoachAction(type=raw.get("type", ""), params=raw.get("params") or {})
    except ValidationError as exc:
        logger.warning("Dropping coach action %r: %s", raw, exc.errors()[0]["msg"])
        return None


def heuristic_reply(message: str, profile: ProfileRead, snapshot: ProgressSnapshot) -> CoachReply:
    """Answer without the AI service, from the user's numbers alone."""
    unit = profile.unit_preference
    action = _to_action(parse_settings_request(message))
    if action is not None:
        return CoachReply(response=f"Done. I've queued a {action.type.replace('_', ' ')} for you.", action=action)

    lower = message.lower()
    if "streak" in lower:
        text = f"Your current streak is {snapshot.streak} days."
    elif "score" in lower:
        text = f"Your hydration score today is {snapshot.hydration_score}/100 ({snapshot.score_label})."
    elif snapshot.remaining_amount <= 0:
        text = f"You've reached your {profile.daily_goal:g} {unit} goal today. Nice work!"
    elif snapshot.on_track:
        text = (
            f"You're on track with {snapshot.current_intake:.1f} {unit} so far."
            f" {snapshot.remaining_amount:.1f} {unit} to go before bedtime."
        )
    else:
        text = (
            f"You're at {snapshot.current_intake:.1f} {unit}, a bit behind the"
            f" {snapshot.expected_range.min:.1f} {unit} expected by now."
            f" Try {snapshot.interval.target_amount:.1f} {unit} this interval."
        )
    return CoachReply(response=text)


async def _chat_completion(messages: List[Dict[str, str]], api_key: str) -> httpx.Response:
    timeout = float(os.getenv("COACH_TIMEOUT", "15"))
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.post(
            os.getenv("COACH_API_URL", DEFAULT_API_URL),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            json={"model": os.getenv("COACH_MODEL", DEFAULT_MODEL), "messages": messages},
        )


async def ask_coach(
    message: str,
    profile: ProfileRead,
    logs: Sequence,
    history: Sequence,
    now: datetime,
) -> CoachReply:
    """
    Ask the AI coach a question about the user's hydration.

    Args:
        message: The user's question or request.
        profile: The profile the question is about.
        logs: The profile's recent logs, newest first.
        history: Earlier chat messages, oldest first; the last ten are sent.
        now: Reference instant for every metric in the context.

    Returns:
        The sanitised reply text and, when the model asked for a settings
        change, the parsed action directive.
    """
    snapshot = get_progress_snapshot(profile, logs, now)
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return heuristic_reply(message, profile, snapshot)

    messages = [{"role": "system", "content": SYSTEM_PROMPT + build_coach_context(profile, logs, now, snapshot)}]
    messages += [{"role": m.role, "content": m.content} for m in list(history)[-HISTORY_TURNS:]]
    messages.append({"role": "user", "content": message})

    try:
        response = await _chat_completion(messages, api_key)
        if response.status_code == 429:
            logger.warning("Coach service rate limited the request")
            return CoachReply(response=RATE_LIMITED_REPLY, error="rate_limited")
        response.raise_for_status()
        content = response.json()["choices"][0]["message"]["content"] or ""
        if not isinstance(content, str):
            raise ValueError("unexpected completion content")
    except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("Coach request failed, using heuristic reply: %s", exc)
        reply = heuristic_reply(message, profile, snapshot)
        reply.error = str(exc) or exc.__class__.__name__
        return reply

    text, raw_action = extract_action(content)
    text = sanitize_response(text) or "I'm here to help with your hydration goals!"
    return CoachReply(response=text, action=_to_action(raw_action))


async def generate_tip(profile: ProfileRead, logs: Sequence, now: datetime) -> str:
    """Produce a one-sentence tip, falling back to a canned one."""
    snapshot = get_progress_snapshot(profile, logs, now)
    logs_today = len(get_filtered_logs(logs, "day", now))
    fallback = pick_fallback_tip(
        snapshot.on_track, snapshot.remaining_amount, logs_today, profile.unit_preference
    )
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        return fallback

    trend = "frequent" if logs_today > 3 else "moderate" if logs_today > 0 else "inactive"
    situation = (
        f"Intake {snapshot.current_intake:.1f} of {profile.daily_goal:g} {profile.unit_preference};"
        f" expected {snapshot.expected_intake:.1f}; on track: {snapshot.on_track};"
        f" {snapshot.time_remaining_hours}h {snapshot.time_remaining_minutes}m until sleep;"
        f" logging trend: {trend}; activity level: {profile.activity_level}."
    )
    messages = [
        {"role": "system", "content": TIP_PROMPT},
        {"role": "user", "content": situation},
    ]
    try:
        response = await _chat_completion(messages, api_key)
        response.raise_for_status()
        content = response.json()["choices"][0]["message"]["content"] or ""
        if not isinstance(content, str):
            raise ValueError("unexpected completion content")
        tip = sanitize_response(content)
    except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("Tip request failed, using fallback tip: %s", exc)
        return fallback
    return tip or fallback

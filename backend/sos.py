"""AegisGrid Backend — SOS message generation

Builds a short emergency message someone can send to a trusted contact.
Uses Gemini when GEMINI_API_KEY is set, otherwise a fixed template.
"""

import json
import logging
import math
import re
import threading
from datetime import datetime, timezone
from typing import Optional

from cachetools import LRUCache

from config import (
    GEMINI_API_KEY, GEMINI_MODEL,
    SOS_TEMPLATE_GUIDANCE, SOS_PARSE_FAILURE_GUIDANCE,
)
from data_fetchers import clamp_str
from models import SOSRequest, SOSResponse

logger = logging.getLogger("aegisgrid.sos")

# Identical context within the same minute reuses the AI reply
_SOS_CACHE = LRUCache(maxsize=128)
_SOS_CACHE_LOCK = threading.Lock()

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def build_context(req: SOSRequest, now: Optional[datetime] = None) -> dict:
    """Sanitised context shared by the template and the AI prompt."""
    now = now or datetime.now(timezone.utc)
    address = clamp_str(req.address, 240).strip()
    situation = clamp_str(req.situation, 120).strip()
    notes = clamp_str(req.notes, 800).strip()
    route_risk = req.routeRisk
    if route_risk is not None and not math.isfinite(route_risk):
        route_risk = None

    return {
        "lat": req.lat,
        "lon": req.lon,
        "address": address or "(address unavailable)",
        "time_iso": now.isoformat(timespec="seconds"),
        "situation": situation or "(not specified)",
        "notes": notes or "(none)",
        "has_notes": bool(notes),
        "route_risk_score_0_100": route_risk,
        "nearby_reports": req.reportsNearby[:10],
    }


def _alert_lines(ctx: dict) -> list[str]:
    lines = [
        "EMERGENCY / SAFETY ALERT",
        f"Location: {ctx['address']}",
        f"Coords: {ctx['lat']:.5f}, {ctx['lon']:.5f}",
        f"Situation: {ctx['situation']}",
    ]
    if ctx["has_notes"]:
        lines.append(f"Notes: {ctx['notes']}")
    return lines


def template_sos(ctx: dict) -> SOSResponse:
    """Deterministic SOS used when no AI key is configured."""
    sos = "\n".join(_alert_lines(ctx))
    guidance = list(SOS_TEMPLATE_GUIDANCE)
    share = f"{sos}\n\nSuggested steps:\n- " + "\n- ".join(guidance)
    return SOSResponse(sos=sos, guidance=guidance, share=share, used_ai=False)


def build_prompt(ctx: dict) -> str:
    prompt_ctx = {k: v for k, v in ctx.items() if k != "has_notes"}
    return f"""You are an emergency-response writing assistant. Create a concise SOS message someone can send to a trusted contact or on-site security.

Input context (JSON):
{json.dumps(prompt_ctx, indent=2)}

Requirements:
- Output MUST be valid JSON only, with keys: "sos", "guidance", "share".
- "sos": <= 450 characters, plain text, includes location (address + coords), time, situation, and 1 actionable ask (e.g. "Call me now" or "Send security to me").
- "guidance": an array of exactly 3 short bullet sentences (no more than 18 words each).
- "share": <= 800 characters. This is the SOS plus the 3 bullets formatted nicely for sharing.
- Be calm, non-graphic, and do NOT invent facts not in the input."""


def _extract_json(text: str) -> Optional[dict]:
    try:
        parsed = json.loads(text)
    except ValueError:
        # Models sometimes wrap the object in prose; take the outermost braces
        match = _JSON_OBJECT_RE.search(text)
        if not match:
            return None
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            return None
    return parsed if isinstance(parsed, dict) else None


def parse_ai_reply(text: str, ctx: dict) -> SOSResponse:
    """Turn raw model output into an SOSResponse, sanitising every field."""
    parsed = _extract_json(text)
    if parsed is None:
        sos = "".join(f"{line}\n" for line in _alert_lines(ctx))
        return SOSResponse(
            sos=sos,
            guidance=list(SOS_PARSE_FAILURE_GUIDANCE),
            share=text or "AI output unavailable (parsing failed).",
            used_ai=True,
            parsing_failed=True,
            raw=text[:2000],
        )

    guidance_raw = parsed.get("guidance")
    guidance = (
        [clamp_str(str(g), 140) for g in guidance_raw[:3]]
        if isinstance(guidance_raw, list) else []
    )
    return SOSResponse(
        sos=clamp_str(str(parsed.get("sos") or ""), 1000),
        guidance=guidance,
        share=clamp_str(str(parsed.get("share") or ""), 3000),
        used_ai=True,
    )


async def _ask_gemini(prompt: str) -> str:
    import google.generativeai as genai
    genai.configure(api_key=GEMINI_API_KEY)
    model = genai.GenerativeModel(GEMINI_MODEL)
    result = await model.generate_content_async(
        prompt,
        generation_config=genai.types.GenerationConfig(
            response_mime_type="application/json",
        ),
    )
    return (result.text or "").strip()


async def generate_sos(req: SOSRequest, now: Optional[datetime] = None) -> SOSResponse:
    ctx = build_context(req, now)
    if not GEMINI_API_KEY:
        return template_sos(ctx)

    cache_key = json.dumps({**ctx, "time_iso": ctx["time_iso"][:16]}, sort_keys=True, default=str)
    with _SOS_CACHE_LOCK:
        if cache_key in _SOS_CACHE:
            return _SOS_CACHE[cache_key]

    try:
        text = await _ask_gemini(build_prompt(ctx))
    except Exception as e:
        logger.warning(f"Gemini SOS error (using template): {e}")
        return template_sos(ctx)

    response = parse_ai_reply(text, ctx)
    if response.parsing_failed:
        logger.warning("Gemini SOS reply was not valid JSON")
    else:
        with _SOS_CACHE_LOCK:
            _SOS_CACHE[cache_key] = response
    return response

"""AI Analyzer Service for incident summaries and root cause suggestions.

Uses Google Gemini to produce:
- A short (2-3 sentence) summary of an incident
- A ranked list of likely root causes for a post-mortem draft

The output is advisory text only. Callers decide where it is stored.
"""

import logging
from typing import Any, Sequence

import httpx

from ..core.config import get_settings
from ..core.errors import ExternalServiceError
from ..models import Incident, IncidentActivity, PostMortem

logger = logging.getLogger(__name__)


class AIAnalyzerService:
    """
    Service for analyzing incidents using Google Gemini.

    Pass an ``httpx.AsyncClient`` to reuse a connection pool (or a mock
    transport in tests); otherwise a short-lived client is opened per call.
    """

    GEMINI_API_URL = "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"

    SUMMARY_PROMPT = """You are an incident management expert.
Summarize the incident below in 2-3 sentences. Include only the key points:
what broke, who or what was affected, and how severe it is.
Respond with plain text, no markdown."""

    ROOT_CAUSE_PROMPT = """You are an expert in incident management and root cause analysis.
From the incident details and timeline below, propose 3-5 candidate root causes,
most likely first. For each candidate give one line of supporting evidence from
the timeline. Respond with a numbered plain text list, no markdown headings."""

    def __init__(
        self,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self._client = client

    @property
    def is_configured(self) -> bool:
        """Check if Gemini API is configured."""
        return bool(self.api_key)

    async def summarize_incident(
        self,
        incident: Incident,
        activities: Sequence[IncidentActivity] = (),
    ) -> str:
        """Generate a short summary for an incident."""
        details = self._format_incident(incident, activities)
        return await self._generate(self.SUMMARY_PROMPT, details, temperature=0.3)

    async def suggest_root_cause(
        self,
        incident: Incident,
        post_mortem: PostMortem,
        activities: Sequence[IncidentActivity] = (),
    ) -> str:
        """Generate candidate root causes for a post-mortem draft."""
        details = self._format_incident(incident, activities)
        if post_mortem.impact_analysis:
            details += f"\n\nImpact analysis:\n{post_mortem.impact_analysis}"
        if post_mortem.what_went_wrong:
            details += f"\n\nWhat went wrong:\n{post_mortem.what_went_wrong}"
        return await self._generate(self.ROOT_CAUSE_PROMPT, details, temperature=0.4)

    async def _generate(self, system_prompt: str, details: str, temperature: float) -> str:
        if not self.is_configured:
            raise ExternalServiceError("Gemini API key not configured")

        try:
            response = await self._call_gemini(system_prompt, details, temperature)
        except httpx.HTTPError as e:
            logger.error(f"Gemini request failed: {e}")
            raise ExternalServiceError("AI service unavailable") from e

        return self._parse_response(response)

    def _format_incident(
        self,
        incident: Incident,
        activities: Sequence[IncidentActivity],
    ) -> str:
        """Format the incident and its timeline into a prompt body."""
        lines = [
            f"Title: {incident.title}",
            f"Severity: {incident.severity.value}",
            f"Status: {incident.status.value}",
            f"Detected at: {incident.detected_at.isoformat()}",
        ]
        if incident.resolved_at:
            lines.append(f"Resolved at: {incident.resolved_at.isoformat()}")
        if incident.impact_scope:
            lines.append(f"Impact scope: {incident.impact_scope}")
        lines.append("")
        lines.append("Description:")
        lines.append(incident.description)

        if activities:
            lines.append("")
            lines.append("=== TIMELINE ===")
            for activity in activities:
                when = (activity.event_time or activity.created_at).isoformat()
                text = activity.comment or ""
                if activity.old_value or activity.new_value:
                    text = f"{activity.old_value or '-'} -> {activity.new_value or '-'} {text}".strip()
                lines.append(f"[{when}] {activity.activity_type.value}: {text}")
            lines.append("=== END TIMELINE ===")

        return "\n".join(lines)

    async def _call_gemini(self, system_prompt: str, details: str, temperature: float) -> dict[str, Any]:
        """Call Gemini API with the prompt."""
        url = f"{self.GEMINI_API_URL}?key={self.api_key}"

        payload = {
            "contents": [
                {
                    "parts": [
                        {"text": system_prompt},
                        {"text": f"\n\n{details}"},
                    ]
                }
            ],
            "generationConfig": {
                "temperature": temperature,
                "topP": 0.8,
                "maxOutputTokens": 1024,
            },
        }

        if self._client is not None:
            response = await self._client.post(url, json=payload)
        else:
            async with httpx.AsyncClient(timeout=30.0) as client:
                response = await client.post(url, json=payload)

        if response.status_code != 200:
            logger.error(f"Gemini API error: {response.status_code} - {response.text}")
            raise ExternalServiceError(
                f"Gemini API error: {response.status_code}",
                details={"status_code": response.status_code},
            )

        return response.json()

    def _parse_response(self, response: dict[str, Any]) -> str:
        """Extract the generated text from a Gemini response."""
        candidates = response.get("candidates", [])
        if not candidates:
            raise ExternalServiceError("No candidates in AI response")

        parts = candidates[0].get("content", {}).get("parts", [])
        text = "".join(part.get("text", "") for part in parts).strip()
        if not text:
            raise ExternalServiceError("Empty AI response")
        return text

"""Audit Content Generator - Weekly audit text via Azure OpenAI

Single-shot: one request per call and no internal retries. Retry policy
belongs to the audit scheduler, which tracks attempts on the report.
"""
from typing import Optional
from openai import AsyncAzureOpenAI

from ..config.settings import settings
from ..domain.errors import OpenAIError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class AuditContentGenerator:
    """Service turning an activity summary prompt into audit content"""

    def __init__(self, client: Optional[AsyncAzureOpenAI] = None):
        self.client = client
        if self.client is None and settings.azure_openai_endpoint and settings.azure_openai_api_key:
            self.client = AsyncAzureOpenAI(
                azure_endpoint=settings.azure_openai_endpoint,
                api_key=settings.azure_openai_api_key,
                api_version=settings.azure_openai_api_version
            )

    @property
    def is_configured(self) -> bool:
        return self.client is not None

    def _get_system_prompt(self) -> str:
        return """You are an operations auditor for a property services company. You review one staff member's week of cleaning and maintenance jobs and write a short, fair performance audit.

Respond with a JSON object only, using exactly these keys:
{
  "trustScore": <integer 1-100, reliability: on-time completion, proof photos, few cancellations>,
  "qualityScore": <integer 1-100, work quality inferred from durations and proof>,
  "comment": "<2-3 sentence summary addressed to the manager>",
  "recommendations": ["<actionable recommendation>", ...],
  "flaggedIssues": ["<concrete issue that needs follow-up>", ...]
}

Guidelines:
- A job is late when it took more than 20% longer than estimated.
- Completed jobs without photos are missing proof and should be flagged.
- A week with no jobs is neutral, not negative.
- If metrics are marked incomplete, say so in the comment."""

    async def generate(self, summary_text: str) -> str:
        """
        Generate audit content for one staff member's week

        Raises:
            OpenAIError: Generator not configured, request failed, or the
                response was empty
        """
        if not self.client:
            raise OpenAIError("Audit content generator is not configured")

        try:
            response = await self.client.chat.completions.create(
                model=settings.azure_openai_deployment,
                messages=[
                    {"role": "system", "content": self._get_system_prompt()},
                    {"role": "user", "content": summary_text},
                ],
                temperature=0.3,
                max_tokens=1500,
                response_format={"type": "json_object"}
            )
        except Exception as e:
            logger.warning(f"Audit generation request failed: {e}")
            raise OpenAIError(f"Failed to generate audit: {str(e)}") from e

        if not response.choices:
            raise OpenAIError("AI returned no response choices")

        content = response.choices[0].message.content
        if not content or not content.strip():
            raise OpenAIError("AI returned empty response")

        if response.usage:
            logger.info(
                f"Audit generated: {response.usage.prompt_tokens} prompt / "
                f"{response.usage.completion_tokens} completion tokens"
            )
        return content

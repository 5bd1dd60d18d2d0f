"""
LLM Provider — Abstract Interface

All model calls go through this interface. Swap providers
by changing GROUNDLINT_LLM_PROVIDER in env.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Optional

from groundlint.errors import ModelResponseError

STRUCTURED_OUTPUT_INSTRUCTIONS = """

## Output format
Respond with a single JSON object that validates against this JSON schema.
Do not wrap it in markdown and do not add commentary.

{schema}"""


class LLMProvider(ABC):
    """Abstract base for LLM providers."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.2,
        json_mode: bool = False,
    ) -> str:
        """Generate a text response from the LLM."""
        ...

    async def generate_json(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        temperature: float = 0.2,
    ) -> dict:
        """Generate and parse a JSON response."""
        text = await self.generate(
            prompt=prompt,
            system_instruction=system_instruction,
            temperature=temperature,
            json_mode=True,
        )
        # Strip markdown fences if the LLM wraps JSON in ```json blocks
        cleaned = text.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ModelResponseError(f"LLM returned invalid JSON: {e}", raw=text) from e
        if not isinstance(parsed, dict):
            raise ModelResponseError("LLM returned JSON that is not an object", raw=text)
        return parsed

    async def run_prompt_structured(
        self,
        content: str,
        system_prompt: str,
        json_schema: dict,
        temperature: float = 0.2,
    ) -> dict:
        """
        Evaluate content under system_prompt, answering per json_schema.

        May raise; the orchestrator records any exception as a request
        failure for that rule only.
        """
        schema_text = json.dumps(json_schema.get("schema", json_schema), indent=2)
        return await self.generate_json(
            prompt=content,
            system_instruction=system_prompt
            + STRUCTURED_OUTPUT_INSTRUCTIONS.format(schema=schema_text),
            temperature=temperature,
        )

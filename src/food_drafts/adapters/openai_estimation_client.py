"""OpenAI Responses API client for nutrition estimation."""

import asyncio
import base64
import json
from dataclasses import dataclass
from pathlib import Path

from openai import AsyncOpenAI

from food_drafts.services.estimation import EstimationClient

_NULLABLE_MEASUREMENT = {
    "anyOf": [
        {
            "type": "object",
            "properties": {
                "amount": {"type": "integer", "minimum": 0},
                "unit": {"type": "string", "enum": ["g", "ml"]},
            },
            "required": ["amount", "unit"],
            "additionalProperties": False,
        },
        {"type": "null"},
    ]
}

COMPONENT_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "amount": {"type": "integer", "minimum": 0},
        "unit": {"type": "string", "enum": ["g", "ml", "piece"]},
        "recommendedMeasurement": _NULLABLE_MEASUREMENT,
        "calories": {"type": "integer", "minimum": 0},
        "protein": {"type": "integer", "minimum": 0},
        "carbs": {"type": "integer", "minimum": 0},
        "fat": {"type": "integer", "minimum": 0},
    },
    "required": [
        "name",
        "amount",
        "unit",
        "recommendedMeasurement",
        "calories",
        "protein",
        "carbs",
        "fat",
    ],
    "additionalProperties": False,
}

ESTIMATE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "generatedTitle": {"type": "string"},
        "foodComponents": {"type": "array", "items": COMPONENT_SCHEMA},
    },
    "required": ["generatedTitle", "foodComponents"],
    "additionalProperties": False,
}

REFINE_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "foodComponents": {"type": "array", "items": COMPONENT_SCHEMA},
    },
    "required": ["foodComponents"],
    "additionalProperties": False,
}

ESTIMATE_PROMPT = (
    "You are a nutrition estimation service inside a food logging app. "
    "Split the meal into components, keep any amounts the user states, infer "
    "typical single servings otherwise, and give integer calories, protein, "
    "carbs and fat for each component. Use units g, ml or piece; for piece "
    "components give a recommendedMeasurement in g or ml covering all pieces, "
    "otherwise null. Write a short generatedTitle. Answer in language: {language}."
)

REFINE_PROMPT = (
    "You recalculate nutrition for meal components a user has edited. Each item "
    "has its current name, amount and unit and may carry base* fields from the "
    "previous estimate. Scale baseline macros to the current amount when the "
    "food is unchanged, otherwise estimate afresh. Keep names, amounts and units "
    "exactly as given. Answer in language: {language}."
)


@dataclass
class OpenAIEstimationClient(EstimationClient):
    """Estimation backend calling OpenAI with structured outputs."""

    client: AsyncOpenAI
    model: str
    reasoning_effort: str | None = None
    store: bool = False

    @classmethod
    def create(
        cls,
        api_key: str,
        model: str,
        reasoning_effort: str | None = None,
        store: bool = False,
    ) -> "OpenAIEstimationClient":
        """Create an OpenAI estimation client."""
        return cls(
            client=AsyncOpenAI(api_key=api_key),
            model=model,
            reasoning_effort=reasoning_effort,
            store=store,
        )

    async def estimate_text(self, *, description: str, language: str) -> dict:
        """Estimate components for a text description."""
        return await self._respond(
            instructions=ESTIMATE_PROMPT.format(language=language),
            content=[{"type": "input_text", "text": description}],
            schema=ESTIMATE_SCHEMA,
            name="food_estimate",
        )

    async def estimate_image(
        self,
        *,
        description: str,
        remote_image_path: str,
        local_image_path: str | None,
        language: str,
    ) -> dict:
        """Estimate components from the local copy of the draft image."""
        if not local_image_path:
            raise RuntimeError(f"No local copy for image {remote_image_path}")
        image_bytes = await asyncio.to_thread(Path(local_image_path).read_bytes)
        content: list[dict[str, object]] = [
            {"type": "input_image", "image_url": _to_data_url(image_bytes)}
        ]
        if description.strip():
            content.insert(0, {"type": "input_text", "text": description})
        return await self._respond(
            instructions=ESTIMATE_PROMPT.format(language=language),
            content=content,
            schema=ESTIMATE_SCHEMA,
            name="food_estimate",
        )

    async def refine(
        self, *, food_components: list[dict[str, object]], language: str
    ) -> dict:
        """Recalculate macros for edited components."""
        return await self._respond(
            instructions=REFINE_PROMPT.format(language=language),
            content=[
                {
                    "type": "input_text",
                    "text": json.dumps({"foodComponents": food_components}),
                }
            ],
            schema=REFINE_SCHEMA,
            name="food_refinement",
        )

    async def _respond(
        self,
        *,
        instructions: str,
        content: list[dict[str, object]],
        schema: dict[str, object],
        name: str,
    ) -> dict:
        request_payload: dict[str, object] = {
            "model": self.model,
            "instructions": instructions,
            "input": [{"role": "user", "content": content}],
            "text": {
                "format": {
                    "type": "json_schema",
                    "name": name,
                    "strict": True,
                    "schema": schema,
                }
            },
            "store": self.store,
        }
        if self.reasoning_effort:
            request_payload["reasoning"] = {"effort": self.reasoning_effort}

        response = await self.client.responses.create(**request_payload)
        output_text = response.output_text
        if not output_text:
            raise RuntimeError("OpenAI returned an empty response")
        return json.loads(output_text)

    async def close(self) -> None:
        """Close the underlying OpenAI client."""
        await self.client.close()


def _to_data_url(image_bytes: bytes) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = _detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"

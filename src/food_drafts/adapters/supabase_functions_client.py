"""Supabase Edge Functions client for nutrition estimation."""

from dataclasses import dataclass

import httpx

from food_drafts.services.estimation import EstimationClient


@dataclass
class HttpxSupabaseFunctionsClient(EstimationClient):
    """Calls the text, image and refine estimation functions over HTTPX."""

    base_url: str
    api_key: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 60

    @classmethod
    def create(cls, supabase_url: str, api_key: str) -> "HttpxSupabaseFunctionsClient":
        """Create a functions client with a managed httpx session."""
        return cls(
            base_url=f"{supabase_url.rstrip('/')}/functions/v1",
            api_key=api_key,
            http_client=httpx.AsyncClient(),
        )

    async def estimate_text(self, *, description: str, language: str) -> dict:
        """Estimate macros from a text description."""
        return await self._invoke(
            "text-estimation", {"description": description, "language": language}
        )

    async def estimate_image(
        self,
        *,
        description: str,
        remote_image_path: str,
        local_image_path: str | None,
        language: str,
    ) -> dict:
        """Estimate macros from an uploaded image."""
        return await self._invoke(
            "image-estimation",
            {
                "imagePath": remote_image_path,
                "description": description,
                "language": language,
            },
        )

    async def refine(
        self, *, food_components: list[dict[str, object]], language: str
    ) -> dict:
        """Recalculate macros for edited components."""
        return await self._invoke(
            "refine", {"foodComponents": food_components, "language": language}
        )

    async def _invoke(self, function_name: str, payload: dict[str, object]) -> dict:
        response = await self.http_client.post(
            f"{self.base_url}/{function_name}",
            json=payload,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "apikey": self.api_key,
            },
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()

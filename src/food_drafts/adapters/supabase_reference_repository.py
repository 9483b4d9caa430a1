"""Supabase-backed lookups over persisted logs and favorites."""

from dataclasses import dataclass

from supabase import Client

from food_drafts.services.drafts import ImageReferenceRepository


@dataclass
class SupabaseImageReferenceRepository(ImageReferenceRepository):
    """Checks committed logs and favorites for a local image path."""

    client: Client
    tables: tuple[str, ...] = ("food_logs", "favorites")

    def is_local_image_referenced(self, local_image_path: str) -> bool:
        """Return whether any log or favorite row points at the path."""
        for table in self.tables:
            response = (
                self.client.table(table)
                .select("id")
                .eq("local_image_path", local_image_path)
                .limit(1)
                .execute()
            )
            if response.data:
                return True
        return False

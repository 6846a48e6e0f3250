# leadflow/content_generator.py
"""LLM-backed personalization sentence for each business."""
from __future__ import annotations

import asyncio
import re
from typing import Optional

from leadflow.classifier import classify
from leadflow.collaborators import ContentGenerator
from leadflow.content import review_context
from leadflow.llm_client import LLMClient
from leadflow.models import EntityRecord

CATEGORY_LABELS = {
    "restaurant": "restaurante",
    "beauty": "centro de belleza",
    "wellness": "centro de bienestar",
    "gym": "gimnasio",
    "local_business": "negocio local",
}

SYSTEM_PROMPT = (
    "Eres un experto en marketing para negocios locales. Genera solo UNA frase "
    "personalizada y natural basada en las reseñas, mencionando aspectos específicos "
    "que destacan los clientes. La frase debe sonar humana y cercana, no promocional."
)

EXAMPLES = [
    "especialmente por su paella y el trato familiar que mencionan los clientes",
    "sobre todo por sus cortes modernos y el ambiente acogedor",
    "particularmente por su café artesanal y la atención personalizada",
]


class LLMContentGenerator(ContentGenerator):
    """Asks the LLM for one sentence grounded in the business's positive reviews.

    Raises on any provider error or an empty answer; the pipeline owns the
    fallback.
    """

    def __init__(self, client: Optional[LLMClient] = None):
        self._client = client

    @property
    def client(self) -> LLMClient:
        """LLM client, created from settings on first use."""
        if self._client is None:
            self._client = LLMClient.from_settings()
        return self._client

    def build_prompt(self, record: EntityRecord) -> str:
        category = CATEGORY_LABELS.get(record.category or classify(record), "negocio local")
        lines = [
            f"Negocio: {record.name}",
            f"Tipo: {category}",
            f'Reseñas de clientes: "{review_context(record)}"',
            "",
            "Basándote en las reseñas reales, genera UNA frase personalizada que mencione "
            "aspectos específicos que destacan los clientes (platos, servicios, ambiente, etc.).",
            "",
            "Ejemplos de buenas frases:",
        ]
        lines.extend(f'- "{example}"' for example in EXAMPLES)
        lines.append("")
        lines.append("Genera SOLO la frase, sin comillas ni explicaciones adicionales.")
        return "\n".join(lines)

    @staticmethod
    def _clean(text: str) -> str:
        text = text.strip()
        text = re.sub(r'^["“”\']+|["“”\']+$', "", text)
        return text.strip()

    async def generate(self, record: EntityRecord) -> str:
        prompt = self.build_prompt(record)
        # Provider SDK calls are blocking
        text = await asyncio.to_thread(self.client.generate, SYSTEM_PROMPT, prompt)
        text = self._clean(text or "")
        if not text:
            raise ValueError(f"Empty generation for {record.name}")
        return text

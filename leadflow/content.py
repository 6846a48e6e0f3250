# leadflow/content.py
"""Fallback content, outreach message templates and message checks."""
from dataclasses import dataclass, field
from typing import Optional

from leadflow.classifier import BEAUTY, RESTAURANT, classify
from leadflow.models import EntityRecord

HIGH_RATING = 4.5
GOOD_RATING = 4.0

SENDER_PLACEHOLDER = "[TU_NOMBRE]"
BUSINESS_PLACEHOLDER = "[NOMBRE_NEGOCIO]"
DEFAULT_CONTENT = "tiene buena reputación"

TEMPLATES = {
    "default": (
        "Hola! Soy {YOUR_NAME}, especialista en páginas web para negocios locales. "
        "He visto que {BUSINESS_NAME} tiene excelentes reseñas, {PERSONALIZED_CONTENT}. "
        "Me gustaría mostrarle cómo una página web profesional podría ayudarle a atraer aún más clientes. "
        "¿Tendría unos minutos para una breve conversación?"
    ),
    "restaurant": (
        "¡Hola! Soy {YOUR_NAME}, especializado en páginas web para restaurantes. "
        "He visto que {BUSINESS_NAME} tiene muy buenas valoraciones, {PERSONALIZED_CONTENT}. "
        "Creo que una página web atractiva con menú online y reservas podría ayudarles a captar más clientes. "
        "¿Le interesaría que le muestre algunos ejemplos?"
    ),
    "beauty": (
        "Hola! Soy {YOUR_NAME}, creo páginas web para centros de belleza y peluquerías. "
        "He notado que {BUSINESS_NAME} tiene excelente reputación, {PERSONALIZED_CONTENT}. "
        "Una página web con sistema de citas online podría ser muy beneficiosa para su negocio. "
        "¿Podríamos hablar brevemente?"
    ),
    "formal": (
        "Buenos días. Soy {YOUR_NAME}, desarrollador web especializado en negocios locales. "
        "He investigado sobre {BUSINESS_NAME} y he visto que {PERSONALIZED_CONTENT}. "
        "Me gustaría proponerle una solución web que podría incrementar su visibilidad online. "
        "¿Tendría disponibilidad para una llamada breve?"
    ),
    "casual": (
        "¡Hola! 👋 Me llamo {YOUR_NAME} y ayudo a negocios como {BUSINESS_NAME} a tener mejor presencia online. "
        "He visto que {PERSONALIZED_CONTENT}, ¡qué genial! "
        "¿Te interesaría saber cómo una web podría ayudarte a conseguir más clientes?"
    ),
}

CATEGORY_TEMPLATES = {
    RESTAURANT: "restaurant",
    BEAUTY: "beauty",
}

SPAM_KEYWORDS = ["GRATIS", "OFERTA LIMITADA", "100% GARANTIZADO", "URGENTE"]


def fallback_content(record: EntityRecord) -> str:
    """Deterministic sentence used when generation fails. Depends on rating only."""
    rating = record.effective_rating or 0
    if rating >= HIGH_RATING:
        return f"especialmente por sus excelentes valoraciones de {rating:g} estrellas"
    if rating >= GOOD_RATING:
        return "por su buena reputación online y valoraciones positivas"
    return "por su presencia en la zona y potencial de crecimiento"


def review_context(record: EntityRecord, min_rating: float = 4, limit: int = 1000) -> str:
    """Positive review text joined into one prompt-sized string."""
    positive = [r.text for r in record.reviews if r.rating is not None and r.rating >= min_rating and r.text]
    return " ".join(positive)[:limit]


@dataclass
class MessageCheck:
    warnings: list[str] = field(default_factory=list)
    length: int = 0
    word_count: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.warnings


class MessageComposer:
    """Fills outreach templates with the sender, business and personalized content."""

    def __init__(
        self,
        sender_name: str = SENDER_PLACEHOLDER,
        default_template: str = "default",
        max_length: int = 1600,
        templates: Optional[dict[str, str]] = None,
    ):
        self.sender_name = sender_name or SENDER_PLACEHOLDER
        self.default_template = default_template
        self.max_length = max_length
        self.templates = dict(TEMPLATES if templates is None else templates)

    def add_template(self, name: str, template: str):
        self.templates[name] = template

    def auto_template(self, record: EntityRecord) -> str:
        category = record.category or classify(record)
        return CATEGORY_TEMPLATES.get(category, self.default_template)

    def compose(self, record: EntityRecord, template_name: Optional[str] = None) -> tuple[str, str]:
        """Return (message, template_used)."""
        if template_name and template_name in self.templates:
            used = template_name
        else:
            used = self.auto_template(record)
        template = self.templates.get(used) or self.templates["default"]

        message = (
            template
            .replace("{YOUR_NAME}", self.sender_name)
            .replace("{BUSINESS_NAME}", record.name or BUSINESS_PLACEHOLDER)
            .replace("{PERSONALIZED_CONTENT}", record.personalized_content or DEFAULT_CONTENT)
        )
        return message, used

    def validate(self, message: str) -> MessageCheck:
        warnings = []
        if len(message) > self.max_length:
            warnings.append(f"Message is too long ({len(message)} > {self.max_length} characters)")
        if "{" in message or "}" in message:
            warnings.append("Message contains unreplaced placeholders")
        if SENDER_PLACEHOLDER in message or BUSINESS_PLACEHOLDER in message:
            warnings.append("Message contains unreplaced fallback values")
        upper = message.upper()
        if any(keyword in upper for keyword in SPAM_KEYWORDS):
            warnings.append("Message contains potential spam keywords")
        return MessageCheck(warnings=warnings, length=len(message), word_count=len(message.split()))

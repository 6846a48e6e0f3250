# leadflow/classifier.py
"""Business category detection from place-type tags and name keywords.

Rules are evaluated top to bottom; the first matching rule decides.
Type tags come from the enrichment source and are more reliable than
names, so all type rules precede the keyword rules.
"""
import re
from typing import Callable

from leadflow.models import EntityRecord, normalize_text

RESTAURANT = "restaurant"
BEAUTY = "beauty"
WELLNESS = "wellness"
GYM = "gym"
DEFAULT_CATEGORY = "local_business"

Rule = tuple[Callable[[EntityRecord], bool], str]


def has_type(*types: str) -> Callable[[EntityRecord], bool]:
    wanted = set(types)

    def predicate(record: EntityRecord) -> bool:
        return bool(wanted.intersection(record.place_types))
    return predicate


def name_matches(*keywords: str) -> Callable[[EntityRecord], bool]:
    pattern = re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b")

    def predicate(record: EntityRecord) -> bool:
        return bool(pattern.search(normalize_text(record.name)))
    return predicate


RULES: list[Rule] = [
    (has_type("restaurant", "food", "meal_takeaway", "meal_delivery", "cafe", "bar"), RESTAURANT),
    (has_type("hair_care", "beauty_salon"), BEAUTY),
    (has_type("gym", "spa"), WELLNESS),
    (name_matches(
        "restaurante", "restaurant", "bar", "cafetería", "cafeteria", "café", "cafe",
        "pizzería", "pizzeria", "hamburguesería", "marisquería",
    ), RESTAURANT),
    (name_matches("peluquería", "peluqueria", "salón", "salon", "belleza", "estética", "spa"), BEAUTY),
    (name_matches("gimnasio", "fitness", "gym"), GYM),
]


def classify(record: EntityRecord, rules: list[Rule] = RULES) -> str:
    for predicate, category in rules:
        if predicate(record):
            return category
    return DEFAULT_CATEGORY

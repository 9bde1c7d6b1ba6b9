"""
Retrieval of fitness reference data for the assistant prompt.

A message is first checked for fitness relevance. Relevant messages are
reduced to keywords, and each keyword family selects which collections are
searched. Results are rendered into a plain-text block for the prompt.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pymongo import MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

FITNESS_KEYWORDS = (
    # training
    "exercise", "workout", "training", "fitness", "gym", "muscle", "strength", "cardio", "lift", "rep", "set",
    "push", "pull", "squat", "deadlift", "bench", "run", "jog", "walk", "swim", "bike", "cycling",
    "climb", "climbing", "rock", "wall", "bouldering", "rappelling", "belay",
    # body parts
    "chest", "back", "legs", "arms", "shoulders", "abs", "core", "biceps", "triceps", "glutes", "calves",
    # nutrition
    "nutrition", "diet", "food", "calories", "protein", "carbs", "fat", "fiber", "vitamins", "minerals",
    "meal", "eat", "drink", "supplement", "weight", "lose", "gain", "bulk", "cut", "macro", "micro",
    # wellness
    "health", "wellness", "recovery", "sleep", "hydration", "stretch", "flexibility", "injury", "form",
    # goals
    "goal", "target", "plan", "program", "routine", "schedule", "progress", "result", "transform",
    # facilities
    "facility", "center", "machine", "equipment", "treadmill", "elliptical", "barbell", "dumbbell",
    "location", "hours", "access", "campus", "available", "condition", "brand", "model",
    "gyms", "facilities", "centers", "machines", "equipments",
    # dining
    "dining", "cafeteria", "restaurant", "food court", "cafe", "coffee", "lunch", "dinner", "breakfast",
    "snack", "where to eat", "food options", "menu", "kitchen", "canteen", "eatery", "bistro", "grill",
    "deli", "bakery", "pizza", "salad bar", "buffet", "takeout", "delivery", "grab and go",
)

STOP_WORDS = frozenset(
    (
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
        "is", "are", "was", "were", "what", "how", "when", "where", "why", "does", "have", "has",
        "had", "will", "would", "could", "should", "can", "may", "might", "must", "do", "did",
        "get", "got", "there", "their", "they", "them", "this", "that", "these", "those",
    )
)
MAX_KEYWORDS = 10

EXERCISE_TRIGGERS = frozenset(("exercise", "workout", "training", "fitness", "muscle", "strength", "cardio"))
NUTRITION_TRIGGERS = frozenset(("nutrition", "diet", "food", "calories", "protein", "carbs", "fat", "meal", "eat"))
CLIMBING_TRIGGERS = frozenset(("climb", "climbing", "wall", "rock", "bouldering"))
GYM_TRIGGERS = frozenset(
    ("gym", "gyms", "facility", "facilities", "center", "centers", "location", "campus", "hours", "access")
) | CLIMBING_TRIGGERS
MACHINE_TRIGGERS = frozenset(
    ("machine", "equipment", "treadmill", "elliptical", "barbell", "dumbbell", "bench", "rack", "available", "condition")
)
DINING_TRIGGERS = frozenset(
    (
        "dining", "cafeteria", "restaurant", "food", "cafe", "coffee", "lunch", "dinner", "breakfast", "snack",
        "eat", "menu", "kitchen", "canteen", "eatery", "bistro", "grill", "deli", "bakery", "pizza", "salad",
        "buffet", "takeout", "delivery", "campus", "locations", "location", "burrito", "burritos", "taco",
        "tacos", "sandwich", "sandwiches", "wrap", "wraps", "bowl", "bowls", "soup", "soups", "bread",
        "cornbread", "muffin", "muffins", "bagel", "bagels", "pasta", "noodles", "rice", "chicken", "beef",
        "pork", "fish", "fries", "chips", "cookies", "cake", "dessert", "desserts", "ice", "cream",
        "milkshake", "milkshakes", "smoothie", "smoothies", "juice", "soda", "drink", "drinks", "tea", "hot",
        "cold", "fresh", "fried", "grilled", "baked", "steamed",
    )
)

GYM_SINGULARS = {"gyms": "gym", "facilities": "facility", "centers": "center"}
GYM_EXTRA_TERMS = ("fitness", "recreation", "training")
CLIMBING_EXTRA_TERMS = ("climb", "climbing", "wall", "rock", "bouldering", "arc")

REDIRECT_NOTICE = (
    "\nOFF-TOPIC QUERY DETECTED: This question is not related to fitness, nutrition, or wellness. "
    "You MUST redirect the user to fitness topics using the redirect phrase.\n"
)

_PUNCTUATION = re.compile(r"[^\w\s]")


class ContextStoreError(RuntimeError):
    pass


def is_fitness_related(message: str) -> bool:
    lowered = message.lower()
    return any(keyword in lowered for keyword in FITNESS_KEYWORDS)


def extract_keywords(message: str) -> List[str]:
    words = _PUNCTUATION.sub("", message.lower()).split()
    return [word for word in words if len(word) > 2 and word not in STOP_WORDS][:MAX_KEYWORDS]


@dataclass
class ContextBlock:
    type: str
    data: List[Dict[str, Any]]


@dataclass
class ContextResult:
    redirect: bool = False
    blocks: List[ContextBlock] = field(default_factory=list)

    def __bool__(self) -> bool:
        return self.redirect or bool(self.blocks)


class ContextStore:
    """Keyword-routed lookups. Subclasses provide `_search` over a backing store."""

    def _search(
        self,
        collection: str,
        fields: Sequence[str],
        terms: Iterable[str],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def query_for_context(self, message: str) -> ContextResult:
        if not is_fitness_related(message):
            return ContextResult(redirect=True)

        keywords = extract_keywords(message)
        found = set(keywords)
        result = ContextResult()

        try:
            if found & EXERCISE_TRIGGERS:
                self._add(result, "exercises", self._search("exercises", ("name",), keywords, 5))

            if found & NUTRITION_TRIGGERS:
                self._add(
                    result,
                    "nutrition",
                    self._search("nutrition", ("food_name", "category"), keywords, 5),
                )

            if found & GYM_TRIGGERS:
                terms = [GYM_SINGULARS.get(word, word) for word in keywords]
                terms.extend(GYM_EXTRA_TERMS)
                if found & CLIMBING_TRIGGERS:
                    terms.extend(CLIMBING_EXTRA_TERMS)
                self._add(
                    result,
                    "college_gyms",
                    self._search("college_gyms", ("name", "description", "location"), terms, 5),
                )

            if found & MACHINE_TRIGGERS:
                self._add(
                    result,
                    "gym_machines",
                    self._search(
                        "gym_machines",
                        ("name", "description", "machine_type", "brand"),
                        keywords,
                        8,
                    ),
                )

            if found & DINING_TRIGGERS:
                self._add(result, "dining_locations", self._dining_locations(keywords))
        except ContextStoreError as error:
            logger.warning("Context lookup failed: %s", error)
            return ContextResult()

        return result

    def _dining_locations(self, keywords: List[str]) -> List[Dict[str, Any]]:
        matches = self._search("dining_locations", ("name", "location", "type", "food_available"), keywords)
        unique: Dict[str, Dict[str, Any]] = {}
        for doc in matches:
            key = str(doc.get("_id") or doc.get("id") or doc.get("name"))
            unique.setdefault(key, doc)
        if unique:
            return list(unique.values())
        return self._search("dining_locations", (), (), 10)

    @staticmethod
    def _add(result: ContextResult, kind: str, docs: List[Dict[str, Any]]) -> None:
        if docs:
            result.blocks.append(ContextBlock(kind, docs))


class MongoContextStore(ContextStore):
    def __init__(self, uri: str, database: str, timeout_ms: int = 2000) -> None:
        self._client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        self._db = self._client[database]

    def _search(
        self,
        collection: str,
        fields: Sequence[str],
        terms: Iterable[str],
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        clauses = [
            {field_name: {"$regex": re.escape(term), "$options": "i"}}
            for term in terms
            for field_name in fields
        ]
        query: Dict[str, Any] = {"$or": clauses} if clauses else {}
        try:
            cursor = self._db[collection].find(query)
            if limit:
                cursor = cursor.limit(limit)
            return list(cursor)
        except PyMongoError as error:
            raise ContextStoreError(f"{collection}: {error}") from error

    def close(self) -> None:
        self._client.close()


def _join(values: Any) -> str:
    return ", ".join(str(value) for value in values)


def format_context_for_prompt(context: Optional[ContextResult]) -> str:
    if not context:
        return ""
    if context.redirect:
        return REDIRECT_NOTICE

    lines = ["", "", "RELEVANT DATABASE INFORMATION:"]
    for block in context.blocks:
        if block.type == "exercises":
            lines.append("\nExercises:")
            for item in block.data:
                lines.append(f"- {item.get('name')}: {item.get('description')} ({item.get('muscle_group')})")

        elif block.type == "nutrition":
            lines.append("\nNutrition Information:")
            for item in block.data:
                lines.append(f"- {item.get('food_name')}: {item.get('calories')} calories, {item.get('protein')}g protein")

        elif block.type == "college_gyms":
            lines.append("\nCollege Gyms:")
            for gym in block.data:
                lines.append(f"- {gym.get('name')}: {gym.get('description')}")
                lines.append(f"  Location: {gym.get('location')}")
                lines.append(f"  Hours: {gym.get('hours_operation')}")
                if gym.get("amenities"):
                    lines.append(f"  Amenities: {_join(gym['amenities'])}")

        elif block.type == "gym_machines":
            lines.append("\nGym Equipment:")
            for machine in block.data:
                head = f"- {machine.get('name')}"
                if machine.get("brand"):
                    head += f" ({machine['brand']})"
                lines.append(head)
                kind = f"  Type: {machine.get('machine_type')}"
                if machine.get("muscle_groups"):
                    kind += f" | Targets: {_join(machine['muscle_groups'])}"
                lines.append(kind)
                status = f"  Status: {machine.get('availability_status')} | Condition: {machine.get('condition')}"
                if (machine.get("quantity") or 0) > 1:
                    status += f" | Quantity: {machine['quantity']}"
                lines.append(status)
                gym = machine.get("college_gym")
                if isinstance(gym, dict) and gym.get("name"):
                    lines.append(f"  Location: {gym['name']}")
                if machine.get("description"):
                    lines.append(f"  {machine['description']}")

        elif block.type == "dining_locations":
            lines.append("\nDining Locations:")
            for location in block.data:
                head = f"- {location.get('name')}"
                if location.get("type"):
                    head += f" ({location['type']})"
                lines.append(head)
                lines.append(f"  Location: {location.get('location')}")
                if location.get("food_available"):
                    lines.append(f"  Available Food: {_join(location['food_available'])}")

    lines.append("\nPlease use this information to provide more personalized and accurate responses.")
    return "\n".join(lines) + "\n"

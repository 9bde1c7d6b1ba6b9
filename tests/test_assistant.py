import sys
from pathlib import Path

import pytest
import requests

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from assistant import gemini_client as gemini_module
from assistant.chatbot import FAILURE_REPLY, NO_CONTEXT_NOTE, SYSTEM_PROMPT, FitAIAssistant
from assistant.context_store import (
    REDIRECT_NOTICE,
    ContextResult,
    ContextStore,
    ContextStoreError,
    extract_keywords,
    format_context_for_prompt,
    is_fitness_related,
)
from assistant.gemini_client import GeminiClient, GeminiError

COLLECTIONS = {
    "exercises": [
        {"name": "Chest Press", "description": "Press the handles forward", "muscle_group": "chest"},
        {"name": "Squat", "description": "Sit back and stand", "muscle_group": "legs"},
    ],
    "nutrition": [
        {"food_name": "Chicken Breast", "category": "protein", "calories": 165, "protein": 31},
    ],
    "college_gyms": [
        {"name": "Student Recreation Center", "description": "Main fitness center", "location": "North campus",
         "hours_operation": "6am-11pm", "amenities": ["pool", "track"]},
    ],
    "gym_machines": [
        {"name": "Treadmill", "machine_type": "cardio", "brand": "Life Fitness", "muscle_groups": ["legs"],
         "availability_status": "available", "condition": "good", "quantity": 12,
         "college_gym": {"name": "Student Recreation Center"}},
    ],
    "dining_locations": [
        {"_id": 1, "name": "Campus Pizza", "location": "Union", "type": "restaurant", "food_available": ["pizza", "salad"]},
        {"_id": 2, "name": "Bean Cafe", "location": "Library", "type": "cafe", "food_available": ["coffee"]},
    ],
}


class MemoryContextStore(ContextStore):
    def __init__(self, collections=None, fail=False):
        self.collections = collections if collections is not None else COLLECTIONS
        self.fail = fail
        self.searches = []

    def _search(self, collection, fields, terms, limit=None):
        if self.fail:
            raise ContextStoreError("connection refused")
        terms = [term.lower() for term in terms]
        self.searches.append((collection, tuple(fields), tuple(terms)))
        docs = self.collections.get(collection, [])
        if fields:
            docs = [doc for doc in docs if any(self._matches(doc.get(f), term) for f in fields for term in terms)]
        return docs[:limit] if limit else list(docs)

    @staticmethod
    def _matches(value, term):
        values = value if isinstance(value, list) else [value]
        return any(term in str(v).lower() for v in values if v is not None)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK"):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.reason = reason
        self._payload = payload or {}

    def json(self):
        return self._payload


def _reply(text):
    return FakeResponse(payload={"candidates": [{"content": {"parts": [{"text": text}]}}]})


class ScriptedClient:
    def __init__(self, replies=None, error=None):
        self.replies = list(replies or [])
        self.error = error
        self.prompts = []

    def generate_content(self, prompt, temperature=None, max_tokens=None):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.replies.pop(0) if self.replies else "Keep training!"


class TestKeywords:
    def test_topic_detection(self):
        assert is_fitness_related("Best workout for legs?")
        assert not is_fitness_related("who won the election")

    def test_extract_keywords_drops_stop_words_and_short_words(self):
        assert extract_keywords("What is a good chest workout, please?") == ["good", "chest", "workout", "please"]

    def test_extract_keywords_caps_length(self):
        assert len(extract_keywords(" ".join(f"word{i}" for i in range(20)))) == 10


class TestContextStore:
    def test_off_topic_redirects_without_searching(self):
        store = MemoryContextStore()
        result = store.query_for_context("who won the election")
        assert result.redirect
        assert store.searches == []
        assert format_context_for_prompt(result) == REDIRECT_NOTICE

    def test_exercise_lookup(self):
        result = MemoryContextStore().query_for_context("good chest workout")
        assert [block.type for block in result.blocks] == ["exercises"]
        assert result.blocks[0].data[0]["name"] == "Chest Press"

    def test_gym_lookup_adds_singulars_and_extra_terms(self):
        store = MemoryContextStore()
        result = store.query_for_context("which gyms have climbing walls")
        gym_search = next(s for s in store.searches if s[0] == "college_gyms")
        assert "gym" in gym_search[2]
        assert "recreation" in gym_search[2] and "bouldering" in gym_search[2]
        assert any(block.type == "college_gyms" for block in result.blocks)

    def test_machine_lookup(self):
        result = MemoryContextStore().query_for_context("is the treadmill available")
        machines = next(block for block in result.blocks if block.type == "gym_machines")
        assert machines.data[0]["brand"] == "Life Fitness"

    def test_dining_matches_list_fields(self):
        result = MemoryContextStore().query_for_context("where can i eat pizza")
        dining = next(block for block in result.blocks if block.type == "dining_locations")
        assert [doc["name"] for doc in dining.data] == ["Campus Pizza"]

    def test_dining_falls_back_to_all_locations(self):
        result = MemoryContextStore().query_for_context("any good bakery for breakfast")
        dining = next(block for block in result.blocks if block.type == "dining_locations")
        assert len(dining.data) == 2

    def test_backend_failure_gives_empty_context(self):
        result = MemoryContextStore(fail=True).query_for_context("chest workout")
        assert not result
        assert format_context_for_prompt(result) == ""

    def test_prompt_block_rendering(self):
        store = MemoryContextStore()
        text = format_context_for_prompt(store.query_for_context("is the treadmill available at the center"))
        assert "RELEVANT DATABASE INFORMATION:" in text
        assert "- Treadmill (Life Fitness)" in text
        assert "Quantity: 12" in text
        assert "  Location: Student Recreation Center" in text
        assert "  Amenities: pool, track" in text
        assert text.rstrip().endswith("accurate responses.")

    def test_empty_result_is_falsy(self):
        assert not ContextResult()
        assert ContextResult(redirect=True)


class TestGeminiClient:
    def test_request_shape(self, monkeypatch):
        sent = {}

        def fake_post(url, json=None, timeout=None):
            sent.update(url=url, json=json, timeout=timeout)
            return _reply("Do squats.")

        monkeypatch.setattr(gemini_module.requests, "post", fake_post)
        client = GeminiClient("secret", model="gemini-test", base_url="https://example.test/models")
        assert client.generate_content("hi", max_tokens=10) == "Do squats."
        assert sent["url"] == "https://example.test/models/gemini-test:generateContent?key=secret"
        assert sent["json"]["contents"] == [{"parts": [{"text": "hi"}]}]
        assert sent["json"]["generationConfig"]["maxOutputTokens"] == 10
        assert sent["json"]["generationConfig"]["temperature"] == 0.7
        assert len(sent["json"]["safetySettings"]) == 4
        assert sent["timeout"] == 30.0

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(gemini_module.requests, "post", pytest.fail)
        client = GeminiClient(None)
        assert not client.configured
        with pytest.raises(GeminiError, match="API key not set"):
            client.generate_content("hi")
        assert client.health_check()["status"] == "error"

    def test_http_error_includes_detail(self, monkeypatch):
        response = FakeResponse(500, {"error": {"message": "quota exceeded"}}, reason="Server Error")
        monkeypatch.setattr(gemini_module.requests, "post", lambda *a, **k: response)
        with pytest.raises(GeminiError, match="500 Server Error. quota exceeded"):
            GeminiClient("secret").generate_content("hi")

    def test_empty_candidates(self, monkeypatch):
        monkeypatch.setattr(gemini_module.requests, "post", lambda *a, **k: FakeResponse(payload={"candidates": []}))
        with pytest.raises(GeminiError, match="No content generated"):
            GeminiClient("secret").generate_content("hi")


    def test_empty_parts(self, monkeypatch):
        response = FakeResponse(payload={"candidates": [{"content": {"parts": []}, "finishReason": "MAX_TOKENS"}]})
        monkeypatch.setattr(gemini_module.requests, "post", lambda *a, **k: response)
        with pytest.raises(GeminiError, match="No content generated"):
            GeminiClient("secret").generate_content("hi")

    def test_non_json_body(self, monkeypatch):
        class HtmlResponse(FakeResponse):
            def json(self):
                raise ValueError("Expecting value: line 1 column 1 (char 0)")

        monkeypatch.setattr(gemini_module.requests, "post", lambda *a, **k: HtmlResponse())
        with pytest.raises(GeminiError, match="No content generated"):
            GeminiClient("secret").generate_content("hi")
    def test_timeout(self, monkeypatch):
        def slow(*args, **kwargs):
            raise requests.Timeout()

        monkeypatch.setattr(gemini_module.requests, "post", slow)
        with pytest.raises(GeminiError, match="Request timeout"):
            GeminiClient("secret").generate_content("hi")

    def test_health_check_ok(self, monkeypatch):
        monkeypatch.setattr(gemini_module.requests, "post", lambda *a, **k: _reply("Hi"))
        assert GeminiClient("secret").health_check() == {"status": "ok", "message": "API is working"}


class TestAssistant:
    def test_prompt_without_context_or_history(self):
        client = ScriptedClient(["Try push-ups."])
        assistant = FitAIAssistant(client)
        assert assistant.chat("  how do I build chest?  ") == "Try push-ups."
        assert client.prompts[0] == SYSTEM_PROMPT + NO_CONTEXT_NOTE + "User: how do I build chest?\nAssistant:"

    def test_history_is_included_in_later_prompts(self):
        client = ScriptedClient(["First.", "Second."])
        assistant = FitAIAssistant(client)
        assistant.chat("one")
        assistant.chat("two")
        assert "Previous conversation:\nuser: one\nassistant: First.\n\nUser: two\nAssistant:" in client.prompts[1]

    def test_database_context_is_used(self):
        client = ScriptedClient()
        FitAIAssistant(client, MemoryContextStore()).chat("good chest workout")
        assert "- Chest Press: Press the handles forward (chest)" in client.prompts[0]
        assert NO_CONTEXT_NOTE not in client.prompts[0]

    def test_history_is_capped(self):
        assistant = FitAIAssistant(ScriptedClient(), max_messages=4)
        for i in range(5):
            assistant.chat(f"question {i}")
        assert len(assistant.history) == 4
        assert assistant.history[0].content == "question 3"

    def test_failure_reply_is_not_recorded(self):
        assistant = FitAIAssistant(ScriptedClient(error=GeminiError("down")))
        assert assistant.chat("plan my week") == FAILURE_REPLY
        assert assistant.history == []

    def test_empty_message_rejected(self):
        with pytest.raises(ValueError):
            FitAIAssistant(ScriptedClient()).chat("   ")

    def test_clear_history(self):
        assistant = FitAIAssistant(ScriptedClient())
        assistant.chat("hello coach")
        assistant.clear_history()
        assert assistant.history == []

    def test_blocked_candidate_returns_apology(self, monkeypatch):
        blocked = FakeResponse(payload={"candidates": [{"content": {"parts": []}, "finishReason": "SAFETY"}]})
        monkeypatch.setattr(gemini_module.requests, "post", lambda *a, **k: blocked)
        assistant = FitAIAssistant(GeminiClient("secret"))
        assert assistant.chat("best leg workout") == FAILURE_REPLY
        assert assistant.history == []

import json
from types import SimpleNamespace

import pytest

from hive_analysis.services.openai_client import OpenAIService


class _FakeEmbeddings:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    async def create(self, **payload):
        self.calls.append(payload)
        data = [
            SimpleNamespace(index=idx, embedding=[float(idx), float(len(text))])
            for idx, text in enumerate(payload["input"])
        ]
        return SimpleNamespace(data=list(reversed(data)), model=f"{payload['model']}-2024")


class _FakeChat:
    def __init__(self, content: str) -> None:
        self.content = content
        self.calls: list[dict] = []

    async def create(self, **payload):
        self.calls.append(payload)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))])


def _service(chat_content: str = "{}"):
    embeddings = _FakeEmbeddings()
    chat = _FakeChat(chat_content)
    client = SimpleNamespace(embeddings=embeddings, chat=SimpleNamespace(completions=chat))
    return OpenAIService(client=client), embeddings, chat


@pytest.mark.asyncio
async def test_embed_texts_orders_by_index_and_normalises_input():
    service, embeddings, _ = _service()

    batch = await service.embed_texts(["  more   parks ", "", "buses"])

    assert embeddings.calls[0]["input"] == ["more parks", " ", "buses"]
    assert batch.vectors == [[0.0, 10.0], [1.0, 1.0], [2.0, 5.0]]
    assert batch.dim == 2
    assert batch.model_revision.endswith("-2024")


@pytest.mark.asyncio
async def test_embed_texts_with_no_input_skips_the_api():
    service, embeddings, _ = _service()

    batch = await service.embed_texts([])

    assert (batch.vectors, batch.dim) == ([], 0)
    assert embeddings.calls == []


@pytest.mark.asyncio
async def test_name_theme_parses_json_and_falls_back():
    service, _, chat = _service(json.dumps({"name": " Green Spaces ", "description": "Parks and trees."}))
    theme = await service.name_theme(0, ["more parks", "plant trees"])
    assert (theme.name, theme.description) == ("Green Spaces", "Parks and trees.")
    assert chat.calls[0]["response_format"] == {"type": "json_object"}
    assert "1. more parks" in chat.calls[0]["messages"][1]["content"]

    broken, _, _ = _service("not json")
    fallback = await broken.name_theme(2, ["a", "b", "c"])
    assert (fallback.name, fallback.description) == ("Theme 3", "3 related responses")

    empty = await broken.name_theme(4, [])
    assert empty.name == "Empty Cluster"


@pytest.mark.asyncio
async def test_synthesize_short_circuits_and_falls_back():
    service, _, chat = _service(json.dumps({"statement": "Residents want more parks."}))
    assert await service.synthesize([]) == ""
    assert await service.synthesize(["only one"]) == "only one"
    assert chat.calls == []
    assert await service.synthesize(["more parks", "parks please"]) == "Residents want more parks."

    broken, _, _ = _service(json.dumps({"statement": ""}))
    assert await broken.synthesize(["more parks", "parks please"]) == "more parks"

import json
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest

from contract_pdf.number_words import (
    MAX_DIGITS,
    NumberToWordsConverter,
    NumberToWordsError,
    parse_amount,
    spell_hungarian,
)


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(completions):
    return SimpleNamespace(chat=SimpleNamespace(completions=completions))


@pytest.mark.parametrize(
    "number, words",
    [
        (0, "nulla"),
        (1, "egy"),
        (2, "kettő"),
        (10, "tíz"),
        (11, "tizenegy"),
        (20, "húsz"),
        (22, "huszonkettő"),
        (100, "egyszáz"),
        (123, "egyszázhuszonhárom"),
        (1000, "egyezer"),
        (1999, "egyezerkilencszázkilencvenkilenc"),
        (2000, "kétezer"),
        (2001, "kétezer-egy"),
        (22000, "huszonkétezer"),
        (1_500_000, "egymillió-ötszázezer"),
        (2_500_000, "kétmillió-ötszázezer"),
    ],
)
def test_spell_hungarian(number, words):
    assert spell_hungarian(number) == words


def test_spell_hungarian_rejects_negative():
    with pytest.raises(NumberToWordsError):
        spell_hungarian(-5)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1500000", 1_500_000),
        ("1 500 000", 1_500_000),
        ("1.500.000", 1_500_000),
        ("2500000.50", 2_500_000),
        (42, 42),
        ("", None),
        ("abc", None),
        ("0", None),
        ("-100", None),
        (None, None),
    ],
)
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


def test_convert_without_client_uses_rule_based_speller():
    converter = NumberToWordsConverter()
    assert converter.openai_client is None
    assert converter.convert("123") == "Egyszázhuszonhárom"


def test_convert_invalid_input_is_empty():
    converter = NumberToWordsConverter()
    assert converter.convert("nem szám") == ""
    assert converter.convert("0") == ""


def test_convert_uses_model_answer_capitalised():
    completions = FakeCompletions(content=json.dumps({"words": "egyszázhuszonhárom"}))
    converter = NumberToWordsConverter(client=fake_client(completions))

    assert converter.convert("123") == "Egyszázhuszonhárom"
    assert completions.calls[0]["response_format"] == {"type": "json_object"}
    assert "123" in completions.calls[0]["messages"][0]["content"]


def test_convert_strips_code_fences():
    content = '```json\n{"words": "Kétezer-egy"}\n```'
    converter = NumberToWordsConverter(client=fake_client(FakeCompletions(content=content)))
    assert converter.convert(2001) == "Kétezer-egy"


def test_convert_falls_back_when_model_fails(caplog):
    completions = FakeCompletions(error=RuntimeError("quota exceeded"))
    converter = NumberToWordsConverter(client=fake_client(completions))

    assert converter.convert("2500000") == "Kétmillió-ötszázezer"
    assert "quota exceeded" in caplog.text


def test_convert_falls_back_on_empty_answer():
    completions = FakeCompletions(content=json.dumps({"words": ""}))
    converter = NumberToWordsConverter(client=fake_client(completions))
    assert converter.convert("1000") == "Egyezer"


def test_convert_caches_results():
    completions = FakeCompletions(content=json.dumps({"words": "Egyezer"}))
    converter = NumberToWordsConverter(client=fake_client(completions))

    assert converter.convert("1000") == "Egyezer"
    assert converter.convert("1 000") == "Egyezer"
    assert len(completions.calls) == 1


@pytest.mark.parametrize("value", ["9" * 30, "9" * 5000, 10**MAX_DIGITS])
def test_parse_amount_rejects_amounts_too_long_to_spell(value):
    with pytest.raises(NumberToWordsError):
        parse_amount(value)


def test_parse_amount_largest_spellable_amount():
    largest = "9" * MAX_DIGITS

    assert parse_amount(largest) == int(largest)
    assert spell_hungarian(parse_amount(largest)).endswith("kilencszázkilencvenkilenc")


def test_parse_amount_ignores_leading_zeros_and_non_finite_floats():
    assert parse_amount("0" * 40 + "15") == 15
    assert parse_amount(float("inf")) is None
    assert parse_amount(float("nan")) is None


def test_convert_too_large_amount_raises_before_model_call():
    completions = FakeCompletions(content=json.dumps({"words": "sok"}))
    converter = NumberToWordsConverter(client=fake_client(completions))

    with pytest.raises(NumberToWordsError):
        converter.convert("9" * 5000)
    assert completions.calls == []


def test_convert_from_many_threads():
    converter = NumberToWordsConverter(cache_ttl=60)
    amounts = [n % 50 + 1 for n in range(400)]

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(converter.convert, amounts))

    assert results == [converter.convert(amount) for amount in amounts]
    assert results[1] == "Kettő"
    assert len(converter._cache) == 50

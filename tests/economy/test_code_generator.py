from __future__ import annotations

import re

import pytest

from app.economy.codes import generator
from app.economy.codes.generator import (
    CODE_ALPHABET,
    format_code,
    generate_code_batch,
    generate_codes,
    normalize_code,
)

CODE_RE = re.compile(r"^[A-HJ-NP-Z2-9]{4}(-[A-HJ-NP-Z2-9]{4}){3}$")


def test_generate_codes_returns_unique_well_formed_codes() -> None:
    codes = generate_codes(count=200)

    assert len(codes) == 200
    assert len(set(codes)) == 200
    assert all(CODE_RE.fullmatch(code) for code in codes)


def test_code_alphabet_excludes_ambiguous_characters() -> None:
    for ambiguous in ("0", "O", "1", "I"):
        assert ambiguous not in CODE_ALPHABET
    assert len(CODE_ALPHABET) == 32


def test_generate_codes_skips_existing_codes(monkeypatch) -> None:
    chars = iter("A" * 16 + "B" * 16)
    monkeypatch.setattr(generator.secrets, "choice", lambda _alphabet: next(chars))
    existing = {"AAAA-AAAA-AAAA-AAAA"}

    codes = generate_codes(count=1, existing_codes=existing)

    assert codes == ["BBBB-BBBB-BBBB-BBBB"]
    assert "BBBB-BBBB-BBBB-BBBB" in existing


def test_generate_codes_raises_when_space_is_exhausted(monkeypatch) -> None:
    monkeypatch.setattr(generator.secrets, "choice", lambda _alphabet: "A")

    with pytest.raises(RuntimeError, match="unable to generate unique subscription codes"):
        generate_codes(count=2)


@pytest.mark.parametrize("count", [0, -3])
def test_generate_codes_rejects_non_positive_count(count: int) -> None:
    with pytest.raises(ValueError):
        generate_codes(count=count)


@pytest.mark.parametrize(
    "raw_code",
    [
        "abcd-efgh-jkmn-pqrs",
        "  ABCDEFGHJKMNPQRS ",
        "abcd efgh_jkmn.pqrs",
        "ABCD--EFGH  JKMN-PQRS",
    ],
)
def test_normalize_code_resolves_separator_and_case_variants(raw_code: str) -> None:
    assert normalize_code(raw_code) == "ABCD-EFGH-JKMN-PQRS"


def test_normalize_code_of_blank_input_is_empty() -> None:
    assert normalize_code("  - _ ") == ""


def test_format_code_groups_by_four() -> None:
    assert format_code("ABCDEFGH") == "ABCD-EFGH"


async def test_generate_code_batch_avoids_stored_codes(monkeypatch) -> None:
    async def fake_list_all_codes(session) -> set[str]:
        return {"AAAA-AAAA-AAAA-AAAA"}

    chars = iter("A" * 16 + "C" * 16)
    monkeypatch.setattr(generator.SubscriptionCodesRepo, "list_all_codes", staticmethod(fake_list_all_codes))
    monkeypatch.setattr(generator.secrets, "choice", lambda _alphabet: next(chars))

    codes = await generate_code_batch(object(), count=1)

    assert codes == ["CCCC-CCCC-CCCC-CCCC"]

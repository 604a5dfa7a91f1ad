from __future__ import annotations

import re
import secrets

from sqlalchemy.ext.asyncio import AsyncSession

from app.db.repo.subscription_codes_repo import SubscriptionCodesRepo

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_GROUP_LENGTH = 4
CODE_GROUP_COUNT = 4
CODE_SEPARATOR = "-"
CODE_LENGTH = CODE_GROUP_LENGTH * CODE_GROUP_COUNT

_CODE_NORMALIZE_PATTERN = re.compile(r"[\s\-_.]+")


def format_code(token: str) -> str:
    return CODE_SEPARATOR.join(
        token[index : index + CODE_GROUP_LENGTH]
        for index in range(0, len(token), CODE_GROUP_LENGTH)
    )


def normalize_code(raw_code: str) -> str:
    """Canonical `XXXX-XXXX-XXXX-XXXX` form of user input.

    Separators and whitespace are dropped and the rest is uppercased before
    regrouping, so `abcd efgh-jkmn.pqrs` and `ABCDEFGHJKMNPQRS` resolve to the
    same stored code. Input of the wrong length is regrouped as-is and will
    simply not match anything in the store.
    """
    token = _CODE_NORMALIZE_PATTERN.sub("", raw_code.strip()).upper()
    return format_code(token)


def generate_codes(*, count: int, existing_codes: set[str] | None = None) -> list[str]:
    if count <= 0:
        raise ValueError("count must be positive")

    existing = existing_codes if existing_codes is not None else set()
    generated: list[str] = []
    attempts = 0
    max_attempts = max(100, count * 50)

    while len(generated) < count:
        attempts += 1
        if attempts > max_attempts:
            raise RuntimeError("unable to generate unique subscription codes")

        token = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
        code = format_code(token)
        if code in existing:
            continue

        existing.add(code)
        generated.append(code)

    return generated


async def generate_code_batch(session: AsyncSession, *, count: int) -> list[str]:
    existing_codes = await SubscriptionCodesRepo.list_all_codes(session)
    return generate_codes(count=count, existing_codes=existing_codes)

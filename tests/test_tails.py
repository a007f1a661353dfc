"""Tests for tail generation."""

from __future__ import annotations

import pytest

from webpaste.errors import TailDrained
from webpaste.services import tails
from webpaste.services.tails import (
    MAX_TAIL_LEN,
    RESERVED_TAILS,
    TAIL_ALPHABET,
    allocate_tail,
    is_valid_tail,
    random_tail,
)


async def _never_taken(tail: str) -> bool:
    return False


async def _always_taken(tail: str) -> bool:
    return True


class TestRandomTail:
    """Tests for random_tail."""

    def test_length_and_alphabet(self) -> None:
        for length in (1, 4, 12):
            tail = random_tail(length)
            assert len(tail) == length
            assert all(c in TAIL_ALPHABET for c in tail)

    def test_alphabet_is_letters_only(self) -> None:
        assert TAIL_ALPHABET.isalpha()
        assert len(TAIL_ALPHABET) == 52

    def test_samples_vary(self) -> None:
        assert len({random_tail(8) for _ in range(50)}) > 1

    def test_is_valid_tail(self) -> None:
        assert is_valid_tail("abcXYZ")
        assert not is_valid_tail("")
        assert not is_valid_tail("abc1")
        assert not is_valid_tail("ab-c")
        assert is_valid_tail("a" * MAX_TAIL_LEN)
        assert not is_valid_tail("a" * (MAX_TAIL_LEN + 1))


class TestAllocateTail:
    """Tests for allocate_tail."""

    async def test_returns_first_free_candidate(self) -> None:
        tail = await allocate_tail(4, _never_taken, max_attempts=16)
        assert len(tail) == 4
        assert tail.isalpha()

    async def test_skips_taken_candidates(self) -> None:
        seen: list[str] = []

        async def taken_twice(tail: str) -> bool:
            seen.append(tail)
            return len(seen) <= 2

        tail = await allocate_tail(6, taken_twice, max_attempts=16)
        assert len(seen) == 3
        assert tail == seen[-1]

    async def test_skips_reserved_tails(self, monkeypatch: pytest.MonkeyPatch) -> None:
        candidates = iter(["health", "abcdef"])
        monkeypatch.setattr(tails, "random_tail", lambda length: next(candidates))

        assert "health" in RESERVED_TAILS
        assert await allocate_tail(6, _never_taken, max_attempts=16) == "abcdef"

    async def test_drained_after_max_attempts(self) -> None:
        calls = 0

        async def taken(tail: str) -> bool:
            nonlocal calls
            calls += 1
            return True

        with pytest.raises(TailDrained) as exc_info:
            await allocate_tail(2, taken, max_attempts=5)

        assert calls == 5
        assert exc_info.value.length == 2
        assert exc_info.value.attempts == 5

    async def test_last_attempt_can_succeed(self) -> None:
        calls = 0

        async def free_on_last(tail: str) -> bool:
            nonlocal calls
            calls += 1
            return calls < 3

        tail = await allocate_tail(3, free_on_last, max_attempts=3)
        assert len(tail) == 3

    @pytest.mark.parametrize("length", [0, -1])
    async def test_rejects_non_positive_length(self, length: int) -> None:
        with pytest.raises(ValueError):
            await allocate_tail(length, _never_taken, max_attempts=16)

    async def test_rejects_non_positive_attempts(self) -> None:
        with pytest.raises(ValueError):
            await allocate_tail(4, _always_taken, max_attempts=0)

from __future__ import annotations

import random

import pytest

from chatrelay.output import split_message


def test_short_and_empty_text() -> None:
    assert split_message("") == []
    assert split_message("hello", 10) == ["hello"]
    assert split_message("x" * 10, 10) == ["x" * 10]


def test_prefers_newline_boundary() -> None:
    text = "a" * 17 + "\n" + "b " + "c" * 10

    chunks = split_message(text, 20)

    assert chunks[0] == "a" * 17 + "\n"
    assert "".join(chunks) == text


def test_falls_back_to_space_boundary() -> None:
    text = "a" * 9 + " " + "b" * 9

    assert split_message(text, 10) == ["a" * 9 + " ", "b" * 9]


def test_boundary_outside_window_is_ignored() -> None:
    text = "aa " + "a" * 13

    chunks = split_message(text, 10)

    assert chunks == ["aa aaaaaaa", "aaaaaa"]


def test_hard_cut_without_boundaries() -> None:
    assert split_message("x" * 25, 10) == ["x" * 10, "x" * 10, "x" * 5]


def test_rejects_non_positive_bound() -> None:
    with pytest.raises(ValueError):
        split_message("abc", 0)


def test_chunks_are_bounded_and_lossless() -> None:
    rng = random.Random(7)
    alphabet = "abcdefgh \n"
    for max_length in (1, 7, 50, 5000):
        for _ in range(20):
            text = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 3000 if max_length < 50 else 12000)))
            chunks = split_message(text, max_length)
            assert "".join(chunks) == text
            assert all(0 < len(chunk) <= max_length for chunk in chunks)


def test_default_bound_splits() -> None:
    assert [len(chunk) for chunk in split_message("x" * 12000)] == [5000, 5000, 2000]

    text = "y" * 4200 + "\n" + "z" * 7799
    chunks = split_message(text)
    assert len(chunks[0]) == 4201
    assert chunks[0].endswith("\n")
    assert "".join(chunks) == text

"""Shared pytest fixtures."""

import pytest

from card_fixtures import book_entry, make_card_png, make_png, v2_card


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def sample_card() -> dict:
    """A small V2 card with a lorebook and extension data."""
    return v2_card(
        description="A wandering cartographer.",
        personality="Curious, patient",
        scenario="A harbor town at dawn.",
        first_mes="Hello, traveler.",
        mes_example="<START>\n{{user}}: Hi\n{{char}}: Hello!",
        alternate_greetings=["Good morning.", "You again?"],
        tags=["fantasy"],
        extensions={"talkativeness": "0.5"},
        character_book={
            "name": "Harbor lore",
            "entries": [book_entry(1), book_entry(2)],
        },
    )


@pytest.fixture
def sample_card_png(sample_card) -> bytes:
    return make_card_png(sample_card)

from __future__ import annotations

import random
from datetime import timedelta

import pytest

from gamemaster.memory.types import MemoryCategory
from gamemaster.services.game_tools import (
    DiceExpressionError,
    GameToolService,
    StatusTagChange,
    parse_dice_expression,
)


def test_parse_dice_expression_defaults_and_modifiers() -> None:
    assert parse_dice_expression("2d8+3") == (2, 8, 3)
    assert parse_dice_expression("1d20-2") == (1, 20, -2)
    assert parse_dice_expression("d") == (1, 6, 0)
    assert parse_dice_expression("3d") == (3, 6, 0)
    assert parse_dice_expression("d12") == (1, 12, 0)


@pytest.mark.parametrize("expression", ["", "banana", "2x6", "1d20+", "d20*2", "0d6", "1d1"])
def test_parse_dice_expression_rejects_malformed(expression: str) -> None:
    with pytest.raises(DiceExpressionError):
        parse_dice_expression(expression)


@pytest.mark.anyio
async def test_roll_sums_exact_number_of_dice(memory_service) -> None:
    tools = GameToolService(memory_service, rng=random.Random(42))
    for _ in range(50):
        roll = await tools.roll_dice("3d6+2")
        assert len(roll.rolls) == 3
        assert all(1 <= value <= 6 for value in roll.rolls)
        assert roll.total == sum(roll.rolls)
        assert roll.final_total == roll.total + 2
        assert roll.success is None


@pytest.mark.anyio
async def test_advantage_keeps_higher_and_disadvantage_keeps_lower(tools_factory) -> None:
    advantage = await tools_factory([4, 17]).roll_dice("1d20", advantage=True)
    assert advantage.rolls == (17,)

    disadvantage = await tools_factory([4, 17]).roll_dice("1d20", disadvantage=True)
    assert disadvantage.rolls == (4,)

    both = await tools_factory([4, 17]).roll_dice("1d20", advantage=True, disadvantage=True)
    assert both.rolls == (17,)


@pytest.mark.anyio
async def test_advantage_ignored_for_other_dice(tools_factory) -> None:
    roll = await tools_factory([2, 5]).roll_dice("2d6", advantage=True)
    assert roll.rolls == (2, 5)


@pytest.mark.anyio
async def test_difficulty_and_criticals(tools_factory) -> None:
    natural_twenty = await tools_factory([20]).roll_dice("1d20", difficulty=15)
    assert natural_twenty.success is True
    assert natural_twenty.critical_success is True
    assert natural_twenty.critical_failure is False

    natural_one = await tools_factory([1]).roll_dice("1d20+5", difficulty=5)
    assert natural_one.final_total == 6
    assert natural_one.success is True
    assert natural_one.critical_failure is True

    miss = await tools_factory([9]).roll_dice("1d20", difficulty=10)
    assert miss.success is False
    assert miss.critical_success is False

    no_crit_field = await tools_factory([6, 6]).roll_dice("2d6", difficulty=10)
    assert no_crit_field.success is True
    assert no_crit_field.critical_success is None


@pytest.mark.anyio
async def test_status_tags_upsert_and_remove(tools_factory) -> None:
    tools = tools_factory()
    first = await tools.update_status_tags(
        "player",
        [
            StatusTagChange("frightened", "Scared", "debuff", "add"),
            StatusTagChange("blessed", "Divine favour", "buff", "add", value=2),
        ],
    )
    assert [tag.id for tag in first] == ["player-frightened", "player-blessed"]

    updated = await tools.update_status_tags(
        "player", [StatusTagChange("blessed", "Stronger favour", "buff", "update", value=3)]
    )
    assert updated[0].created_at == first[1].created_at
    assert updated[0].value == 3

    removed = await tools.update_status_tags(
        "player", [StatusTagChange("frightened", "Calm again", "debuff", "remove")]
    )
    assert removed == []

    tags = await tools.get_status_tags("player")
    assert [tag.name for tag in tags] == ["blessed"]
    assert await tools.get_status_tags("goblin") == []


@pytest.mark.anyio
async def test_clear_expired_tags_drops_only_elapsed_durations(tools_factory) -> None:
    tools = tools_factory()
    await tools.update_status_tags(
        "player",
        [
            StatusTagChange("stunned", "Dazed", "condition", "add", duration=5),
            StatusTagChange("strong", "Permanent", "attribute", "add"),
        ],
    )
    stunned = next(tag for tag in await tools.get_status_tags("player") if tag.name == "stunned")
    stunned.created_at = stunned.created_at - timedelta(seconds=10)

    assert await tools.clear_expired_tags() == 1
    assert [tag.name for tag in await tools.get_status_tags("player")] == ["strong"]


@pytest.mark.anyio
async def test_store_and_search_knowledge(tools_factory, memory_service) -> None:
    tools = tools_factory()
    stored = await tools.store_knowledge(
        "npc",
        "Old Maren",
        "The ferrywoman who knows the river secrets",
        tags=["ferry"],
        relevance=0.34,
        campaign_id="camp-1",
    )
    entry = await memory_service.get(stored.id)
    assert entry.category is MemoryCategory.CHARACTER
    assert entry.importance == 4
    assert entry.content == "Old Maren: The ferrywoman who knows the river secrets"

    found = await tools.search_knowledge(
        "Old Maren: The ferrywoman who knows the river secrets", campaign_id="camp-1"
    )
    assert found[0].id == stored.id
    assert found[0].title == "Old Maren"
    assert found[0].relevance == pytest.approx(1.0)
    assert found[0].category == "character"

"""Test suite for the stateless history filters and the state aggregator."""

from datetime import datetime, timedelta, timezone

import pytest

from chat_history.domain.exceptions import ConversationNotFoundError, InvalidHistoryOptionError
from chat_history.domain.models import HistoryOptions, Message
from chat_history.repositories.memory import InMemoryStateStore
from chat_history.services.aggregator import ConversationStateAggregator
from chat_history.services.history import apply_options

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_log(count: int):
    return [
        Message(chat_id="c1", content=f"m{i}", timestamp=START + timedelta(seconds=i))
        for i in range(count)
    ]


def test_no_options_returns_everything():
    """Test that default options are a no-op."""
    log = make_log(4)
    assert apply_options(log, HistoryOptions()) == log


def test_limit_keeps_most_recent():
    """Test that limit truncates from the start."""
    log = make_log(5)
    assert [m.content for m in apply_options(log, HistoryOptions(limit=2))] == ["m3", "m4"]


def test_range_then_limit():
    """Test that bounds are exclusive and limit runs after them."""
    log = make_log(6)
    options = HistoryOptions(after=log[0].timestamp, before=log[5].timestamp, limit=3)
    assert [m.content for m in apply_options(log, options)] == ["m2", "m3", "m4"]


def test_inverted_bounds_empty():
    """Test that before earlier than after returns nothing."""
    log = make_log(3)
    options = HistoryOptions(before=log[0].timestamp, after=log[2].timestamp)
    assert apply_options(log, options) == []


def test_filter_does_not_mutate_input():
    """Test that filtering leaves the source sequence untouched."""
    log = make_log(3)
    apply_options(log, HistoryOptions(limit=1))
    assert len(log) == 3


def test_invalid_limit():
    """Test that a zero limit is rejected before any filtering."""
    with pytest.raises(InvalidHistoryOptionError):
        apply_options(make_log(2), HistoryOptions(limit=0))


@pytest.mark.asyncio
async def test_aggregator_tracks_counts_and_times():
    """Test state creation and updates on append."""
    aggregator = ConversationStateAggregator(InMemoryStateStore())
    first, second, third = make_log(3)

    state = await aggregator.on_append("c1", first)
    assert state.message_count == 1
    assert state.created_at == state.updated_at == first.timestamp

    await aggregator.on_append("c1", second)
    state = await aggregator.on_append("c1", third)
    assert state.message_count == 3
    assert state.created_at == first.timestamp
    assert state.updated_at == third.timestamp
    assert await aggregator.get("c1") == state


@pytest.mark.asyncio
async def test_aggregator_remove():
    """Test removal and the NotFound condition."""
    aggregator = ConversationStateAggregator(InMemoryStateStore())
    await aggregator.on_append("c1", make_log(1)[0])

    await aggregator.remove("c1")
    assert await aggregator.get("c1") is None
    assert await aggregator.list_all() == []

    with pytest.raises(ConversationNotFoundError):
        await aggregator.remove("c1")

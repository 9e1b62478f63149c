from concurrent.futures import ThreadPoolExecutor

import pytest

from incoming_calls.schemas.calls import DirectoryEntry
from incoming_calls.services.call_feed import CallFeedService, clamp_limit
from incoming_calls.services.normalizer import PhoneMissingError


def test_ingest_updates_history_and_last_call(feed):
    first = feed.ingest({"phone": "0711"})
    second = feed.ingest({"phone": "0722", "status": "answered"})

    assert (first.id, second.id) == (1, 2)
    assert feed.last_call == second
    assert [e.id for e in feed.history.recent(10)] == [2, 1]


def test_rejected_ingest_leaves_state_untouched(feed):
    feed.ingest({"phone": "0711"})

    with pytest.raises(PhoneMissingError):
        feed.ingest({"phone": "   "})

    assert feed.last_call.id == 1
    assert len(feed.history) == 1


def test_concurrent_ingestion_ids_are_unique_and_gapless(settings):
    feed = CallFeedService(settings.model_copy(update={"max_history": 1000}))

    def ingest(i: int) -> int:
        return feed.ingest({"phone": f"07{i:08d}"}).id

    with ThreadPoolExecutor(max_workers=8) as pool:
        ids = list(pool.map(ingest, range(400)))

    assert sorted(ids) == list(range(1, 401))
    # History order (newest first) must match id order exactly.
    assert [e.id for e in feed.history.recent(1000)] == list(range(400, 0, -1))
    assert feed.last_call.id == 400


@pytest.mark.asyncio
async def test_call_log_scenario(feed):
    for status in ["ringing", "answered", "missed", "rejected", "ringing"]:
        feed.ingest({"phone": "0711", "status": status})

    entries = await feed.call_log(3)

    assert [e.id for e in entries] == [5, 4, 3]
    assert [e.status for e in entries] == ["ringing", "rejected", "missed"]


@pytest.mark.asyncio
async def test_call_log_enrichment_prefers_stored_metadata(feed, directory):
    directory.entries = {
        "0711": DirectoryEntry(id="7", name="Directory Name"),
        "0722": DirectoryEntry(id="8", name="Maria"),
    }
    feed.ingest({"phone": "0711", "name": "Caller Said", "person_id": "99"})
    feed.ingest({"phone": "0722"})
    feed.ingest({"phone": "0733"})
    feed.ingest({"phone": "0722"})

    entries = await feed.call_log(10)

    by_id = {e.id: e for e in entries}
    assert (by_id[1].caller_name, by_id[1].person_id) == ("Caller Said", "99")
    assert (by_id[2].caller_name, by_id[2].person_id) == ("Maria", "8")
    assert (by_id[3].caller_name, by_id[3].person_id) == (None, None)
    # Distinct digits only.
    assert directory.calls == [{"0711", "0722", "0733"}]
    # Stored events are never mutated by enrichment.
    assert feed.history.recent(10)[2].caller_name is None


@pytest.mark.asyncio
async def test_call_log_survives_directory_failure(feed, directory):
    directory.error = ConnectionError("database unavailable")
    feed.ingest({"phone": "0711", "name": "Ion"})
    feed.ingest({"phone": "0722"})

    entries = await feed.call_log(10)

    assert [e.caller_name for e in entries] == [None, "Ion"]


@pytest.mark.asyncio
async def test_call_log_skips_lookup_when_no_digits(feed, directory):
    assert await feed.call_log(10) == []
    assert directory.calls == []


@pytest.mark.asyncio
async def test_subscription_replays_last_call_then_live(feed):
    feed.ingest({"phone": "0711"})
    subscription = feed.open_subscription()
    feed.ingest({"phone": "0722"})

    assert subscription.pending_frames == 3
    assert feed.shutdown() == 1
    assert feed.hub.subscriber_count == 0


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (None, 100),
        ("", 100),
        ("abc", 100),
        ("0", 100),
        ("3", 3),
        (" 25 ", 25),
        ("-5", 1),
        ("9999", 500),
        ("3abc", 3),
        ("2.5", 2),
    ],
)
def test_clamp_limit(raw, expected):
    assert clamp_limit(raw, 100, 500) == expected

"""Tests for pipeline.py — ingest and snapshot."""

import pytest

from worklog.auth import DirectoryAuth, SharedTokenAuth
from worklog.errors import AuthError, StorageError, ValidationError
from worklog.pipeline import IngestPipeline, ReadPipeline

SECRET = "s3cret"


@pytest.fixture
def single_user(store, broadcaster):
    return IngestPipeline(store, broadcaster, SharedTokenAuth(SECRET))


@pytest.fixture
def multi_user(store, broadcaster, directory):
    return IngestPipeline(store, broadcaster, DirectoryAuth(directory))


class ExplodingBroadcaster:
    def publish(self, entry):
        raise RuntimeError("fanout is down")


# -- Submit -------------------------------------------------------------------


class TestSubmit:
    @pytest.mark.asyncio
    async def test_returns_persisted_entry(self, single_user, store):
        entry = await single_user.submit("hello", token=SECRET)
        assert entry.id > 0
        assert entry.message == "hello"
        assert entry.username is None
        assert store.count() == 1

    @pytest.mark.asyncio
    async def test_ids_strictly_increase(self, single_user):
        ids = [(await single_user.submit(f"m{i}", token=SECRET)).id for i in range(5)]
        assert all(a < b for a, b in zip(ids, ids[1:]))

    @pytest.mark.asyncio
    async def test_tags_normalized_and_round_trip(self, single_user, store):
        entry = await single_user.submit("tagged", ["  foo bar ", "BAZ"], token=SECRET)
        assert entry.tags == ("FOO_BAR", "BAZ")

        (stored,) = store.query_today()
        assert stored.to_dict()["tags"] == ["FOO_BAR", "BAZ"]

    @pytest.mark.asyncio
    async def test_raw_tags_when_normalization_off(self, store, broadcaster):
        pipeline = IngestPipeline(store, broadcaster, SharedTokenAuth(SECRET), normalize=False)
        entry = await pipeline.submit("raw", ["foo bar"], token=SECRET)
        assert entry.tags == ("foo bar",)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("normalize", [True, False])
    async def test_blank_tags_match_snapshot(self, store, broadcaster, normalize):
        pipeline = IngestPipeline(store, broadcaster, SharedTokenAuth(SECRET), normalize=normalize)
        entry = await pipeline.submit("blank", [""], token=SECRET)
        assert entry.tags is None

        (stored,) = store.query_today()
        assert stored.to_dict() == entry.to_dict()

    @pytest.mark.asyncio
    async def test_blank_tags_dropped_among_others(self, single_user, store):
        entry = await single_user.submit("mixed", ["   ", "ops", ""], token=SECRET)
        assert entry.tags == ("OPS",)
        (stored,) = store.query_today()
        assert stored.tags == ("OPS",)

    @pytest.mark.asyncio
    async def test_clock_is_injectable(self, store, broadcaster):
        pipeline = IngestPipeline(
            store,
            broadcaster,
            SharedTokenAuth(SECRET),
            clock=lambda: "2026-10-19T09:30:00+02:00",
        )
        entry = await pipeline.submit("fixed", token=SECRET)
        assert entry.timestamp == "2026-10-19T09:30:00+02:00"

    @pytest.mark.asyncio
    async def test_multi_user_sets_owner(self, multi_user, directory):
        user = directory.create_user("alice")
        entry = await multi_user.submit("mine", token=user.token)
        assert entry.username == "ALICE"


class TestSubmitRejections:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "wrong"])
    async def test_bad_shared_token(self, single_user, store, token):
        with pytest.raises(AuthError):
            await single_user.submit("hello", token=token)
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_unknown_user_token(self, multi_user, store):
        with pytest.raises(AuthError):
            await multi_user.submit("hello", token="f" * 32)
        assert store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tags", [None, [], ["a"], ["  x ", "y"]])
    async def test_empty_message_regardless_of_tags(self, single_user, store, tags):
        with pytest.raises(ValidationError):
            await single_user.submit("", tags, token=SECRET)
        assert store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [None, 42, ["hi"]])
    async def test_non_string_message(self, single_user, message):
        with pytest.raises(ValidationError):
            await single_user.submit(message, token=SECRET)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tags", ["a,b", [1, 2], {"a": 1}])
    async def test_malformed_tags(self, single_user, store, tags):
        with pytest.raises(ValidationError):
            await single_user.submit("hello", tags, token=SECRET)
        assert store.count() == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "message, tags", [("\ud800", None), ("ok", ["fine", "\udfff"])]
    )
    async def test_lone_surrogates_rejected(self, single_user, store, message, tags):
        with pytest.raises(ValidationError):
            await single_user.submit(message, tags, token=SECRET)
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_undecodable_shared_token(self, single_user, store):
        with pytest.raises(AuthError):
            await single_user.submit("hello", token="\udcff\udcfe")
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_undecodable_user_token(self, multi_user, directory, store):
        directory.create_user("alice")
        with pytest.raises(AuthError):
            await multi_user.submit("hello", token="\udcff\udcfe")
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_auth_checked_before_validation(self, single_user):
        with pytest.raises(AuthError):
            await single_user.submit("", token=None)

    @pytest.mark.asyncio
    async def test_storage_failure_surfaces(self, tmp_path, broadcaster):
        from worklog.store import Database, EntryStore

        bare = EntryStore(Database(tmp_path / "no-schema.db"))
        pipeline = IngestPipeline(bare, broadcaster, SharedTokenAuth(SECRET))
        with pytest.raises(StorageError):
            await pipeline.submit("hello", token=SECRET)
        assert broadcaster.published == 0


class TestPublishing:
    @pytest.mark.asyncio
    async def test_registered_viewer_receives_entry(self, single_user, broadcaster, settle):
        viewer = broadcaster.subscribe()
        entry = await single_user.submit("live", token=SECRET)
        await settle(broadcaster)

        assert (await viewer.receive(timeout=1)) == entry

    @pytest.mark.asyncio
    async def test_later_viewer_does_not_see_earlier_entry(
        self, single_user, broadcaster, settle
    ):
        await single_user.submit("before", token=SECRET)
        await settle(broadcaster)

        viewer = broadcaster.subscribe()
        after = await single_user.submit("after", token=SECRET)
        await settle(broadcaster)

        assert (await viewer.receive(timeout=1)) == after
        assert viewer.qsize == 0

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_submit(self, store):
        pipeline = IngestPipeline(store, ExplodingBroadcaster(), SharedTokenAuth(SECRET))
        entry = await pipeline.submit("durable", token=SECRET)
        assert entry.id > 0
        assert store.count() == 1


# -- Snapshot -----------------------------------------------------------------


class TestSnapshot:
    @pytest.mark.asyncio
    async def test_oldest_first(self, single_user, store):
        first = await single_user.submit("first", token=SECRET)
        second = await single_user.submit("second", token=SECRET)

        entries = await ReadPipeline(store).snapshot()
        assert [e.id for e in entries] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_filtered_by_user(self, multi_user, directory, store):
        alice = directory.create_user("alice")
        bob = directory.create_user("bob")
        await multi_user.submit("a", token=alice.token)
        await multi_user.submit("b", token=bob.token)

        entries = await ReadPipeline(store).snapshot("alice")
        assert [e.message for e in entries] == ["a"]

    @pytest.mark.asyncio
    async def test_storage_failure_propagates(self, tmp_path):
        from worklog.store import Database, EntryStore

        reader = ReadPipeline(EntryStore(Database(tmp_path / "no-schema.db")))
        with pytest.raises(StorageError):
            await reader.snapshot()

"""
Tests for conflict resolution

Tests cover:
- Latest-wins by version, timestamp fields and descriptor timestamps
- Merge function precedence and determinism
- Deletions on either side
- Per-entity strategies, including manual resolution
- Field-level merge rules
"""

from ecosync.models.enums import (
    ConflictType,
    EntityType,
    FieldMergeStrategy,
    ResolutionStrategy,
)
from ecosync.schemas.sync import ConflictDescriptor
from ecosync.services.conflict import (
    DEFAULT_ENTITY_STRATEGIES,
    ConflictResolver,
    local_is_newer,
)


def _descriptor(local, remote, entity_type="collection", **kwargs) -> ConflictDescriptor:
    return ConflictDescriptor(type=entity_type, id="123", local_data=local, remote_data=remote, **kwargs)


# ===== Latest-wins Tests =====

class TestLatestWins:
    """Tests for the default comparison"""

    def test_remote_newer_version_wins(self, resolver):
        """Newer remote version with no merge function returns the remote copy"""
        outcome = resolver.resolve(
            _descriptor({"name": "Local", "version": 1}, {"name": "Remote", "version": 2}),
            "collection",
        )

        assert outcome.strategy_used == ResolutionStrategy.REMOTE_WINS
        assert outcome.resolved_data["name"] == "Remote"
        assert outcome.should_delete is False

    def test_local_newer_version_wins(self, resolver):
        outcome = resolver.resolve(
            _descriptor({"name": "Local", "version": 3}, {"name": "Remote", "version": 2}),
        )
        assert outcome.strategy_used == ResolutionStrategy.LOCAL_WINS
        assert outcome.resolved_data["name"] == "Local"

    def test_equal_versions_go_to_remote(self, resolver):
        outcome = resolver.resolve(
            _descriptor({"name": "Local", "version": 2}, {"name": "Remote", "version": 2}),
        )
        assert outcome.strategy_used == ResolutionStrategy.REMOTE_WINS

    def test_timestamp_fields_used_without_version(self, resolver):
        outcome = resolver.resolve(_descriptor(
            {"name": "Local", "updatedAt": "2026-03-02T10:00:00Z"},
            {"name": "Remote", "updatedAt": "2026-03-01T10:00:00Z"},
        ))
        assert outcome.resolved_data["name"] == "Local"

    def test_descriptor_timestamps_as_last_resort(self, resolver):
        outcome = resolver.resolve(_descriptor(
            {"name": "Local"},
            {"name": "Remote"},
            local_timestamp=200.0,
            remote_timestamp=100.0,
        ))
        assert outcome.strategy_used == ResolutionStrategy.LOCAL_WINS

    def test_no_comparable_data_goes_to_remote(self, resolver):
        outcome = resolver.resolve(_descriptor({"name": "Local"}, {"name": "Remote"}))
        assert outcome.strategy_used == ResolutionStrategy.REMOTE_WINS

    def test_incomparable_types_skip_to_next_key(self):
        descriptor = _descriptor(
            {"version": "v1", "updated_at": 20},
            {"version": 1, "updated_at": 10},
        )
        assert local_is_newer(descriptor) is True


# ===== Merge Function Tests =====

class TestMergeFunctions:
    """Tests for registered merge functions"""

    def test_merge_function_used_regardless_of_version(self, resolver):
        resolver.register_merge_function(
            EntityType.COLLECTION,
            lambda local, remote: {**local, **remote, "merged": True},
        )

        outcome = resolver.resolve(
            _descriptor({"name": "Local", "version": 9}, {"name": "Remote", "version": 1}),
            "collection",
        )

        assert outcome.strategy_used == ResolutionStrategy.MERGE
        assert outcome.resolved_data["merged"] is True
        assert outcome.resolved_data["name"] == "Remote"

    def test_merge_function_beats_explicit_strategy(self, resolver):
        resolver.set_strategy("collection", ResolutionStrategy.LOCAL_WINS)
        resolver.register_merge_function("collection", lambda local, remote: {"both": True})

        outcome = resolver.resolve(_descriptor({"a": 1}, {"a": 2}))

        assert outcome.strategy_used == ResolutionStrategy.MERGE

    def test_unregister_restores_fallback(self, resolver):
        resolver.register_merge_function("collection", lambda local, remote: {})
        resolver.unregister_merge_function("collection")

        assert resolver.has_merge_function("collection") is False
        outcome = resolver.resolve(_descriptor({"version": 1}, {"version": 2}))
        assert outcome.strategy_used == ResolutionStrategy.REMOTE_WINS

    def test_resolution_is_deterministic(self, resolver):
        resolver.register_merge_function("impact", lambda local, remote: {"total": local["n"] + remote["n"]})
        descriptor = _descriptor({"n": 2}, {"n": 3}, entity_type="impact")

        outcomes = [resolver.resolve(descriptor, "impact") for _ in range(5)]

        assert all(o == outcomes[0] for o in outcomes)
        assert outcomes[0].resolved_data == {"total": 5}

    def test_entity_type_argument_overrides_descriptor(self, resolver):
        resolver.register_merge_function("order", lambda local, remote: "merged")
        outcome = resolver.resolve(_descriptor({"a": 1}, {"a": 2}, entity_type="collection"), "order")
        assert outcome.resolved_data == "merged"


# ===== Deletion Tests =====

class TestDeletions:
    """Tests for records deleted on one or both sides"""

    def test_both_deleted(self, resolver):
        descriptor = _descriptor(None, None)
        outcome = resolver.resolve(descriptor)

        assert descriptor.conflict_type == ConflictType.BOTH_DELETED
        assert outcome.should_delete is True
        assert outcome.resolved_data is None

    def test_local_deleted_remote_modified_keeps_remote(self, resolver):
        outcome = resolver.resolve(_descriptor(None, {"name": "Remote"}))
        assert outcome.should_delete is False
        assert outcome.resolved_data == {"name": "Remote"}

    def test_remote_deleted_local_modified_keeps_local(self, resolver):
        outcome = resolver.resolve(_descriptor({"name": "Local"}, None))
        assert outcome.should_delete is False
        assert outcome.strategy_used == ResolutionStrategy.LOCAL_WINS

    def test_remote_deleted_with_remote_wins_strategy_deletes(self, resolver):
        resolver.set_strategy("collection", ResolutionStrategy.REMOTE_WINS)
        outcome = resolver.resolve(_descriptor({"name": "Local"}, None))
        assert outcome.should_delete is True

    def test_deletion_skips_merge_function(self, resolver):
        resolver.register_merge_function("collection", lambda local, remote: {"merged": True})
        outcome = resolver.resolve(_descriptor(None, {"name": "Remote"}))
        assert outcome.resolved_data == {"name": "Remote"}


# ===== Strategy Tests =====

class TestEntityStrategies:
    """Tests for per-type strategies"""

    def test_default_strategies(self):
        resolver = ConflictResolver(entity_strategies=DEFAULT_ENTITY_STRATEGIES)

        user = resolver.resolve(_descriptor({"name": "L", "version": 5}, {"name": "R", "version": 1}, "user"))
        feedback = resolver.resolve(_descriptor({"text": "L", "version": 1}, {"text": "R", "version": 5}, "feedback"))

        assert user.resolved_data["name"] == "R"
        assert feedback.resolved_data["text"] == "L"
        assert resolver.strategy_for("collection") == ResolutionStrategy.LATEST_WINS

    def test_manual_strategy_flags_outcome(self, resolver):
        resolver.set_strategy(EntityType.ORDER, ResolutionStrategy.MANUAL)
        outcome = resolver.resolve(_descriptor({"total": 1}, {"total": 2}, "order"))

        assert outcome.needs_manual_resolution is True
        assert outcome.strategy_used == ResolutionStrategy.MANUAL
        assert outcome.resolved_data == {"total": 2}

    def test_merge_strategy_without_function_falls_back(self, resolver):
        resolver.set_strategy("collection", ResolutionStrategy.MERGE)
        outcome = resolver.resolve(_descriptor({"version": 4}, {"version": 3}))
        assert outcome.strategy_used == ResolutionStrategy.LOCAL_WINS


# ===== Field-level Merge Tests =====

class TestFieldLevelMerge:
    """Tests for per-field merge rules"""

    def test_field_rules_applied(self, resolver):
        resolver.register_field_strategies("collection", {
            "name": FieldMergeStrategy.LOCAL_WINS,
            "notes": FieldMergeStrategy.CONCATENATE,
            "weight": FieldMergeStrategy.NUMERIC_ADD,
            "tags": (FieldMergeStrategy.CUSTOM, lambda local, remote: sorted(set(local) | set(remote))),
        })

        outcome = resolver.resolve(_descriptor(
            {"name": "Mine", "notes": "bottle", "weight": 2, "tags": ["pet"], "localOnly": 1},
            {"name": "Theirs", "notes": "can", "weight": 3, "tags": ["alu"], "status": "verified"},
        ))

        data = outcome.resolved_data
        assert outcome.strategy_used == ResolutionStrategy.MERGE
        assert data["name"] == "Mine"
        assert data["notes"] == "can | bottle"
        assert data["weight"] == 5
        assert data["tags"] == ["alu", "pet"]
        assert data["localOnly"] == 1
        assert data["status"] == "verified"
        assert {c.field for c in outcome.field_conflicts} == {"name", "notes", "weight", "tags"}

    def test_unlisted_conflicting_field_goes_to_remote(self, resolver):
        resolver.register_field_strategies("collection", {"name": FieldMergeStrategy.LOCAL_WINS})
        outcome = resolver.resolve(_descriptor({"name": "L", "count": 1}, {"name": "R", "count": 2}))
        assert outcome.resolved_data == {"name": "L", "count": 2}

    def test_latest_wins_field_follows_version(self, resolver):
        resolver.register_field_strategies("collection", {"name": FieldMergeStrategy.LATEST_WINS})
        outcome = resolver.resolve(_descriptor(
            {"name": "L", "version": 3},
            {"name": "R", "version": 2},
        ))
        assert outcome.resolved_data["name"] == "L"

    def test_numeric_add_ignores_non_numbers(self, resolver):
        resolver.register_field_strategies("collection", {"weight": FieldMergeStrategy.NUMERIC_ADD})
        outcome = resolver.resolve(_descriptor({"weight": True}, {"weight": 3}))
        assert outcome.resolved_data["weight"] == 3

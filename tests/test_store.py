"""Tests for the identifier map store."""

import json
from dataclasses import replace

import pytest

from driftguard.errors import ConflictError, IdentifierMapIOError
from driftguard.models import PreservationStrategy
from driftguard.store import identifier_map_from_dict, identifier_map_to_dict


def test_generate_returns_empty_map_with_defaults(store):
    identifier_map = store.generate("TestStack", "dev")

    assert identifier_map.stack_name == "TestStack"
    assert identifier_map.environment == "dev"
    assert identifier_map.version == "1.0.0"
    assert identifier_map.mappings == {}
    assert identifier_map.created_at == identifier_map.updated_at
    assert identifier_map.created_at.tzinfo is not None
    cfg = identifier_map.drift_avoidance_config
    assert cfg.enable_deterministic_naming
    assert cfg.preserve_resource_order
    assert cfg.validate_before_apply


def test_validate_accepts_well_formed_map(store, make_map, make_mapping):
    identifier_map = make_map(
        make_mapping("ApiFn1", "ProdApiFn"),
        make_mapping("Table1", "ProdTable", "AWS::DynamoDB::Table"),
    )
    result = store.validate(identifier_map)
    assert result.valid
    assert result.errors == []


def test_validate_flags_duplicate_original_id(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A1", "X"), make_mapping("B1", "X"))

    result = store.validate(identifier_map)

    assert not result.valid
    assert any("'X'" in error for error in result.errors)


def test_detect_conflicts_names_original_and_new_ids(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("B1", "X"), make_mapping("A1", "X"))

    conflicts = store.detect_conflicts(identifier_map)

    assert conflicts == ["Conflict: original ID 'X' is claimed by multiple new IDs: A1, B1"]


def test_detect_conflicts_flags_chained_mappings(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A", "B"), make_mapping("B", "C"))

    conflicts = store.detect_conflicts(identifier_map)

    assert len(conflicts) == 1
    assert "'B'" in conflicts[0]
    assert "A" in conflicts[0]


def test_detect_conflicts_allows_identity_mapping(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("Same", "Same"), make_mapping("Other1", "Other"))
    assert store.detect_conflicts(identifier_map) == []


def test_validate_flags_key_mismatch(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A1", "ProdA"))
    identifier_map = replace(identifier_map, mappings={"Wrong": identifier_map.mappings["A1"]})

    result = store.validate(identifier_map)

    assert not result.valid
    assert "Mapping key mismatch for Wrong: entry declares A1" in result.errors


def test_validate_flags_empty_fields(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A1", ""))
    result = store.validate(identifier_map)
    assert not result.valid
    assert "Invalid mapping entry for A1" in result.errors


def test_validate_flags_missing_stack_name(store, make_map):
    result = store.validate(make_map(stack_name=""))
    assert not result.valid
    assert "Missing stackName field" in result.errors


def test_save_then_load_round_trips(store, make_map, make_mapping, tmp_path):
    identifier_map = make_map(
        make_mapping("ApiFn1", "ProdApiFn"),
        make_mapping(
            "Table1",
            "ProdTable",
            "AWS::DynamoDB::Table",
            preservation_strategy=PreservationStrategy.HASH_BASED,
            metadata=None,
        ),
        preserve_resource_order=False,
    )
    path = tmp_path / "maps" / "logical-id-map.json"

    store.save(identifier_map, path)

    assert store.load(path) == identifier_map


def test_round_trip_without_environment(store, make_map, tmp_path):
    identifier_map = make_map(environment=None)
    path = tmp_path / "map.json"
    store.save(identifier_map, path)
    assert "environment" not in json.loads(path.read_text())
    assert store.load(path) == identifier_map


def test_repeated_saves_are_byte_identical(store, make_map, make_mapping, tmp_path):
    identifier_map = make_map(make_mapping("B1", "ProdB"), make_mapping("A1", "ProdA"))
    first = tmp_path / "first.json"
    second = tmp_path / "second.json"

    store.save(identifier_map, first)
    store.save(store.load(first), second)

    assert first.read_bytes() == second.read_bytes()


def test_save_uses_sorted_keys(store, make_map, make_mapping, tmp_path):
    path = tmp_path / "map.json"
    store.save(make_map(make_mapping("B1", "ProdB"), make_mapping("A1", "ProdA")), path)

    text = path.read_text()
    assert text.index('"A1"') < text.index('"B1"')
    assert text.endswith("}\n")


def test_save_unwritable_path_raises(store, make_map, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")

    with pytest.raises(IdentifierMapIOError):
        store.save(make_map(), blocker / "map.json")


def test_load_missing_file_returns_none(store, tmp_path):
    assert store.load(tmp_path / "missing.json") is None


def test_load_invalid_json_returns_none(store, tmp_path):
    path = tmp_path / "map.json"
    path.write_text("{not json")
    assert store.load(path) is None


def test_load_schema_failure_returns_none(store, tmp_path):
    path = tmp_path / "map.json"
    path.write_text(json.dumps({"version": "1.0.0", "mappings": {}}))
    assert store.load(path) is None


def test_load_unsupported_version_returns_none(store, make_map, tmp_path):
    document = identifier_map_to_dict(make_map())
    document["version"] = "2.0.0"
    path = tmp_path / "map.json"
    path.write_text(json.dumps(document))
    assert store.load(path) is None


def test_load_unknown_strategy_returns_none(store, make_map, make_mapping, tmp_path):
    document = identifier_map_to_dict(make_map(make_mapping("A1", "ProdA")))
    document["mappings"]["A1"]["preservationStrategy"] = "telepathy"
    path = tmp_path / "map.json"
    path.write_text(json.dumps(document))
    assert store.load(path) is None


def test_load_ignores_unknown_keys(store, make_map, make_mapping, tmp_path):
    identifier_map = make_map(make_mapping("A1", "ProdA"))
    document = identifier_map_to_dict(identifier_map)
    document["futureField"] = {"anything": True}
    document["mappings"]["A1"]["notes"] = "added by a newer release"
    path = tmp_path / "map.json"
    path.write_text(json.dumps(document))

    assert store.load(path) == identifier_map


def test_load_keeps_conflicted_map(store, make_map, make_mapping, tmp_path):
    path = tmp_path / "map.json"
    store.save(make_map(make_mapping("A1", "X"), make_mapping("B1", "X")), path)

    loaded = store.load(path)

    assert loaded is not None
    assert not store.validate(loaded).valid


def test_from_dict_accepts_original_document_shape():
    identifier_map = identifier_map_from_dict(
        {
            "version": "1.0.0",
            "stackName": "TestStack",
            "createdAt": "2026-02-25T13:30:00.000Z",
            "updatedAt": "2026-02-25T13:30:00.000Z",
            "mappings": {
                "ProductionDatabase21B247DA": {
                    "originalId": "ProdDatabaseInstanceABC123",
                    "newId": "ProductionDatabase21B247DA",
                    "resourceType": "AWS::RDS::DBInstance",
                    "componentName": "database",
                    "componentType": "rds-postgres",
                    "preservationStrategy": "exact-match",
                    "metadata": {
                        "createdAt": "2026-02-25T13:30:00.000Z",
                        "updatedAt": "2026-02-25T13:30:00.000Z",
                    },
                }
            },
            "driftAvoidanceConfig": {
                "enableDeterministicNaming": True,
                "preserveResourceOrder": True,
                "validateBeforeApply": True,
            },
        }
    )

    mapping = identifier_map.mappings["ProductionDatabase21B247DA"]
    assert mapping.original_id == "ProdDatabaseInstanceABC123"
    assert identifier_map.environment is None


def test_add_mapping_returns_new_map(store, make_map, make_mapping):
    identifier_map = make_map()
    mapping = make_mapping("ApiFn1", "ProdApiFn", metadata=None)

    updated = store.add_mapping(identifier_map, mapping)

    assert identifier_map.mappings == {}
    assert updated.mappings["ApiFn1"].original_id == "ProdApiFn"
    assert updated.mappings["ApiFn1"].metadata is not None
    assert updated.updated_at != identifier_map.updated_at
    assert updated.created_at == identifier_map.created_at


def test_add_mapping_replaces_same_new_id(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("ApiFn1", "ProdApiFn"))

    updated = store.add_mapping(identifier_map, make_mapping("ApiFn1", "OtherApiFn"))

    assert updated.mappings["ApiFn1"].original_id == "OtherApiFn"
    assert updated.mappings["ApiFn1"].metadata.created_at == (
        identifier_map.mappings["ApiFn1"].metadata.created_at
    )


def test_add_mapping_rejects_duplicate_original_id(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A1", "X"))

    with pytest.raises(ConflictError, match="'X'"):
        store.add_mapping(identifier_map, make_mapping("B1", "X"))


def test_add_mapping_rejects_original_id_that_is_another_new_id(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("B", "C"))

    with pytest.raises(ConflictError, match="original ID 'B' is the new ID of B -> C"):
        store.add_mapping(identifier_map, make_mapping("A", "B"))


def test_add_mapping_rejects_new_id_that_is_another_original_id(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A", "B"))

    with pytest.raises(ConflictError, match="new ID 'B' is the original ID of A -> B"):
        store.add_mapping(identifier_map, make_mapping("B", "C"))


def test_add_mapping_rejects_swap(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A", "B"))

    with pytest.raises(ConflictError):
        store.add_mapping(identifier_map, make_mapping("B", "A"))


def test_add_mapping_allows_identity_next_to_other_mappings(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A", "ProdA"))

    updated = store.add_mapping(identifier_map, make_mapping("B", "B"))

    assert store.detect_conflicts(updated) == []
    assert list(updated.mappings) == ["A", "B"]


def test_remove_mapping(store, make_map, make_mapping):
    identifier_map = make_map(make_mapping("A1", "ProdA"), make_mapping("B1", "ProdB"))

    updated = store.remove_mapping(identifier_map, "A1")

    assert list(updated.mappings) == ["B1"]
    assert list(identifier_map.mappings) == ["A1", "B1"]


def test_remove_missing_mapping_raises(store, make_map):
    with pytest.raises(KeyError):
        store.remove_mapping(make_map(), "Nope")

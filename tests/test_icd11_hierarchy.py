import logging

from app.clinical.icd11.classifier import Classification
from app.clinical.icd11.entity_store import EntityStore
from app.clinical.icd11.hierarchy import HierarchyResolver
from app.schemas.icd11 import Icd11Entity


def _store(*payloads):
    store = EntityStore()
    entities = {}
    for payload in payloads:
        entity = Icd11Entity.model_validate(payload)
        store.record_if_new(entity)
        entities[entity.key] = entity
    return store, entities


def test_resolves_nearest_levels_up_to_chapter():
    store, e = _store(
        {"@id": "u/ch", "code": "01", "classKind": "chapter"},
        {"@id": "u/b1", "classKind": "block", "parent": ["u/ch"]},
        {"@id": "u/b2", "classKind": "block", "parent": ["u/b1"]},
        {"@id": "u/cat", "code": "1A00", "classKind": "category", "parent": ["u/b2"]},
        {"@id": "u/dx", "code": "1A00.0", "classKind": "foundation", "parent": ["u/cat"]},
    )
    resolver = HierarchyResolver(store)

    assert resolver.classify(e["u/b1"]) is Classification.SECTION
    assert resolver.classify(e["u/b2"]) is Classification.SUBSECTION

    ancestors = resolver.resolve_ancestors(e["1A00.0"])
    assert ancestors.chapter is e["01"]
    assert ancestors.section is e["u/b1"]
    # The category is nearer than the depth-2 block, so it wins.
    assert ancestors.subsection is e["1A00"]
    assert ancestors.diagnosis is None
    assert ancestors.cycle_detected is False


def test_only_primary_parent_is_followed():
    store, e = _store(
        {"@id": "u/ch1", "code": "01", "classKind": "chapter"},
        {"@id": "u/ch2", "code": "02", "classKind": "chapter"},
        {"@id": "u/dx", "code": "1A00", "classKind": "foundation", "parent": ["u/ch2", "u/ch1"]},
    )
    ancestors = HierarchyResolver(store).resolve_ancestors(e["1A00"])
    assert ancestors.chapter is e["02"]


def test_nothing_is_resolved_above_a_chapter():
    store, e = _store(
        {"@id": "u/root", "code": "root", "classKind": "block"},
        {"@id": "u/ch", "code": "01", "classKind": "chapter", "parent": ["u/root"]},
        {"@id": "u/dx", "code": "1A00", "classKind": "foundation", "parent": ["u/ch"]},
    )
    ancestors = HierarchyResolver(store).resolve_ancestors(e["1A00"])
    assert ancestors.chapter is e["01"]
    assert ancestors.section is None


def test_unfetched_parent_leaves_levels_unset():
    store, e = _store({"@id": "u/dx", "code": "1A00.1", "classKind": "foundation", "parent": ["u/not-yet"]})
    ancestors = HierarchyResolver(store).resolve_ancestors(e["1A00.1"])
    assert ancestors.chapter is None
    assert ancestors.section is None
    assert ancestors.subsection is None
    assert ancestors.unresolved_parent == "u/not-yet"


def test_three_cycle_terminates_and_logs(caplog):
    store, e = _store(
        {"@id": "u/x", "code": "X", "classKind": "foundation", "parent": ["u/y"]},
        {"@id": "u/y", "code": "Y", "classKind": "category", "parent": ["u/z"]},
        {"@id": "u/z", "code": "Z", "classKind": "foundation", "parent": ["u/x"]},
    )
    with caplog.at_level(logging.WARNING, logger="app.clinical.icd11.hierarchy"):
        ancestors = HierarchyResolver(store).resolve_ancestors(e["X"])

    assert ancestors.cycle_detected is True
    assert ancestors.chapter is None
    assert ancestors.subsection is e["Y"]
    assert ancestors.diagnosis is e["Z"]
    assert "Cycle" in caplog.text


def test_block_depth_survives_block_cycle():
    store, e = _store(
        {"@id": "u/a", "classKind": "block", "parent": ["u/b"]},
        {"@id": "u/b", "classKind": "block", "parent": ["u/a"]},
    )
    resolver = HierarchyResolver(store)
    assert resolver.block_depth(e["u/a"]) == 2
    assert resolver.classify(e["u/a"]) is Classification.SUBSECTION


def test_linearization_root_is_not_an_ancestor():
    store, e = _store(
        {"@id": "u/root", "title": "ICD-11 for Mortality and Morbidity Statistics"},
        {"@id": "u/dx", "code": "XX", "classKind": "foundation", "parent": ["u/root"]},
    )
    ancestors = HierarchyResolver(store).resolve_ancestors(e["XX"])
    assert ancestors.diagnosis is None
    assert ancestors.unresolved_parent is None

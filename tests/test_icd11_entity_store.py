from app.clinical.icd11.entity_store import EntityStore
from app.schemas.icd11 import Icd11Entity


def test_record_if_new_is_true_once_per_code_across_aliases():
    store = EntityStore()
    first = Icd11Entity.model_validate({"code": "1A00", "@id": "http://x/1", "source_url": "http://x/1"})
    alias = Icd11Entity.model_validate({"code": "1A00", "@id": "http://x/1", "source_url": "http://x/alias"})

    assert store.record_if_new(first) is True
    assert store.record_if_new(alias) is False
    assert store.record_if_new(first) is False
    assert len(store) == 1

    assert store.lookup_by_code("1A00") is first
    assert store.lookup_by_url("http://x/1") is first
    # The alias URL resolves to the first-seen entity.
    assert store.lookup_by_url("http://x/alias") is first


def test_codeless_entities_are_keyed_by_url():
    store = EntityStore()
    block_a = Icd11Entity.model_validate({"@id": "http://x/a", "classKind": "block"})
    block_b = Icd11Entity.model_validate({"@id": "http://x/b", "classKind": "block"})

    assert store.record_if_new(block_a) is True
    assert store.record_if_new(block_b) is True
    assert store.lookup_by_code("http://x/a") is None
    assert store.lookup_by_url("http://x/b") is block_b
    assert store.lookup_by_url("http://x/missing") is None


def test_entity_without_identity_is_ignored():
    store = EntityStore()
    assert store.record_if_new(Icd11Entity.model_validate({"title": "nothing"})) is False
    assert len(store) == 0

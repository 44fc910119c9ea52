import json
import os

import pytest

from key_reconciler.catalog import JsonCatalog, delete_from_tree, flatten_tree, resolve_key_parts
from key_reconciler.models import ConfigurationError, PendingWrite


def test_flatten_tree_uses_dot_keypaths():
    tree = {"greeting": {"hello": "Hi", "nested": {"deep": "Deep"}}, "list": ["a", "b"], "empty": {}}

    assert flatten_tree(tree) == {
        "greeting.hello": "Hi",
        "greeting.nested.deep": "Deep",
        "list": ["a", "b"],
    }


def test_resolve_key_parts_prefers_existing_keys():
    tree = {"errors.404": "Not found", "menu": {"open": "Open"}}

    assert resolve_key_parts(tree, "errors.404") == ("errors.404",)
    assert resolve_key_parts(tree, "menu.close") == ("menu", "close")
    assert resolve_key_parts(tree, "errors.500") == ("errors", "500")


def test_delete_from_tree_prunes_only_emptied_objects():
    tree = {"legacy": {"banner": "Old"}, "n": {}}

    assert delete_from_tree(tree, ("legacy", "banner")) is True
    assert delete_from_tree(tree, ("legacy", "banner")) is False
    assert tree == {"n": {}}


@pytest.mark.asyncio
async def test_write_keeps_untouched_keys_as_read(make_catalog):
    catalog = make_catalog({"de/frontend.json": {"errors.404": "Nicht gefunden", "n": {}, "menu": {"open": "Öffnen"}}})
    target = catalog.files_for_locale("de")[0]

    await catalog.write([
        PendingWrite(keypath="new", locale="de", filepath=target),
        PendingWrite(keypath="menu.close", locale="de", filepath=target, value="Schließen"),
    ])

    with open(target, "r", encoding="utf-8") as f:
        assert json.load(f) == {
            "errors.404": "Nicht gefunden",
            "n": {},
            "menu": {"open": "Öffnen", "close": "Schließen"},
            "new": "",
        }
    assert catalog.get_record("errors.404", "de").value == "Nicht gefunden"

    await catalog.delete(catalog.get_records("errors.404"))
    with open(target, "r", encoding="utf-8") as f:
        assert json.load(f) == {"n": {}, "menu": {"open": "Öffnen", "close": "Schließen"}, "new": ""}


def test_load_requires_existing_root(tmp_path):
    with pytest.raises(ConfigurationError):
        JsonCatalog.load(str(tmp_path / "nope"))


def test_load_indexes_records_per_locale_and_file(make_catalog):
    catalog = make_catalog({
        "en/frontend.json": {"a": "A", "shared": "S-front"},
        "en/bot.json": {"shared": "S-bot"},
        "fr/frontend.json": {"a": "A-fr"},
    })

    assert catalog.locales == ["en", "fr"]
    assert catalog.keys == ["a", "shared"]
    assert len(catalog.get_records("shared", "en")) == 2
    assert len(catalog.get_records("a")) == 2
    assert catalog.get_record("a", "fr").value == "A-fr"
    assert catalog.get_record("a", "de") is None
    assert [os.path.basename(p) for p in catalog.files_for_locale("en")] == ["bot.json", "frontend.json"]


def test_load_can_be_limited_to_locales(make_catalog):
    catalog = make_catalog({"en/frontend.json": {"a": "A"}, "fr/frontend.json": {"a": "A-fr"}}, locales=["en"])
    assert catalog.locales == ["en"]


def test_invalid_json_file_is_skipped(tmp_path):
    locale_dir = tmp_path / "en"
    locale_dir.mkdir()
    (locale_dir / "broken.json").write_text("{oops", encoding="utf-8")
    (locale_dir / "frontend.json").write_text(json.dumps({"a": "A"}), encoding="utf-8")

    catalog = JsonCatalog.load(str(tmp_path))

    assert catalog.keys == ["a"]


@pytest.mark.asyncio
async def test_write_persists_pending_record(make_catalog):
    catalog = make_catalog({"en/frontend.json": {"greeting": {"hello": "Hi"}}, "fr/frontend.json": {}})
    target = catalog.files_for_locale("fr")[0]

    await catalog.write([PendingWrite(keypath="greeting.hello", locale="fr", filepath=target)])

    record = catalog.get_record("greeting.hello", "fr")
    assert record is not None and record.value == ""
    with open(target, "r", encoding="utf-8") as f:
        assert json.load(f) == {"greeting": {"hello": ""}}

    await catalog.set_value("greeting.hello", "fr", "Salut", target)
    with open(target, "r", encoding="utf-8") as f:
        assert json.load(f) == {"greeting": {"hello": "Salut"}}


@pytest.mark.asyncio
async def test_delete_removes_records_and_saves_each_file_once(make_catalog):
    catalog = make_catalog({
        "en/frontend.json": {"legacy": {"banner": "Old"}, "keep": "Keep"},
        "fr/frontend.json": {"legacy": {"banner": "Vieux"}},
    })

    removed = await catalog.delete(catalog.get_records("legacy.banner"))

    assert removed == 2
    assert catalog.keys == ["keep"]
    fr_file = catalog.files_for_locale("fr")[0]
    with open(fr_file, "r", encoding="utf-8") as f:
        assert json.load(f) == {}

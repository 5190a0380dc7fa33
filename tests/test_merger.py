import pytest

from openapi_weaver.errors import MergeConflictError
from openapi_weaver.merger import deep_merge, merge_layers


class TestDeepMerge:
    def test_maps_merge_recursively(self):
        base = {"info": {"title": "API", "version": "1"}}
        overlay = {"info": {"description": "Docs"}, "servers": []}
        assert deep_merge(base, overlay) == {
            "info": {"title": "API", "version": "1", "description": "Docs"},
            "servers": [],
        }

    def test_sequences_concatenate(self):
        assert deep_merge({"tags": ["a"]}, {"tags": ["b", "c"]}) == {"tags": ["a", "b", "c"]}

    def test_overlay_wins_scalars_by_default(self):
        assert deep_merge({"title": "old"}, {"title": "new"}) == {"title": "new"}

    def test_local_wins_when_requested(self):
        assert deep_merge({"title": "local"}, {"title": "fragment"}, overlay_wins=False) == {"title": "local"}

    def test_map_against_sequence_raises(self):
        with pytest.raises(MergeConflictError) as exc:
            deep_merge({"paths": {"a": {"b": []}}}, {"paths": {"a": {"b": {}}}})
        assert "/paths/a/b" in exc.value.message

    def test_inputs_are_not_modified(self):
        base = {"a": {"b": [1]}}
        overlay = {"a": {"b": [2], "c": 3}}
        deep_merge(base, overlay)
        assert base == {"a": {"b": [1]}}
        assert overlay == {"a": {"b": [2], "c": 3}}

    def test_result_does_not_alias_overlay(self):
        overlay = {"a": {"b": 1}}
        merged = deep_merge({}, overlay)
        merged["a"]["b"] = 2
        assert overlay["a"]["b"] == 1


class TestMergeLayers:
    def test_later_layer_wins(self):
        merged = merge_layers({"info": {"title": "generated"}}, [{"info": {"title": "first"}}, {"info": {"title": "second"}}])
        assert merged["info"]["title"] == "second"

    def test_maps_are_idempotent(self):
        base = {"info": {"title": "API"}, "paths": {"/a": {"get": {}}}}
        layer = {"info": {"title": "Override", "x-logo": "logo.png"}}
        assert merge_layers(base, [layer, layer]) == merge_layers(base, [layer])

    def test_sequences_are_not_idempotent(self):
        base = {"tags": [{"name": "A"}]}
        layer = {"tags": [{"name": "B"}]}
        assert merge_layers(base, [layer, layer])["tags"] == [{"name": "A"}, {"name": "B"}, {"name": "B"}]

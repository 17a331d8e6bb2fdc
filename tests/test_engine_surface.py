"""Tests for the FormEngine facade: arrays, listeners, store delivery, config, lifecycle."""
import logging

import pytest

from formstate import (
    FieldArray,
    FieldDefinition,
    FormEngine,
    FormEngineConfig,
    FormSnapshot,
    RequiredValueError,
    StateStore,
    ValidationMode,
    config_context,
    get_default_config,
)


class TestArrays:

    @pytest.fixture
    def engine(self, make_engine):
        return make_engine([FieldDefinition('tags', initial_value=['a', 'b', 'c'])])

    def test_add_remove_replace(self, engine):
        engine.add_array_item('tags', 'd')
        assert engine.get_value('tags') == ['a', 'b', 'c', 'd']

        engine.remove_array_item_at('tags', 0)
        assert engine.get_value('tags') == ['b', 'c', 'd']

        engine.replace_array_item('tags', 1, 'x')
        assert engine.get_value('tags') == ['b', 'x', 'd']

    def test_move(self, engine):
        engine.move_array_item('tags', 0, 2)
        assert engine.get_value('tags') == ['b', 'c', 'a']

    def test_bad_index_is_noop(self, engine, recorder):
        rec = recorder(engine)
        assert engine.remove_array_item_at('tags', 5) is None
        assert engine.replace_array_item('tags', -1, 'x') is None
        assert engine.move_array_item('tags', 0, 3) is None
        assert len(rec) == 0

    def test_clear_and_dirty(self, engine):
        engine.clear_array('tags')
        assert engine.get_value('tags') == []
        assert engine.snapshot.is_field_dirty('tags')

    def test_initial_list_not_mutated(self, engine):
        engine.add_array_item('tags', 'd')
        assert engine.initial_values['tags'] == ['a', 'b', 'c']

    def test_field_array_keys(self, make_engine):
        tags = FieldArray('tags')
        engine = make_engine([
            FieldDefinition(tags.item(0), initial_value='math'),
            FieldDefinition(tags.with_prefix('user').item(0), initial_value='x'),
        ])
        assert engine.to_nested_map() == {'tags': ['math'], 'user': {'tags': ['x']}}
        assert str(tags) == 'tags'

    def test_field_array_accepted_as_key(self, make_engine):
        tags = FieldArray('tags')
        engine = make_engine([FieldDefinition('tags', initial_value=[])])
        engine.add_array_item(tags, 1)
        assert engine.get_value(tags) == [1]


class TestFieldListeners:

    def test_called_on_value_change_only(self, profile_engine):
        seen = []
        profile_engine.add_field_listener('name', seen.append)

        profile_engine.set_value('name', 'Ada')
        profile_engine.set_value('age', 3)
        profile_engine.mark_as_touched('name')
        profile_engine.set_value('name', 'Ada')

        assert seen == ['Ada']

    def test_called_after_undo(self, profile_engine):
        seen = []
        profile_engine.set_value('name', 'Ada')
        profile_engine.add_field_listener('name', seen.append)

        profile_engine.undo()

        assert seen == ['']

    def test_remove_and_failing_listener(self, profile_engine, caplog):
        def broken(value):
            raise RuntimeError('listener bug')

        seen = []
        profile_engine.add_field_listener('name', broken)
        profile_engine.add_field_listener('name', seen.append)

        with caplog.at_level(logging.WARNING, logger='formstate.engine'):
            profile_engine.set_value('name', 'a')
        assert seen == ['a']
        assert any('listener bug' in r.getMessage() for r in caplog.records)

        profile_engine.remove_field_listener('name', seen.append)
        profile_engine.set_value('name', 'b')
        assert seen == ['a']


class TestStateStore:

    def test_commits_from_listener_delivered_in_order(self):
        store = StateStore(FormSnapshot())
        first = FormSnapshot(reset_count=1)
        second = FormSnapshot(reset_count=2)
        seen_a, seen_b = [], []

        def listener_a(snapshot):
            seen_a.append(snapshot.reset_count)
            if snapshot is first:
                store.commit(second)

        store.subscribe(listener_a)
        store.subscribe(lambda s: seen_b.append(s.reset_count))

        store.commit(first)

        assert seen_a == [1, 2]
        assert seen_b == [1, 2]
        assert store.snapshot is second

    def test_unsubscribe_and_dispose(self):
        store = StateStore(FormSnapshot())
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        store.commit(FormSnapshot(reset_count=1))
        assert seen == []

        store.dispose()
        store.commit(FormSnapshot(reset_count=2))
        assert store.snapshot.reset_count == 1


class TestAccessors:

    def test_require_value(self, make_engine):
        engine = make_engine([FieldDefinition('name', initial_value=None)])
        with pytest.raises(RequiredValueError):
            engine.require_value('name')
        with pytest.raises(LookupError):
            engine.require_value('missing')

        engine.set_value('name', 'Ada')
        assert engine.require_value('name') == 'Ada'

    def test_values_are_copies(self, profile_engine):
        values = profile_engine.values
        values['name'] = 'changed'
        assert profile_engine.get_value('name') == ''


class TestConfig:

    def test_invalid_config_rejected(self):
        with pytest.raises(ValueError):
            FormEngineConfig(history_limit=0)
        with pytest.raises(ValueError):
            FormEngineConfig(default_debounce=-1)
        with pytest.raises(ValueError):
            FormEngineConfig(validation_mode=ValidationMode.INHERIT)

    def test_config_context_sets_engine_default(self):
        custom = FormEngineConfig(history_limit=7)
        with config_context(custom):
            assert get_default_config() is custom
            engine = FormEngine(fields=[FieldDefinition('x', initial_value=0)])
        assert get_default_config() is not custom
        assert engine.config is custom
        assert engine.history.limit == 7
        engine.dispose()


class TestDispose:

    def test_mutators_ignored_after_dispose(self, profile_engine, recorder):
        rec = recorder(profile_engine)
        profile_engine.dispose()

        profile_engine.set_value('name', 'Ada')
        profile_engine.reset()

        assert len(rec) == 0
        assert profile_engine.get_value('name') == ''
        assert profile_engine.is_disposed

    def test_context_manager_disposes(self):
        with FormEngine(fields=[FieldDefinition('x', initial_value=0)]) as engine:
            engine.set_value('x', 1)
        assert engine.is_disposed

"""Tests for persistence adapters and engine save/restore."""
import asyncio
import json
import logging

import pytest

from formstate import (
    FieldDefinition,
    FormPersistence,
    InMemoryFormPersistence,
    JsonFilePersistence,
    Validators,
)


async def _settle():
    """Let fire-and-forget save tasks run."""
    for _ in range(3):
        await asyncio.sleep(0)


class TestInMemoryPersistence:

    @pytest.mark.asyncio
    async def test_round_trip_is_isolated(self):
        store = InMemoryFormPersistence()
        values = {'tags': ['a'], 'address': {'city': 'Paris'}}

        await store.save('signup', values)
        values['tags'].append('b')
        loaded = await store.load('signup')
        loaded['address']['city'] = 'Lyon'

        assert await store.load('signup') == {'tags': ['a'], 'address': {'city': 'Paris'}}

    @pytest.mark.asyncio
    async def test_clear(self):
        store = InMemoryFormPersistence()
        await store.save('signup', {'x': 1})
        await store.clear('signup')
        assert await store.load('signup') is None
        assert 'signup' not in store


class TestJsonFilePersistence:

    @pytest.mark.asyncio
    async def test_save_load_clear(self, tmp_path):
        store = JsonFilePersistence(tmp_path / 'forms')

        assert await store.load('signup') is None
        await store.save('signup', {'name': 'Ada', 'tags': ['x']})

        path = store.path_for('signup')
        assert json.loads(path.read_text()) == {'name': 'Ada', 'tags': ['x']}
        assert await store.load('signup') == {'name': 'Ada', 'tags': ['x']}

        await store.clear('signup')
        assert not path.exists()

    def test_form_id_sanitized(self, tmp_path):
        store = JsonFilePersistence(tmp_path)
        assert store.path_for('../etc/passwd').parent == tmp_path


class TestEnginePersistence:

    @pytest.mark.asyncio
    async def test_values_saved_after_change(self, make_engine):
        store = InMemoryFormPersistence()
        engine = make_engine([FieldDefinition('name', initial_value='')], form_id='f', persistence=store)
        await _settle()

        engine.set_value('name', 'Ada')
        await _settle()

        assert await store.load('f') == {'name': 'Ada'}

    @pytest.mark.asyncio
    async def test_restore_on_construction(self, make_engine, check_counters):
        store = InMemoryFormPersistence()
        await store.save('f', {'name': 'Ada', 'email': 'bad', 'gone': 1})

        engine = make_engine([
            FieldDefinition('name', initial_value=''),
            FieldDefinition('email', initial_value='', validator=Validators.string().email().build()),
        ], form_id='f', persistence=store)
        await _settle()

        assert engine.values == {'name': 'Ada', 'email': 'bad'}
        assert engine.snapshot.is_field_dirty('name')
        assert engine.errors == {'email': 'Invalid email address'}
        assert not engine.can_undo
        check_counters(engine.snapshot)

    @pytest.mark.asyncio
    async def test_clear_persisted_state(self, make_engine):
        store = InMemoryFormPersistence()
        engine = make_engine([FieldDefinition('name', initial_value='')], form_id='f', persistence=store)
        engine.set_value('name', 'Ada')
        await _settle()

        await engine.clear_persisted_state()

        assert await store.load('f') is None

    @pytest.mark.asyncio
    async def test_save_failure_logged_not_raised(self, make_engine, caplog):
        class BrokenPersistence(FormPersistence):
            async def save(self, form_id, values):
                raise OSError('disk full')

            async def load(self, form_id):
                return None

            async def clear(self, form_id):
                pass

        engine = make_engine([FieldDefinition('name', initial_value='')], form_id='f',
                             persistence=BrokenPersistence())
        with caplog.at_level(logging.WARNING, logger='formstate.engine'):
            engine.set_value('name', 'Ada')
            await _settle()

        assert engine.get_value('name') == 'Ada'
        assert any('disk full' in record.getMessage() for record in caplog.records)

    def test_no_loop_skips_save(self, make_engine):
        store = InMemoryFormPersistence()
        engine = make_engine([FieldDefinition('name', initial_value='')], form_id='f', persistence=store)
        engine.set_value('name', 'Ada')
        assert 'f' not in store

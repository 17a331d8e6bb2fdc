"""Tests for synchronous validation: faults, messages, modes, cross-field rules."""
import asyncio
import logging

import pytest

from formstate import (
    DefaultFormMessages,
    FieldDefinition,
    FormEngineConfig,
    ValidationKeys,
    ValidationMode,
    ValidationResult,
    Validators,
)


def _greater_than_a(value, view):
    return None if value > view.value('a') else 'b must be greater than a'


class TestCrossFieldExample:
    """b depends on a and must stay greater than it."""

    def test_dependent_revalidated_without_touching_it(self, make_engine, check_counters):
        """b revalidates when a changes, though b itself was not written."""
        engine = make_engine([
            FieldDefinition('a', initial_value=0),
            FieldDefinition('b', initial_value=0, depends_on=['a'], cross_field_validator=_greater_than_a),
        ])

        engine.set_value('a', 5)
        engine.set_value('b', 3)
        assert not engine.snapshot.validation('b').is_valid

        engine.set_value('b', 10)
        assert engine.snapshot.validation('b').is_valid

        engine.set_value('a', 20)
        assert not engine.snapshot.validation('b').is_valid
        assert engine.errors == {'b': 'b must be greater than a'}
        check_counters(engine.snapshot)


class TestValidatorFaults:
    """Validator exceptions become INVALID results and never abort a batch."""

    def test_validator_exception(self, make_engine):
        """A raising validator produces an invalid result."""
        def explode(value):
            raise ValueError("bad input")

        engine = make_engine([
            FieldDefinition('x', initial_value=0, validator=explode),
            FieldDefinition('y', initial_value=0),
        ])
        result = engine.set_values({'x': 1, 'y': 2})

        assert result.success
        assert engine.snapshot.validation('x').message == "Validation error: bad input"
        assert engine.get_value('y') == 2

    def test_cross_validator_exception(self, make_engine):
        """A raising cross-field validator produces an invalid result."""
        def explode(value, view):
            raise KeyError('other')

        engine = make_engine([FieldDefinition('x', initial_value=0, cross_field_validator=explode)])

        assert engine.snapshot.validation('x').message.startswith("Cross-validation error:")

    def test_cross_validator_skipped_when_field_validator_fails(self, make_engine):
        """Cross-field validation only runs after the field validator passes."""
        calls = []
        engine = make_engine([
            FieldDefinition('x', initial_value='',
                            validator=Validators.string().required().build(),
                            cross_field_validator=lambda v, view: calls.append(v)),
        ])
        assert calls == []
        engine.set_value('x', 'ok')
        assert calls == ['ok']

    def test_fractional_length_parameter(self, make_engine, check_counters):
        """A non-integer min_length still resolves to a message."""
        engine = make_engine([
            FieldDefinition('name', initial_value='', validator=Validators.string().min_length(2.5).build()),
        ])

        engine.set_value('name', 'a')

        assert engine.errors == {'name': "Minimum length is 2.5 characters"}
        check_counters(engine.snapshot)

    @pytest.mark.asyncio
    async def test_raising_message_formatter(self, make_engine, check_counters, caplog):
        """A formatter fault keeps the raw token and does not strand async work."""
        class BrokenMessages(DefaultFormMessages):
            def required(self, label):
                raise LookupError('no translation')

        async def check(value):
            await asyncio.sleep(0.01)
            return None

        engine = make_engine([
            FieldDefinition('u', initial_value='', async_validator=check),
            FieldDefinition('n', initial_value='x', validator=Validators.string().required().build()),
        ], messages=BrokenMessages())
        engine.set_value('u', 'x')
        assert engine.snapshot.validation('u').is_validating

        with caplog.at_level(logging.WARNING, logger='formstate.validation'):
            result = engine.set_values({'u': 'y', 'n': ''})

        assert result.success
        assert engine.errors == {'n': ValidationKeys.REQUIRED}
        assert any('no translation' in r.getMessage() for r in caplog.records)

        await engine.wait_for_validation()
        assert engine.snapshot.validation('u').is_valid
        assert engine.snapshot.pending_count == 0
        check_counters(engine.snapshot)


class TestMessages:

    def test_tokens_resolved_with_label(self, make_engine):
        """Message tokens resolve with the field label."""
        engine = make_engine([
            FieldDefinition('email', initial_value='', label='Email',
                            validator=Validators.string().required().email().build()),
            FieldDefinition('pin', initial_value='', validator=Validators.string().min_length(4).build()),
        ])
        assert engine.errors['email'] == "Email is required"

        engine.set_values({'email': 'nope', 'pin': '12'})

        assert engine.errors == {
            'email': "Invalid email address",
            'pin': "Minimum length is 4 characters",
        }
        assert sorted(engine.error_messages) == sorted(engine.errors.values())

    def test_custom_template_placeholders(self, make_engine):
        engine = make_engine([
            FieldDefinition('age', initial_value=0, label='Age',
                            validator=lambda v: None if v >= 18 else '{label} must be 18+, got {value}'),
        ])
        assert engine.errors['age'] == "Age must be 18+, got 0"

    def test_validation_durations_recorded(self, make_engine):
        """Sync validation time is recorded per key."""
        engine = make_engine([FieldDefinition('x', initial_value=0, validator=lambda v: None)])
        durations = engine.validation_durations
        assert 'x' in durations
        assert durations['x'] >= 0


class TestValidationModes:

    def test_on_user_interaction_waits_for_dirty(self, make_engine):
        """ON_USER_INTERACTION fields wait until dirty or touched."""
        engine = make_engine([
            FieldDefinition('name', initial_value='', validation_mode=ValidationMode.ON_USER_INTERACTION,
                            validator=Validators.string().required().build()),
        ])
        assert engine.snapshot.is_valid

        engine.set_value('name', 'x')
        engine.set_value('name', '')

        # Back at the initial value, but validated once already
        assert not engine.snapshot.is_field_dirty('name')
        assert not engine.snapshot.validation('name').is_valid

    def test_on_blur_waits_for_touched(self, make_engine):
        """ON_BLUR fields wait until touched."""
        engine = make_engine([
            FieldDefinition('code', initial_value='', validation_mode=ValidationMode.ON_BLUR,
                            validator=Validators.string().min_length(3).build()),
        ])
        engine.set_value('code', 'ab')
        assert engine.snapshot.validation('code').is_valid

        engine.mark_as_touched('code')
        assert engine.snapshot.is_field_touched('code')
        assert not engine.snapshot.validation('code').is_valid

        engine.set_value('code', 'abcd')
        assert engine.snapshot.validation('code').is_valid

    def test_disabled_only_validates_on_request(self, make_engine):
        """DISABLED fields only validate through validate()."""
        engine = make_engine([
            FieldDefinition('x', initial_value='', validation_mode=ValidationMode.DISABLED,
                            validator=Validators.string().required().build()),
        ])
        engine.set_value('x', 'a')
        engine.set_value('x', '')
        assert engine.snapshot.is_valid

        assert engine.validate() is False
        assert not engine.snapshot.validation('x').is_valid

    def test_form_level_mode_inherited(self, make_engine):
        """INHERIT resolves to the form-level mode."""
        engine = make_engine(
            [FieldDefinition('x', initial_value='', validator=Validators.string().required().build())],
            config=FormEngineConfig(default_debounce=0.0, validation_mode=ValidationMode.ON_BLUR),
        )
        assert engine.snapshot.is_valid
        engine.mark_as_touched('x')
        assert not engine.snapshot.is_valid


class TestManualResults:

    def test_validate_subset(self, make_engine):
        engine = make_engine([
            FieldDefinition('a', initial_value='', validator=Validators.string().required().build()),
            FieldDefinition('b', initial_value='x', validator=Validators.string().required().build()),
        ])
        assert engine.validate(['b']) is True
        assert engine.validate(['a']) is False

    def test_set_field_error_round_trip(self, make_engine, recorder, check_counters):
        """set_field_error forces INVALID, None clears it."""
        engine = make_engine([FieldDefinition('x', initial_value=0)])
        rec = recorder(engine)

        engine.set_field_error('x', 'Taken')
        assert engine.snapshot.validation('x') == ValidationResult.invalid('Taken')
        assert engine.snapshot.error_count == 1
        assert rec.last.changed_fields == frozenset({'x'})

        engine.set_field_error('x', None)
        assert engine.snapshot.is_valid
        check_counters(engine.snapshot)

    def test_set_field_validating(self, make_engine, check_counters):
        engine = make_engine([FieldDefinition('x', initial_value=0)])

        engine.set_field_validating('x')
        assert engine.snapshot.validation('x').is_validating
        assert engine.snapshot.pending_count == 1
        assert engine.snapshot.is_valid

        engine.set_field_validating('x', False)
        assert engine.snapshot.validation('x') == ValidationResult.VALID
        assert engine.snapshot.pending_count == 0
        check_counters(engine.snapshot)

    def test_passing_revalidation_clears_error(self, make_engine):
        engine = make_engine([FieldDefinition('x', initial_value=0)])
        engine.set_field_error('x', 'Server error')
        engine.set_value('x', 1)
        assert engine.snapshot.is_valid

"""Tests for cross-engine field binding."""
from formstate import FieldDefinition


def _pair(make_engine, recorder):
    source = make_engine([FieldDefinition('city', initial_value='')])
    target = make_engine([FieldDefinition('town', initial_value='')])
    return source, target, recorder(source), recorder(target)


class TestOneWay:

    def test_source_change_updates_target_once(self, make_engine, recorder):
        source, target, source_rec, target_rec = _pair(make_engine, recorder)
        target.bind_field('town', source, 'city')

        source.set_value('city', 'Paris')

        assert target.get_value('town') == 'Paris'
        assert len(target_rec) == 1
        assert len(source_rec) == 1

    def test_target_change_not_mirrored(self, make_engine, recorder):
        source, target, source_rec, _ = _pair(make_engine, recorder)
        target.bind_field('town', source, 'city')

        target.set_value('town', 'Lyon')

        assert source.get_value('city') == ''
        assert len(source_rec) == 0

    def test_unbind(self, make_engine, recorder):
        source, target, _, target_rec = _pair(make_engine, recorder)
        unbind = target.bind_field('town', source, 'city')
        assert target.binding_count == 1

        unbind()
        source.set_value('city', 'Paris')

        assert target.get_value('town') == ''
        assert len(target_rec) == 0
        assert target.binding_count == 0


class TestTwoWay:

    def test_each_side_written_once(self, make_engine, recorder):
        source, target, source_rec, target_rec = _pair(make_engine, recorder)
        target.bind_field('town', source, 'city', two_way=True)

        source.set_value('city', 'Paris')
        assert (len(source_rec), len(target_rec)) == (1, 1)

        target.set_value('town', 'Lyon')
        assert source.get_value('city') == 'Lyon'
        assert (len(source_rec), len(target_rec)) == (2, 2)

    def test_same_value_produces_no_writes(self, make_engine, recorder):
        source, target, source_rec, target_rec = _pair(make_engine, recorder)
        target.bind_field('town', source, 'city', two_way=True)
        source.set_value('city', 'Paris')
        source_rec.clear()
        target_rec.clear()

        source.set_value('city', 'Paris')
        target.set_value('town', 'Paris')

        assert len(source_rec) == 0
        assert len(target_rec) == 0

    def test_rebinding_replaces_subscriptions(self, make_engine, recorder):
        source, target, _, target_rec = _pair(make_engine, recorder)
        target.bind_field('town', source, 'city', two_way=True)
        target.bind_field('town', source, 'city', two_way=True)

        source.set_value('city', 'Paris')

        assert target.binding_count == 1
        assert len(target_rec) == 1

    def test_dispose_unbinds(self, make_engine, recorder):
        source, target, _, _ = _pair(make_engine, recorder)
        target.bind_field('town', source, 'city', two_way=True)

        target.dispose()
        source.set_value('city', 'Paris')

        assert target.binding_count == 0
        assert target.get_value('town') == ''

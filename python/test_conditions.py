"""
Tests for akte/assembly/conditions.py and the condition models.

Run: python3 test_conditions.py
From: python/
"""

import sys
from datetime import date

sys.path.insert(0, '.')

from akte.assembly.conditions import (
    ConditionEvaluator,
    apply_conditional_placeholders,
    compare_values,
    is_in_list,
    resolve_nested_placeholders,
    values_equal,
)
from akte.context import PlaceholderContext
from akte.models import Comparison, ConditionConfig, Group


def _cmp(field, op, value=None):
    return {'field': field, 'operator': op, 'value': value}


def _config(*rules, default='default'):
    return ConditionConfig.from_json({
        'rules': [{'condition': c, 'result': r} for c, r in rules],
        'default': default,
    })


# ---------------------------------------------------------------------------
# Rule selection
# ---------------------------------------------------------------------------

def test_empty_rules_returns_default():
    config = ConditionConfig(rules=[], default='standaard')
    evaluator = ConditionEvaluator()
    for ctx in ({}, {'a': 1}, {'x': 'y', 'n': None}):
        result = evaluator.evaluate(config, ctx)
        assert result.raw_result == 'standaard'
        assert result.matched_rule_index is None
    print("PASS: test_empty_rules_returns_default")


def test_empty_groups():
    evaluator = ConditionEvaluator()
    and_result = evaluator.evaluate(_config(({'operator': 'AND', 'conditions': []}, 'and')), {})
    or_result = evaluator.evaluate(_config(({'operator': 'OR', 'conditions': []}, 'or')), {})
    assert and_result.raw_result == 'and'
    assert and_result.matched_rule_index == 0
    assert or_result.raw_result == 'default'
    print("PASS: test_empty_groups")


def test_first_matching_rule_wins():
    config = _config(
        (_cmp('kinderen', '>', 0), 'eerste'),
        (_cmp('kinderen', '>=', 1), 'tweede'),
    )
    result = ConditionEvaluator().evaluate(config, {'kinderen': 2})
    assert result.raw_result == 'eerste'
    assert result.matched_rule_index == 0
    print("PASS: test_first_matching_rule_wins")


def test_short_circuit_records_only_evaluated_steps():
    config = _config(({
        'operator': 'AND',
        'conditions': [_cmp('a', '=', 'x'), _cmp('b', '=', 'y')],
    }, 'beide'))
    result = ConditionEvaluator().evaluate(config, {'a': 'nee', 'b': 'y'})
    assert result.raw_result == 'default'
    assert len(result.steps) == 1
    assert result.steps[0].field == 'a'
    assert result.steps[0].outcome is False

    config = _config(({
        'operator': 'OR',
        'conditions': [_cmp('a', '=', 'x'), _cmp('b', '=', 'y')],
    }, 'een van beide'))
    result = ConditionEvaluator().evaluate(config, {'a': 'X', 'b': 'nee'})
    assert result.raw_result == 'een van beide'
    assert len(result.steps) == 1
    print("PASS: test_short_circuit_records_only_evaluated_steps")


def test_nested_groups():
    config = _config(({
        'operator': 'AND',
        'conditions': [
            _cmp('gehuwd', '=', True),
            {'operator': 'OR', 'conditions': [_cmp('plaats', 'begins_with', 'ams'), _cmp('kinderen', '>', 3)]},
        ],
    }, 'ja'))
    evaluator = ConditionEvaluator()
    assert evaluator.evaluate(config, {'gehuwd': 'Ja', 'plaats': 'Amsterdam', 'kinderen': 0}).raw_result == 'ja'
    assert evaluator.evaluate(config, {'gehuwd': 'nee', 'plaats': 'Amsterdam'}).raw_result == 'default'
    assert evaluator.evaluate(config, {'gehuwd': '1', 'plaats': 'Utrecht', 'kinderen': '4'}).raw_result == 'ja'
    print("PASS: test_nested_groups")


# ---------------------------------------------------------------------------
# Operators
# ---------------------------------------------------------------------------

def test_in_operator():
    assert is_in_list(5, [3, 4, 5]) is True
    assert is_in_list('5', [3, 4, 5]) is True
    assert is_in_list(None, [3, 4, 5]) is False
    assert is_in_list(None, [None, '']) is False
    assert is_in_list('b', 'B') is True

    evaluator = ConditionEvaluator()
    config = _config((_cmp('x', 'not_in', ['a', 'b']), 'buiten'))
    assert evaluator.evaluate(config, {'x': 'c'}).raw_result == 'buiten'
    assert evaluator.evaluate(config, {'x': 'A'}).raw_result == 'default'
    assert evaluator.evaluate(config, {}).raw_result == 'buiten'
    print("PASS: test_in_operator")


def test_equality_coercion():
    assert values_equal('Ja', True)
    assert values_equal('yes', '1')
    assert values_equal('NEE', 'false')
    assert values_equal('10', 10.00001)
    assert not values_equal('10', 10.01)
    assert values_equal('Amsterdam', 'amsterdam')
    assert values_equal(None, '')
    assert not values_equal(None, 'x')
    print("PASS: test_equality_coercion")


def test_ordering():
    assert compare_values(10, '9') > 0
    assert compare_values('2024-03-05', '01-02-2024') > 0
    assert compare_values(date(2023, 12, 31), '31/12/2023') == 0
    assert compare_values('2024-06-01T10:00:00', '2024-06-01') > 0
    assert compare_values('appel', 'Banaan') < 0
    assert compare_values(None, 0) < 0
    assert compare_values(0, None) > 0
    assert compare_values(None, None) == 0
    print("PASS: test_ordering")


def test_text_predicates_and_emptiness():
    evaluator = ConditionEvaluator()
    ctx = {'naam': 'Jan de Vries', 'leeg': '', 'geen': None}

    def check(op, field, value=None):
        return evaluator.evaluate(_config((_cmp(field, op, value), 'ja')), ctx).raw_result == 'ja'

    assert check('contains', 'naam', 'DE V')
    assert check('begins_with', 'naam', 'jan')
    assert check('ends_with', 'naam', 'vries')
    assert not check('contains', 'geen', 'x')
    assert not check('contains', 'naam', None)
    assert check('empty', 'leeg')
    assert check('empty', 'geen')
    assert check('empty', 'ontbreekt')
    assert check('not_empty', 'naam')
    assert not check('not_empty', 'leeg')
    assert check('!=', 'naam', 'Piet')
    assert check('<=', 'ontbreekt', 1)
    print("PASS: test_text_predicates_and_emptiness")


def test_malformed_and_unknown_are_false():
    evaluator = ConditionEvaluator()
    no_operator = _config(({'field': 'a', 'value': 'x'}, 'ja'))
    unknown = _config((_cmp('a', 'lijkt_op', 'x'), 'ja'))

    assert evaluator.evaluate(no_operator, {'a': 'x'}).raw_result == 'default'
    result = evaluator.evaluate(unknown, {'a': 'x'})
    assert result.raw_result == 'default'
    assert result.steps[0].operator == 'lijkt_op'
    assert result.steps[0].outcome is False
    print("PASS: test_malformed_and_unknown_are_false")


# ---------------------------------------------------------------------------
# Wire format
# ---------------------------------------------------------------------------

def test_dutch_wire_format():
    config = ConditionConfig.from_json('''
    {
      "regels": [
        {
          "conditie": {
            "operator": "and",
            "voorwaarden": [
              {"veld": "aantal_kinderen", "operator": ">", "waarde": 0},
              {"veld": "soort_relatie", "operator": "bevat", "waarde": "huwelijk"}
            ]
          },
          "resultaat": "met kinderen"
        }
      ],
      "default": "zonder kinderen"
    }
    ''')
    group = config.rules[0].condition
    assert isinstance(group, Group)
    assert group.operator == 'AND'
    assert isinstance(group.conditions[1], Comparison)
    assert group.conditions[1].operator == 'contains'

    evaluator = ConditionEvaluator()
    ctx = {'Aantal_Kinderen': 2, 'soort_relatie': 'Geregistreerd Huwelijk'}
    assert evaluator.evaluate(config, ctx).raw_result == 'met kinderen'
    assert evaluator.evaluate(config, {'aantal_kinderen': 0}).raw_result == 'zonder kinderen'
    print("PASS: test_dutch_wire_format")


def test_operator_aliases():
    for alias, canonical in [('==', '='), ('<>', '!='), ('leeg', 'empty'), ('niet_leeg', 'not_empty'),
                             ('niet_in', 'not_in'), ('begint_met', 'begins_with'), ('eindigt_met', 'ends_with')]:
        assert Comparison.model_validate({'field': 'a', 'operator': alias}).operator == canonical
    print("PASS: test_operator_aliases")


def test_node_with_both_variants_is_rejected():
    bad = {
        'rules': [{
            'condition': {'operator': 'AND', 'conditions': [], 'field': 'a', 'value': 1},
            'result': 'x',
        }],
    }
    try:
        ConditionConfig.from_json(bad)
        assert False, "Expected ValueError"
    except ValueError:
        pass

    try:
        ConditionConfig.from_json('{"rules": [{"condition": {}, "result": "x"}]}')
        assert False, "Expected ValueError"
    except ValueError:
        pass

    try:
        ConditionConfig.from_json('not json')
        assert False, "Expected ValueError"
    except ValueError:
        pass
    print("PASS: test_node_with_both_variants_is_rejected")


# ---------------------------------------------------------------------------
# Nested placeholders
# ---------------------------------------------------------------------------

def test_nested_placeholders_resolve_chain():
    assert resolve_nested_placeholders('[[A]]', {'A': '[[B]]', 'B': 'x'}) == 'x'
    assert resolve_nested_placeholders('[[a]] en [[Onbekend]]', {'A': 'y'}) == 'y en [[Onbekend]]'
    print("PASS: test_nested_placeholders_resolve_chain")


def test_nested_placeholders_cycle_terminates():
    assert resolve_nested_placeholders('[[A]]', {'A': '[[A]]'}) == '[[A]]'
    grown = resolve_nested_placeholders('[[A]]', {'A': '[[A]]!'}, max_depth=3)
    assert grown == '[[A]]!!!'
    print("PASS: test_nested_placeholders_cycle_terminates")


def test_resolve_uses_replacements():
    ctx = PlaceholderContext({'Partij1': 'Jan'}, {'kinderen': 2})
    config = _config((_cmp('kinderen', '>', 1), '[[Partij1]] en de kinderen'))
    assert ConditionEvaluator().resolve(config, ctx) == 'Jan en de kinderen'
    print("PASS: test_resolve_uses_replacements")


def test_apply_conditional_placeholders_feeds_context():
    ctx = PlaceholderContext({'Naam': 'Jan'}, {'gehuwd': True})
    conditionals = {
        'Aanhef': _config((_cmp('gehuwd', '=', 'ja'), 'Gehuwd: [[Naam]]'), default='Ongehuwd'),
        'Slot': {'rules': [], 'default': '[[Aanhef]].'},
    }

    resolved = apply_conditional_placeholders(conditionals, ctx)

    assert resolved == {'Aanhef': 'Gehuwd: Jan', 'Slot': 'Gehuwd: Jan.'}
    assert ctx.get('aanhef') == 'Gehuwd: Jan'
    assert ctx.values['slot'] == 'Gehuwd: Jan.'
    print("PASS: test_apply_conditional_placeholders_feeds_context")


if __name__ == '__main__':
    tests = [
        test_empty_rules_returns_default,
        test_empty_groups,
        test_first_matching_rule_wins,
        test_short_circuit_records_only_evaluated_steps,
        test_nested_groups,
        test_in_operator,
        test_equality_coercion,
        test_ordering,
        test_text_predicates_and_emptiness,
        test_malformed_and_unknown_are_false,
        test_dutch_wire_format,
        test_operator_aliases,
        test_node_with_both_variants_is_rejected,
        test_nested_placeholders_resolve_chain,
        test_nested_placeholders_cycle_terminates,
        test_resolve_uses_replacements,
        test_apply_conditional_placeholders_feeds_context,
    ]

    passed = 0
    failed = 0
    for t in tests:
        try:
            t()
            passed += 1
        except Exception as e:
            print(f"FAIL: {t.__name__} — {e}")
            failed += 1

    print(f"\n{'=' * 50}")
    print(f"Results: {passed} passed, {failed} failed out of {len(tests)} tests")
    if failed > 0:
        sys.exit(1)
    else:
        print("All tests passed!")

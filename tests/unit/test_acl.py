import pytest

from cl_policy.acl import ACLEvaluator, ACLRule, Action


def build_evaluator(*rules, default_action=Action.DENY):
    evaluator = ACLEvaluator(default_action=default_action)
    for rule in rules:
        evaluator.add(rule)
    return evaluator


def test_priority_wins_over_catch_all():
    evaluator = build_evaluator(
        ACLRule("*", "*", "*", priority=5, action=Action.DENY),
        ACLRule("svcA", "svcB", "*", priority=1, action=Action.ALLOW),
    )

    assert evaluator.evaluate("svcA", "svcB", "gw1") is Action.ALLOW
    assert evaluator.evaluate("svcA", "svcC", "gw1") is Action.DENY
    assert evaluator.evaluate("svcC", "svcB", "gw1") is Action.DENY


def test_default_action_when_nothing_matches():
    assert build_evaluator().evaluate("a", "b", "gw") is Action.DENY
    allow_all = build_evaluator(default_action=Action.ALLOW)
    assert allow_all.evaluate("a", "b", "gw") is Action.ALLOW


def test_priority_beats_specificity():
    evaluator = build_evaluator(
        ACLRule("svcA", "svcB", "gw1", priority=2, action=Action.ALLOW),
        ACLRule("*", "*", "*", priority=1, action=Action.DENY),
    )

    assert evaluator.evaluate("svcA", "svcB", "gw1") is Action.DENY


def test_specificity_breaks_priority_ties():
    evaluator = build_evaluator(
        ACLRule("svcA", "svcB", "*", priority=1, action=Action.ALLOW),
        ACLRule("svcA", "*", "*", priority=1, action=Action.DENY),
    )

    assert evaluator.evaluate("svcA", "svcB", "gw1") is Action.ALLOW


def test_most_recent_rule_breaks_remaining_ties():
    evaluator = build_evaluator(
        ACLRule("svcA", "*", "*", priority=1, action=Action.ALLOW),
        ACLRule("*", "svcB", "*", priority=1, action=Action.DENY),
    )
    assert evaluator.evaluate("svcA", "svcB", "gw1") is Action.DENY

    evaluator.add(ACLRule("svcA", "*", "*", priority=1, action=Action.ALLOW))
    assert evaluator.evaluate("svcA", "svcB", "gw1") is Action.ALLOW
    assert len(evaluator) == 2


def test_delete_rule():
    evaluator = build_evaluator(ACLRule("svcA", "svcB", "*", action=Action.ALLOW))

    assert evaluator.delete("svcA", "svcB", "*")
    assert not evaluator.delete("svcA", "svcB", "*")
    assert evaluator.evaluate("svcA", "svcB", "gw1") is Action.DENY


def test_negative_priority_rejected():
    with pytest.raises(ValueError):
        build_evaluator(ACLRule(priority=-1))


def test_rules_listed_in_evaluation_order():
    catch_all = ACLRule(priority=5, action=Action.DENY)
    specific = ACLRule("svcA", "svcB", "*", priority=1)
    evaluator = build_evaluator(catch_all, specific)

    assert evaluator.rules() == [specific, catch_all]
    assert evaluator.rules(insertion_order=True) == [catch_all, specific]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("allow", Action.ALLOW),
        ("Deny", Action.DENY),
        (0, Action.ALLOW),
        (1, Action.DENY),
        ("1", Action.DENY),
    ],
)
def test_action_parse(value, expected):
    assert Action.parse(value) is expected


@pytest.mark.parametrize("value", ["maybe", 2, True])
def test_action_parse_rejects_unknown(value):
    with pytest.raises(ValueError):
        Action.parse(value)

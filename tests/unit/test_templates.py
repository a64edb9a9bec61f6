import pytest

from ruleflow.contracts import RuleInput
from ruleflow.templates import (
    RULE_TEMPLATES,
    TEMPLATE_CATEGORIES,
    build_rule_from_template,
    get_template,
    templates_by_category,
)


def test_template_ids_are_unique_and_categorized():
    ids = [t.id for t in RULE_TEMPLATES]
    assert len(ids) == len(set(ids))
    grouped = templates_by_category()
    assert set(grouped) == set(TEMPLATE_CATEGORIES)
    assert sum(len(v) for v in grouped.values()) == len(RULE_TEMPLATES)


def test_scheduled_templates_have_intervals():
    for template in RULE_TEMPLATES:
        if template.rule.schedule_enabled:
            assert template.rule.schedule_interval is not None
            assert template.rule.activation_mode in ("scheduled", "all")


def test_build_rule_from_template_applies_overrides():
    rule = build_rule_from_template(
        "auto-reply-clients",
        {"name": "Client replies", "output_config": {"platform": "slack", "destination": "#sales"}},
    )
    assert isinstance(rule, RuleInput)
    assert rule.name == "Client replies"
    assert rule.output_config.destination == "#sales"
    assert rule.accepted_triggers == ["GMAIL_NEW_GMAIL_MESSAGE"]
    assert get_template("auto-reply-clients").rule.name == "Auto-Reply to Clients"


def test_unknown_template():
    assert get_template("nope") is None
    with pytest.raises(KeyError):
        build_rule_from_template("nope")

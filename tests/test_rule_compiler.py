import copy

import pytest

from src.engine.application.rule_compiler import RuleCompiler
from src.engine.application.variable_resolver import VariableResolver
from src.engine.domain.exceptions import (
    InvalidRuleError,
    RuleLoadError,
    UndefinedFieldError,
    UndefinedVariableError,
    VariableTypeError,
)
from src.engine.domain.models import RuleDefinition
from src.engine.domain.time import TimeDelta
from src.engine.infrastructure.rule_loader import parse_rule


def compile_rule(document, overrides=None):
    return RuleCompiler(TimeDelta("5m")).compile(parse_rule(document), overrides)


def test_defaults_bound_when_no_overrides(interface_rule):
    binding = VariableResolver(RuleDefinition.model_validate(interface_rule)).resolve()
    assert binding["in-error-threshold"] == 1
    assert binding["interface-pattern"] == "ge-.*"


def test_override_replaces_default_and_binding_is_read_only(interface_rule):
    binding = VariableResolver(RuleDefinition.model_validate(interface_rule)).resolve({"in-error-threshold": 5})
    assert binding["in-error-threshold"] == 5
    with pytest.raises(TypeError):
        binding.values["in-error-threshold"] = 7


def test_override_with_wrong_type_is_fatal(interface_rule):
    with pytest.raises(VariableTypeError) as exc:
        compile_rule(interface_rule, {"in-error-threshold": "3"})
    assert exc.value.details["variable"] == "in-error-threshold"


def test_override_for_unknown_variable_is_fatal(interface_rule):
    with pytest.raises(UndefinedVariableError):
        compile_rule(interface_rule, {"no-such-variable": 1})


def test_default_with_wrong_type_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["variables"][0]["value"] = "one"
    with pytest.raises(VariableTypeError):
        compile_rule(rule)


def test_thresholds_substituted_at_load_time(interface_rule):
    compiled = compile_rule(interface_rule, {"in-error-threshold": 4})
    sustained = compiled.triggers[0].terms[0].when[0]
    assert sustained.value == 4
    # the definition itself keeps the reference
    assert compiled.definition.triggers[0].terms[0].when[0].value == "$in-error-threshold"


def test_undefined_variable_in_predicate_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["terms"][0]["when"][0]["value"] = "$missing"
    with pytest.raises(UndefinedVariableError):
        compile_rule(rule)


def test_undefined_field_in_predicate_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["terms"][1]["when"][0]["field"] = "out-errors-count"
    with pytest.raises(UndefinedFieldError):
        compile_rule(rule)


def test_undefined_key_field_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["keys"] = ["interface-name", "unit"]
    with pytest.raises(UndefinedFieldError):
        compile_rule(rule)


def test_unknown_message_token_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["terms"][2]["then"]["message"] = "$interface-name is $mood"
    with pytest.raises(UndefinedFieldError):
        compile_rule(rule)


def test_malformed_document_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    del rule["triggers"]
    with pytest.raises(InvalidRuleError) as exc:
        compile_rule(rule)
    assert exc.value.rule_name == "check-in-errors"
    assert exc.value.details["validation_errors"]


def test_invalid_regex_variable_is_fatal(interface_rule):
    with pytest.raises(RuleLoadError):
        compile_rule(interface_rule, {"interface-pattern": "ge-(["})


def test_min_rate_on_string_field_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["terms"][0]["when"] = [
        {"kind": "min-rate-of-increase", "field": "interface-name", "value": 1, "time-range": "60s"}
    ]
    with pytest.raises(InvalidRuleError):
        compile_rule(rule)


def test_increase_predicate_on_constant_field_is_fatal(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["fields"].append({"name": "budget", "type": "integer", "constant": "$in-error-threshold"})
    rule["triggers"][0]["terms"][0]["when"] = [
        {"kind": "increasing-at-least-by-value", "field": "budget", "value": 1, "time-range": "60s"}
    ]
    with pytest.raises(InvalidRuleError) as exc:
        compile_rule(rule)
    assert "constant field 'budget'" in exc.value.message


def test_window_retention_is_longest_referenced_range(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["terms"][1]["when"][0]["time-range"] = "10m"
    compiled = compile_rule(rule)
    assert compiled.retention["in-errors-count"] == TimeDelta("10m")
    assert "interface-name" not in compiled.retention


def test_unranged_field_uses_default_retention(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["triggers"][0]["terms"] = [rule["triggers"][0]["terms"][1], rule["triggers"][0]["terms"][2]]
    compiled = compile_rule(rule)
    assert compiled.retention["in-errors-count"] == TimeDelta("5m")


def test_constant_field_resolved_from_variable(interface_rule):
    rule = copy.deepcopy(interface_rule)
    rule["variables"].append({"name": "site", "value": "lab-1", "type": "string"})
    rule["fields"].append({"name": "site-name", "constant": "$site"})
    compiled = compile_rule(rule)
    assert compiled.constants == {"site-name": "lab-1"}

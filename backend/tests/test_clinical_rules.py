import dataclasses

import pytest

from backend.services import clinical_rules
from backend.services.clinical_rules import RuleConfigError, build_rule_set, load_rules


def test_rules_file_has_sections():
    raw = load_rules()
    for key in ("version", "measurements", "mentions", "summary", "fallback"):
        assert key in raw, f"missing top-level section: {key}"


def test_measurement_kinds_in_detection_order(rules):
    assert rules.kinds == ("blood_pressure", "glucose", "cholesterol", "hemoglobin", "bmi")


def test_every_kind_ends_with_catch_all_normal_tier(rules):
    for m in rules.measurements:
        last = m.rules[-1]
        assert last.is_normal
        assert not last.predicate.comparisons


@pytest.mark.parametrize(
    "systolic,diastolic,tier",
    [
        (180, 60, "hypertensive_crisis"),
        (100, 110, "hypertensive_crisis"),
        (179, 109, "hypertension"),
        (140, 60, "hypertension"),
        (100, 90, "hypertension"),
        (139, 89, "stage1_hypertension"),
        (130, 70, "stage1_hypertension"),
        (110, 80, "stage1_hypertension"),
        (129, 79, "elevated"),
        (120, 70, "elevated"),
        (119, 79, "normal"),
    ],
)
def test_blood_pressure_boundaries(rules, systolic, diastolic, tier):
    rule = rules.for_kind("blood_pressure").classify({"systolic": systolic, "diastolic": diastolic})
    assert rule.tier == tier


@pytest.mark.parametrize(
    "kind,value,tier",
    [
        ("glucose", 126, "diabetic"),
        ("glucose", 125, "prediabetic"),
        ("glucose", 100, "prediabetic"),
        ("glucose", 99, "normal"),
        ("cholesterol", 240, "high"),
        ("cholesterol", 239, "borderline"),
        ("cholesterol", 200, "borderline"),
        ("cholesterol", 199, "desirable"),
        ("hemoglobin", 11.9, "anemic"),
        ("hemoglobin", 12.0, "normal"),
        ("hemoglobin", 17.0, "normal"),
        ("hemoglobin", 17.1, "polycythemic"),
        ("bmi", 30.0, "obese"),
        ("bmi", 29.9, "overweight"),
        ("bmi", 25.0, "overweight"),
        ("bmi", 24.9, "normal"),
        ("bmi", 18.5, "normal"),
        ("bmi", 18.4, "underweight"),
    ],
)
def test_single_value_boundaries(rules, kind, value, tier):
    assert rules.for_kind(kind).classify({"value": value}).tier == tier


def test_critical_tiers(rules):
    critical = {(m.kind, r.tier) for m in rules.measurements for r in m.rules if r.is_critical}
    assert critical == {
        ("blood_pressure", "hypertensive_crisis"),
        ("blood_pressure", "hypertension"),
        ("glucose", "diabetic"),
        ("cholesterol", "high"),
        ("hemoglobin", "anemic"),
        ("hemoglobin", "polycythemic"),
    }


def test_mentions_keep_table_order(rules):
    names = [m.condition for m in rules.mentions]
    assert names[0] == "Myocardial Infarction (Heart Attack)"
    assert names.index("Pneumonia") < names.index("Arthritis")


def test_abbreviations_match_whole_words_only(rules):
    uti = next(m for m in rules.mentions if m.condition == "Urinary Tract Infection")
    assert uti.found_in("uti confirmed on culture")
    assert not uti.found_in("routine urinalysis")
    mi = rules.mentions[0]
    assert mi.found_in("family history of mi.")
    assert not mi.found_in("mild chest discomfort")


def test_rule_set_is_immutable(rules):
    with pytest.raises(dataclasses.FrozenInstanceError):
        rules.version = "2.0"


def test_default_rule_set_is_loaded_once():
    assert clinical_rules.default_rule_set() is clinical_rules.default_rule_set()


def test_unknown_operator_is_rejected():
    raw = load_rules()
    raw["measurements"]["glucose"]["rules"][0]["when"] = {"field": "value", "op": "approx", "value": 126}
    with pytest.raises(RuleConfigError, match="unknown operator"):
        build_rule_set(raw)


def test_missing_rules_file_is_rejected(tmp_path):
    with pytest.raises(RuleConfigError, match="not found"):
        load_rules(tmp_path / "absent.yaml")


def test_invalid_yaml_is_rejected(tmp_path):
    path = tmp_path / "broken.yaml"
    path.write_text("measurements: [unclosed", encoding="utf-8")
    with pytest.raises(RuleConfigError):
        load_rules(path)


def test_incomplete_summary_is_rejected():
    raw = load_rules()
    del raw["summary"]["review"]
    with pytest.raises(RuleConfigError, match="summary"):
        build_rule_set(raw)


def test_template_placeholder_must_be_provided_by_the_kind():
    raw = load_rules()
    raw["measurements"]["glucose"]["rules"][0]["finding"] = "Diabetes: {systolic} mg/dL"
    with pytest.raises(RuleConfigError, match="placeholder"):
        build_rule_set(raw)


def test_malformed_template_is_rejected():
    raw = load_rules()
    raw["measurements"]["bmi"]["rules"][0]["value_text"] = "BMI: {value kg/m²"
    with pytest.raises(RuleConfigError, match="malformed template"):
        build_rule_set(raw)


def test_comparison_field_must_be_extracted_for_the_kind():
    raw = load_rules()
    raw["measurements"]["glucose"]["rules"][0]["when"] = {"field": "valeu", "op": "gte", "value": 126}
    with pytest.raises(RuleConfigError, match="unknown field 'valeu'"):
        build_rule_set(raw)


def test_blood_pressure_comparison_needs_an_explicit_field():
    raw = load_rules()
    raw["measurements"]["blood_pressure"]["rules"][0]["when"] = {"op": "gte", "value": 180}
    with pytest.raises(RuleConfigError, match="unknown field 'value'"):
        build_rule_set(raw)


def test_measurement_without_extractor_is_rejected():
    raw = load_rules()
    raw["measurements"]["potassium"] = {"rules": [{"tier": "normal", "severity": "normal"}]}
    with pytest.raises(RuleConfigError, match="no extractor"):
        build_rule_set(raw)


def test_fields_follow_extractor_groups():
    assert clinical_rules.MEASUREMENT_FIELDS["blood_pressure"] == ("systolic", "diastolic")
    assert clinical_rules.MEASUREMENT_FIELDS["glucose"] == ("value",)

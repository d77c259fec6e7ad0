"""
Tests for expression evaluation.

Tests navigation, operators, functions, and evaluation faults against
in-memory instance trees.
"""

import pytest
from decimal import Decimal

from fhir_invariants.core.errors import EvaluationError
from fhir_invariants.core.ontology import ResourceNode, build_tree
from fhir_invariants.runtime import predicate_result


def values(result):
    return [item.value if isinstance(item, ResourceNode) else item for item in result]


class TestNavigation:
    """Test path navigation over the instance tree."""

    def test_child_path(self, run, patient):
        assert values(run("name.given", patient)) == ["Peter", "James"]

    def test_leading_type_name_selects_node(self, run, patient):
        assert values(run("Patient.name.family", patient)) == ["Chalmers"]

    def test_missing_child_is_empty(self, run, patient):
        assert run("deceased", patient) == []
        assert run("deceased.exists()", patient) == [False]

    def test_choice_element(self, run, observation):
        assert run("value.exists()", observation) == [True]
        assert values(run("value.value", observation)) == [Decimal("5.4")]

    def test_choice_suffix_must_be_a_type(self, run):
        node = build_tree("Repeat", {"periodMax": 5, "periodUnit": "d", "boundsPeriod": {"_type": "Period"}})
        assert run("period", node) == []
        assert run("bounds.count()", node) == [1]

    def test_indexer(self, run, patient):
        assert values(run("name.given[1]", patient)) == ["James"]
        assert run("name.given[5]", patient) == []

    def test_delimited_identifier(self, run):
        node = build_tree("Patient", {"text": {"_type": "Narrative", "div": "<div/>"}})
        assert run("text.`div`.exists()", node) == [True]

    def test_navigate_from_primitive_is_fault(self, run, empty_node):
        with pytest.raises(EvaluationError):
            run("'abc'.foo", empty_node)

    def test_children_and_descendants(self, run, patient):
        assert run("name.children().count()", patient) == [3]
        assert run("name.descendants().count()", patient) == [3]
        assert run("contact.descendants().count()", patient) == [6]

    def test_extension_by_url(self, run):
        node = build_tree("Patient", {
            "extension": [
                {"_type": "Extension", "url": "http://example.org/a", "valueString": "a"},
                {"_type": "Extension", "url": "http://example.org/b", "valueString": "b"},
            ],
        })
        assert values(run("extension('http://example.org/b').value", node)) == ["b"]


class TestEnvironment:
    """Test variables and %constants."""

    def test_resource_constant(self, run, patient):
        contact = patient.child_list("contact")[0]
        assert run("%resource.id = 'example'", contact, (patient,)) == [True]
        assert run("%rootResource.id = 'example'", contact, (patient,)) == [True]

    def test_context_constant(self, run, patient):
        contact = patient.child_list("contact")[0]
        assert run("%context.name.family = 'du Marché'", contact, (patient,)) == [True]

    def test_parent_variable(self, run, patient):
        contact = patient.child_list("contact")[0]
        name = contact.child_list("name")[0]
        assert run("$parent.id = 'example'", contact, (patient,)) == [True]
        assert run("$parent.relationship.exists()", name, (patient, contact)) == [True]

    def test_root_has_no_parent(self, run, patient):
        assert run("$parent.exists()", patient) == [False]

    def test_well_known_constant(self, run, empty_node):
        assert run("%ucum = 'http://unitsofmeasure.org'", empty_node) == [True]

    def test_unknown_constant_is_fault(self, run, empty_node):
        with pytest.raises(EvaluationError):
            run("%nope.exists()", empty_node)

    def test_index_variable(self, run, patient):
        assert run("name.given.where($index = 1)", patient)[0].value == "James"


class TestExistenceFunctions:
    """Test exists, empty, all and friends."""

    def test_all_is_vacuously_true(self, run):
        node = build_tree("Patient", {"id": "x"})
        assert run("contact.all(name.exists())", node) == [True]

    def test_all_fails_on_one_item(self, run, patient):
        assert run("contact.all(name.exists())", patient) == [False]
        assert run("contact.all(relationship.exists())", patient) == [True]

    def test_exists_with_criteria(self, run, patient):
        assert run("contact.exists(name.exists())", patient) == [True]
        assert run("contact.exists(telecom.exists())", patient) == [False]

    def test_empty_and_count(self, run, patient):
        assert run("contact.empty()", patient) == [False]
        assert run("telecom.empty()", patient) == [True]
        assert run("contact.count()", patient) == [2]

    def test_where_and_select(self, run, patient):
        assert run("name.given.where($this = 'Peter').count()", patient) == [1]
        assert values(run("contact.select(relationship.text)", patient)) == ["partner", "friend"]

    def test_first_last_tail(self, run, patient):
        assert values(run("name.given.first()", patient)) == ["Peter"]
        assert values(run("name.given.last()", patient)) == ["James"]
        assert values(run("name.given.tail()", patient)) == ["James"]

    def test_has_value(self, run, patient):
        assert run("id.hasValue()", patient) == [True]
        assert run("name.hasValue()", patient) == [False]

    def test_not(self, run, empty_node):
        assert run("false.not()", empty_node) == [True]
        assert run("{}.not()", empty_node) == []

    def test_iif(self, run, patient):
        assert run("iif(active, 'yes', 'no')", patient) == ["yes"]
        assert run("iif(deceased.exists(), 'yes')", patient) == []

    def test_all_true_any_true(self, run, empty_node):
        assert run("(true | false).anyTrue()", empty_node) == [True]
        assert run("(true | false).allTrue()", empty_node) == [False]

    def test_distinct(self, run, empty_node):
        assert run("(1 | 2 | 1).count()", empty_node) == [2]
        assert run("(1 | 2).isDistinct()", empty_node) == [True]


class TestStringFunctions:
    """Test string functions."""

    def test_matches_is_partial(self, run, empty_node):
        assert run("'ab12345'.matches('[0-9]{5}')", empty_node) == [True]
        assert run("'3999'.matches('[0-9]{5}(-[0-9]{4}){0,1}')", empty_node) == [False]

    def test_invalid_regex_is_fault(self, run, empty_node):
        with pytest.raises(EvaluationError):
            run("'a'.matches('(')", empty_node)

    def test_matches_on_empty(self, run, patient):
        assert run("telecom.value.matches('x')", patient) == []

    def test_prefix_suffix_contains(self, run, empty_node):
        assert run("'Hello'.startsWith('He')", empty_node) == [True]
        assert run("'Hello'.endsWith('lo')", empty_node) == [True]
        assert run("'Hello'.contains('ell')", empty_node) == [True]
        assert run("'Hello'.contains('xyz')", empty_node) == [False]

    def test_length_and_case(self, run, empty_node):
        assert run("'abc'.length()", empty_node) == [3]
        assert run("'abc'.upper()", empty_node) == ["ABC"]
        assert run("'ABC'.lower()", empty_node) == ["abc"]

    def test_string_function_on_number_is_fault(self, run, empty_node):
        with pytest.raises(EvaluationError):
            run("5.length()", empty_node)

    def test_concatenation(self, run, empty_node):
        assert run("'a' & {} & 'b'", empty_node) == ["ab"]
        assert run("'a' + 'b'", empty_node) == ["ab"]


class TestOperators:
    """Test equality, comparison, arithmetic and logic."""

    def test_decimal_arithmetic_is_exact(self, run, empty_node):
        assert run("0.1 + 0.2 = 0.3", empty_node) == [True]

    def test_integer_decimal_equality(self, run, empty_node):
        assert run("1.0 = 1", empty_node) == [True]
        assert run("2 > 1.5", empty_node) == [True]

    def test_boolean_not_equal_to_integer(self, run, empty_node):
        assert run("true = 1", empty_node) == [False]

    def test_equality_with_empty(self, run, patient):
        assert run("deceased = true", patient) == []

    def test_equivalence(self, run, empty_node):
        assert run("'Hello  World' ~ 'hello world'", empty_node) == [True]
        assert run("'a' !~ 'b'", empty_node) == [True]

    def test_node_value_comparison(self, run, observation):
        assert run("valueQuantity.value > 5", observation) == [True]
        assert run("valueQuantity.value = 5.4", observation) == [True]

    def test_comparison_type_mismatch_is_fault(self, run, empty_node):
        with pytest.raises(EvaluationError):
            run("'a' > 1", empty_node)

    def test_comparison_of_many_items_is_fault(self, run, patient):
        with pytest.raises(EvaluationError):
            run("name.given > 'A'", patient)

    def test_arithmetic(self, run, empty_node):
        assert run("7 div 2", empty_node) == [3]
        assert run("7 mod 2", empty_node) == [1]
        assert run("5 / 2", empty_node) == [Decimal("2.5")]
        assert run("2 * 3 - 1", empty_node) == [5]
        assert run("-(2)", empty_node) == [-2]

    def test_division_by_zero_is_empty(self, run, empty_node):
        assert run("1 / 0", empty_node) == []
        assert run("1 div 0", empty_node) == []

    def test_membership(self, run, empty_node):
        assert run("'b' in ('a' | 'b')", empty_node) == [True]
        assert run("('a' | 'b') contains 'c'", empty_node) == [False]

    @pytest.mark.parametrize("text,expected", [
        ("{} and false", [False]),
        ("{} and true", []),
        ("true and true", [True]),
        ("{} or true", [True]),
        ("{} or false", []),
        ("false or false", [False]),
        ("true xor false", [True]),
        ("true xor {}", []),
        ("false implies {}", [True]),
        ("true implies {}", []),
        ("{} implies true", [True]),
        ("{} implies false", []),
    ])
    def test_three_valued_logic(self, run, empty_node, text, expected):
        assert run(text, empty_node) == expected

    def test_short_circuit_skips_fault(self, run, empty_node):
        assert run("false and ('a' > 1)", empty_node) == [False]
        assert run("true or ('a' > 1)", empty_node) == [True]


class TestTypeOperators:
    """Test is, as and ofType."""

    def test_is_primitive(self, run, patient):
        assert run("active is Boolean", patient) == [True]
        assert run("active is String", patient) == [False]
        assert run("id.is(String)", patient) == [True]
        assert run("1.5 is Decimal", patient) == [True]
        assert run("1 is System.Integer", patient) == [True]

    def test_as(self, run, patient):
        assert values(run("active as Boolean", patient)) == [True]
        assert run("active as Integer", patient) == []

    def test_of_type_complex(self, run, patient):
        assert run("name.ofType(HumanName).count()", patient) == [1]
        assert run("children().ofType(Address).count()", patient) == [1]

    def test_is_on_many_items_is_fault(self, run, patient):
        with pytest.raises(EvaluationError):
            run("name.given is String", patient)


class TestPredicateResult:
    """Test reduction of a result to pass/fail."""

    @pytest.mark.parametrize("result,expected", [
        ([], None),
        ([True], True),
        ([False], False),
        (["x"], True),
        ([True, False], True),
        ([ResourceNode(type_name="boolean", value=False)], False),
    ])
    def test_reduction(self, result, expected):
        assert predicate_result(result) is expected

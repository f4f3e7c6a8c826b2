import pytest

from browserflow.core.conditions import compare_values, evaluate_condition, validate_condition
from browserflow.core.workflow_loader import ConditionConfig

from conftest import FakeBrowser, FakeContext, FakePage, FakeProvider


@pytest.fixture
def page(page_elements) -> FakePage:
    browser = FakeBrowser(FakeProvider(page_elements), page_elements)
    return FakePage(FakeContext(browser, page_elements), page_elements)


def cond(**kwargs) -> ConditionConfig:
    return ConditionConfig.model_validate(kwargs)


@pytest.mark.parametrize(
    "actual, expected, operator, outcome",
    [
        ("Hello", "hello", "equals", True),
        ("Hello", "world", "not_equals", True),
        ("Hello World", "WORLD", "contains", True),
        ("Hello", "xyz", "not_contains", True),
        ("10", "9.5", "greater_than", True),
        ("3", "3", "less_than", False),
        ("abc", "3", "greater_than", False),
        (None, "", "equals", True),
        ("a", "a", "sideways", False),
    ],
)
def test_compare_values(actual, expected, operator, outcome):
    assert compare_values(actual, expected, operator) is outcome


@pytest.mark.asyncio
async def test_page_conditions(page):
    assert await evaluate_condition(cond(conditionType="element_exists", selector="li"), page, {}) is True
    assert await evaluate_condition(cond(conditionType="element_exists", selector=".nope"), page, {}) is False
    assert await evaluate_condition(cond(conditionType="element_visible", selector="#hidden"), page, {}) is False
    assert await evaluate_condition(cond(conditionType="element_visible", selector="h1"), page, {}) is True
    assert await evaluate_condition(cond(conditionType="text_contains", selector="h1", text="Domain"), page, {}) is True


@pytest.mark.asyncio
async def test_value_equals_reads_variable_then_selector(page):
    variables = {"status": "OK", "legacy": "yes"}
    assert await evaluate_condition(cond(conditionType="value_equals", variableName="status", value="ok"), page, variables)
    # older definitions name the variable through `selector`
    assert await evaluate_condition(cond(conditionType="value_equals", selector="legacy", value="YES"), page, variables)


@pytest.mark.asyncio
async def test_custom_js_passes_variables(page):
    page.evaluate_result = lambda expr, arg: arg[1]["n"] > 2
    c = cond(conditionType="custom_js", customScript="return variables.n > 2")
    assert await evaluate_condition(c, page, {"n": 5}) is True
    assert await evaluate_condition(c, page, {"n": 1}) is False


@pytest.mark.asyncio
async def test_page_errors_evaluate_false(page):
    page.context.browser.closed = True
    assert await evaluate_condition(cond(conditionType="element_exists", selector="li"), page, {}) is False
    assert await evaluate_condition(cond(conditionType="text_contains", selector="h1", text="x"), page, {}) is False


def test_validation_messages():
    assert validate_condition(cond(conditionType="element_exists", selector="li")) is None
    assert validate_condition(cond(conditionType="nope")) == "Unknown condition type: nope"
    assert validate_condition(cond(conditionType="element_visible")) == "Selector is required for conditional step"
    assert validate_condition(cond(conditionType="value_equals", value="1")) == "Variable name is required for conditional step"
    assert validate_condition(cond(conditionType="value_equals", variableName="v")) == "Value is required for conditional step"
    assert validate_condition(cond(conditionType="value_equals", variableName="v", value=1, operator="approx")) == "Unknown operator: approx"
    assert validate_condition(cond(conditionType="custom_js"), "loop") == "Custom script is required for loop step"

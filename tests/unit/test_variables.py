from browserflow.core.workflow_loader import Step
from browserflow.utils.variables import VariableResolver, extract_variable_names, substitute, substitute_tree


def test_simple_placeholder():
    assert substitute("https://a.com/${x}", {"x": "5"}) == "https://a.com/5"


def test_dotted_path_and_non_string_values():
    variables = {"user": {"name": "ada", "tags": ["a", "b"]}, "n": 3, "ok": True, "none": None}
    assert substitute("${user.name}", variables) == "ada"
    assert substitute("${user.tags}", variables) == '["a", "b"]'
    assert substitute("${n}-${ok}-${none}", variables) == "3-true-null"


def test_unknown_placeholder_is_left_alone():
    assert substitute("hi ${missing} ${x}", {"x": 1}) == "hi ${missing} 1"


def test_non_strings_pass_through():
    assert substitute(5, {"x": 1}) == 5
    assert substitute(None, {}) is None


def test_nested_tree_is_copied_not_mutated():
    config = {"url": "https://a.com/${x}", "items": [{"q": "${x}"}, "${y}", 7], "pair": ("${x}", 2)}
    out = substitute_tree(config, {"x": "5", "y": "why"})
    assert out == {"url": "https://a.com/5", "items": [{"q": "5"}, "why", 7], "pair": ("5", 2)}
    assert config["url"] == "https://a.com/${x}"
    assert config["items"][0] == {"q": "${x}"}
    assert out["items"] is not config["items"]


def test_resolve_step_leaves_authored_step_untouched():
    step = Step(id="nav", type="navigate", config={"url": "https://a.com/${x}", "headers": {"h": "${x}"}})
    resolved = VariableResolver().resolve_step(step, {"x": "5"})
    assert resolved.config == {"url": "https://a.com/5", "headers": {"h": "5"}}
    assert step.config == {"url": "https://a.com/${x}", "headers": {"h": "${x}"}}
    assert resolved.id == "nav" and resolved.type == "navigate"


def test_extract_variable_names():
    assert extract_variable_names("${a} and ${ b.c } and ${a}") == ["a", "b.c", "a"]
    assert extract_variable_names("") == []

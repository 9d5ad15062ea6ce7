import pytest

from agents.command_decomposer import CommandDecomposer, looks_like_command


@pytest.fixture
def decomposer(registry):
    return CommandDecomposer(min_words=5, known_entities=registry.known_entities())


def test_conditional_plan_carries_the_repo(decomposer):
    plan = decomposer.decompose("run tests on judo and if they pass deploy it")

    assert plan.is_conditional
    assert plan.condition == "success"
    assert plan.steps == ["run tests on judo", "deploy JUDO"]
    assert plan.original == "run tests on judo and if they pass deploy it"


def test_if_it_is_ok_conditional(decomposer):
    plan = decomposer.decompose("build lusotown and if it's ok then deploy lusotown")
    assert plan.is_conditional
    assert plan.steps == ["build lusotown", "deploy lusotown"]


def test_but_first_runs_the_prerequisite_first(decomposer):
    plan = decomposer.decompose("deploy judo but first run tests")
    assert not plan.is_conditional
    assert plan.condition is None
    assert plan.steps == ["run tests", "deploy judo"]


def test_semicolon_split(decomposer):
    plan = decomposer.decompose("build lusotown; restart lusotown right now")
    assert plan.steps == ["build lusotown", "restart lusotown right now"]


def test_prose_is_not_a_plan(decomposer):
    assert decomposer.decompose("I went to the shop and then came home") is None


def test_every_part_must_be_a_command(decomposer):
    assert decomposer.decompose("deploy judo and then have a coffee") is None


def test_short_messages_are_never_decomposed(decomposer):
    assert decomposer.decompose("deploy judo then restart") is None
    assert decomposer.decompose(None) is None


def test_format_plan_marks_conditional_steps(decomposer):
    plan = decomposer.decompose("run tests on judo and if they pass deploy it")
    text = decomposer.format_plan(plan)

    assert text.startswith("I'll do this in order:")
    assert "1. run tests on judo" in text
    assert "2. If step 1 succeeds -> deploy JUDO" in text
    assert 'Reply "yes"' in text


def test_looks_like_command():
    assert looks_like_command("Deploy judo")
    assert not looks_like_command("have a coffee")
    assert not looks_like_command("   ")

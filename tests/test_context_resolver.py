import pytest

from core.context_resolver import ContextResolver


@pytest.fixture
def resolver(registry, config, clock):
    return ContextResolver(registry=registry, config=config, clock=clock)


class TestPronounResolution:

    def test_deploy_it_uses_last_repo(self, resolver):
        resolver.detect_and_record("c1", "check judo")
        assert resolver.resolve_pronouns("c1", "deploy it") == "deploy JUDO"

    def test_plural_pronoun_uses_last_company(self, resolver):
        resolver.detect_and_record("c1", "how is gmh doing")
        assert resolver.resolve_pronouns("c1", "show their expenses") == "show GMH expenses"

    def test_again_repeats_last_action_on_last_repo(self, resolver):
        resolver.detect_and_record("c1", "deploy lusotown")
        assert resolver.resolve_pronouns("c1", "again") == "deploy LusoTown"

    def test_same_for_repeats_last_action_on_new_target(self, resolver):
        resolver.detect_and_record("c1", "deploy lusotown")
        assert resolver.resolve_pronouns("c1", "same for armora") == "deploy armora"

    def test_the_other_one_is_the_previous_repo(self, resolver):
        resolver.detect_and_record("c1", "deploy judo")
        resolver.detect_and_record("c1", "check lusotown")
        assert resolver.resolve_pronouns("c1", "deploy the other one") == "deploy JUDO"

    def test_there_becomes_in_repo(self, resolver):
        resolver.detect_and_record("c1", "check judo")
        assert resolver.resolve_pronouns("c1", "run tests there") == "run tests in JUDO"

    def test_existential_there_is_left_alone(self, resolver):
        resolver.detect_and_record("c1", "check judo")
        assert resolver.resolve_pronouns("c1", "there is a bug") == "there is a bug"

    def test_no_state_is_a_no_op(self, resolver):
        assert resolver.resolve_pronouns("unknown", "deploy it") == "deploy it"

    def test_resolution_is_idempotent_without_new_mentions(self, resolver):
        resolver.detect_and_record("c1", "check judo")
        once = resolver.resolve_pronouns("c1", "deploy it")
        assert resolver.resolve_pronouns("c1", once) == once

    def test_conversations_are_isolated(self, resolver):
        resolver.detect_and_record("c1", "check judo")
        assert resolver.resolve_pronouns("c2", "deploy it") == "deploy it"


class TestDetection:

    def test_detects_repo_company_and_primary_action_in_order(self, resolver):
        detected = resolver.detect_and_record("c1", "deploy judo for gmh")
        types = [d["type"] for d in detected]
        assert types[0] == "action"
        assert {"type": "repo", "value": "JUDO"} in detected
        assert {"type": "company", "value": "GMH"} in detected

        state = resolver.get_state("c1")
        assert state.last_action == "deploy"
        assert state.last_repo == "JUDO"
        assert state.last_company == "GMH"

    def test_longest_alias_wins(self, resolver):
        resolver.detect_and_record("c1", "check gq-cars-driver-app")
        assert resolver.get_state("c1").last_repo == "gq-cars-driver-app"

    def test_mentions_are_bounded(self, resolver):
        for repo in ("judo", "lusotown", "armora", "moltbook", "gq-cars", "judo", "lusotown"):
            resolver.record_mention("c1", "repo", repo)
        assert len(resolver.get_state("c1").mentions) == 5

    def test_unknown_mention_type_is_ignored(self, resolver):
        resolver.record_mention("c1", "planet", "mars")
        assert resolver.get_state("c1") is None

    def test_get_state_returns_a_copy(self, resolver):
        resolver.record_mention("c1", "repo", "JUDO")
        resolver.get_state("c1").last_repo = "changed"
        assert resolver.get_state("c1").last_repo == "JUDO"


class TestExpiry:

    def test_expired_state_is_never_used(self, resolver, clock):
        resolver.detect_and_record("c1", "check judo")
        clock.advance(1801)
        assert resolver.resolve_pronouns("c1", "deploy it") == "deploy it"
        assert resolver.get_state("c1") is None

    def test_sweep_removes_idle_conversations(self, resolver, clock):
        resolver.record_mention("c1", "repo", "JUDO")
        clock.advance(1000)
        resolver.record_mention("c2", "repo", "armora")
        clock.advance(900)

        assert resolver.sweep_expired() == 1
        assert resolver.get_state("c1") is None
        assert resolver.get_state("c2") is not None

    def test_least_recently_used_conversation_is_evicted(self, registry, make_config, clock):
        resolver = ContextResolver(registry=registry, config=make_config(conversation={"max_threads": 2}), clock=clock)
        resolver.record_mention("c1", "repo", "JUDO")
        resolver.record_mention("c2", "repo", "armora")
        resolver.get_state("c1")
        resolver.record_mention("c3", "repo", "moltbook")

        assert resolver.get_state("c2") is None
        assert resolver.get_state("c1") is not None
        assert resolver.get_stats()["active_conversations"] == 2


def test_pronoun_priority_rejects_unknown_rules(registry, make_config):
    with pytest.raises(ValueError):
        ContextResolver(registry=registry, config=make_config(conversation={"pronoun_priority": ["bogus"]}))


def test_start_and_close_manage_the_sweeper(resolver):
    resolver.start()
    assert resolver._sweeper.running
    resolver.close()
    assert not resolver._sweeper.running

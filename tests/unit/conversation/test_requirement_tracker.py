from flow_builder.conversation.models import ConversationState, Message, Requirement
from flow_builder.conversation.requirements import (
    SCHEDULE_TRIGGER_QUESTION,
    RequirementTracker,
)

tracker = RequirementTracker()


def _req(category, priority, answered=False):
    return Requirement(category=category, question=f"{category}?", priority=priority, answered=answered)


def test_base_requirements_for_plain_request():
    reqs = tracker.initialize("Automate my invoices")

    assert [r.category for r in reqs] == ["scope", "triggers", "resources", "inputs", "destinations", "errors"]
    assert [r.priority for r in reqs] == ["high", "high", "high", "medium", "medium", "low"]
    assert not any(r.answered for r in reqs)


def test_cues_in_first_message_add_requirements():
    reqs = tracker.initialize("Send me a daily email with the spreadsheet data")

    assert len(reqs) == 8
    assert reqs[1].question == SCHEDULE_TRIGGER_QUESTION
    extra = reqs[6:]
    assert [(r.category, r.priority) for r in extra] == [("inputs", "high"), ("inputs", "medium")]


def test_high_priority_boost():
    reqs = [
        _req("scope", "high", True),
        _req("triggers", "high", True),
        _req("resources", "high", True),
        _req("inputs", "low"),
        _req("destinations", "low"),
        _req("errors", "low"),
    ]
    assert RequirementTracker.calculate_completeness(reqs) == 80


def test_completeness_rounds_half_up():
    reqs = [_req("inputs", "low", True)] + [_req("errors", "low") for _ in range(7)]
    assert RequirementTracker.calculate_completeness(reqs) == 13


def test_empty_requirements_are_zero_complete():
    assert RequirementTracker.calculate_completeness([]) == 0


def test_short_keywords_match_whole_words_only():
    destinations = _req("destinations", "medium")

    assert tracker.keyword_match(destinations, "automate") is False
    assert tracker.keyword_match(destinations, "send it to me") is True


def test_update_marks_matching_requirements():
    state = tracker.initial_state("Automate invoices")

    updated = tracker.update(state, "Automate invoices", "Great, what should start it?")

    answered = {r.category for r in updated.requirements if r.answered}
    assert answered == {"scope"}
    assert updated.requirements[0].answer == "Automate invoices"
    assert updated.current_focus == "triggers"


def test_answered_requirements_keep_their_first_answer():
    state = tracker.initial_state("Automate invoices")
    once = tracker.update(state, "Automate invoices", "ok")
    twice = tracker.update(once, "automate the weekly process too", "ok")

    assert twice.requirements[0].answer == "Automate invoices"


def test_completeness_never_decreases():
    state = ConversationState(
        phase="discovery",
        requirements=(_req("scope", "high"), _req("errors", "low")),
        completeness=85,
    )

    updated = tracker.update(state, "nothing relevant", "ok")
    assert updated.completeness == 85


def test_phase_moves_one_step_per_update():
    state = tracker.initial_state("Process orders")

    first = tracker.update(state, "Process orders", "**Workflow Summary:** ...")
    assert first.completeness == 100
    assert first.phase == "validation"
    assert first.current_focus == "ready"
    assert RequirementTracker.should_generate_workflow(first) is False

    second = tracker.update(first, "yes", "Great")
    assert second.phase == "generation"
    assert RequirementTracker.should_generate_workflow(second) is True

    assert tracker.mark_complete(second).phase == "complete"


def test_next_question_per_phase():
    state = tracker.initial_state("Automate invoices")
    assert tracker.next_question(state) == "Focus on understanding: What business process are you looking to automate?"

    validation = ConversationState(phase="validation", requirements=state.requirements, completeness=80)
    assert tracker.next_question(validation).startswith("Validate and confirm")


def test_replay_rebuilds_state_from_log():
    log = [
        Message(content="Automate invoices", sender="user"),
        Message(content="What should start it?", sender="assistant"),
        Message(content="Every morning via webhook", sender="user"),
        Message(content="Provider error", sender="assistant", error=True),
        Message(content="Got it", sender="assistant"),
    ]

    state = tracker.replay(log)
    answered = {r.category for r in state.requirements if r.answered}
    assert {"scope", "triggers"} <= answered
    assert tracker.replay([]) is None


def test_repeating_an_update_changes_nothing():
    state = tracker.initial_state("Automate invoices")
    once = tracker.update(state, "Automate invoices every day via webhook", "ok")
    again = tracker.update(once, "Automate invoices every day via webhook", "ok")

    assert again.completeness == once.completeness
    assert [r.answered for r in again.requirements] == [r.answered for r in once.requirements]

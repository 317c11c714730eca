# studybuddy/tests/test_prompt_state.py
from datetime import timedelta

import pytest

from studybuddy.core.errors import ValidationError
from studybuddy.features.prompts.policy import PromptSettings
from studybuddy.features.prompts.service import (
    decide_for_user,
    get_prompt_state,
    mark_prompt_shown,
    record_action,
)
from studybuddy.models.upgrade_prompt import PromptTrigger
from studybuddy.models.usage import UsagePeriod


def test_never_prompted_user_has_empty_state():
    state = get_prompt_state("u1")
    assert state.last_shown_at is None
    assert state.actions_since_prompt == 0


def test_record_action_accumulates():
    record_action("u1")
    record_action("u1", count=4)
    assert get_prompt_state("u1").actions_since_prompt == 5
    assert get_prompt_state("u2").actions_since_prompt == 0


def test_record_action_rejects_non_positive():
    with pytest.raises(ValidationError):
        record_action("u1", count=0)


def test_mark_shown_sets_timestamp_and_resets_actions(fixed_now):
    record_action("u1", count=12)
    mark_prompt_shown("u1", now=fixed_now)

    state = get_prompt_state("u1")
    assert state.last_shown_at == fixed_now
    assert state.actions_since_prompt == 0


def test_decide_reads_state_and_respects_throttle(catalog, fixed_now):
    record_action("u1", count=11)
    period = UsagePeriod(user_id="u1", period_key="2024-03")
    free = catalog.get_tier("free")
    prompt_settings = PromptSettings()

    decision = decide_for_user("u1", free, period, catalog=catalog, prompt_settings=prompt_settings, now=fixed_now)
    assert decision.trigger == PromptTrigger.ACTION_COUNT_THRESHOLD

    mark_prompt_shown("u1", now=fixed_now)
    record_action("u1", count=20)
    later = fixed_now + timedelta(hours=1)
    assert decide_for_user("u1", free, period, catalog=catalog, prompt_settings=prompt_settings, now=later).should_show is False

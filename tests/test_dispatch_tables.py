"""Every condition and action variant is handled everywhere it must be."""

import pytest

from file_dispatch.core.conditions import ConditionEvaluator
from file_dispatch.core.executor import ActionExecutor
from file_dispatch.core.preview import DESCRIBERS
from file_dispatch.models.actions import ACTION_TYPES, ActionType
from file_dispatch.models.conditions import CONDITION_TYPES
from file_dispatch.models.serialization import CONDITION_TAGS, _ACTION_DECODERS, _ACTION_ENCODERS


@pytest.mark.parametrize("condition_type", CONDITION_TYPES, ids=lambda t: t.__name__)
def test_condition_types_are_evaluated_and_serialized(condition_type):
    assert condition_type in ConditionEvaluator.HANDLERS
    assert condition_type in CONDITION_TAGS


@pytest.mark.parametrize("action_type", ACTION_TYPES, ids=lambda t: t.__name__)
def test_action_types_are_executed_described_and_serialized(action_type):
    assert action_type in ActionExecutor.HANDLERS
    assert action_type in DESCRIBERS
    assert action_type in _ACTION_ENCODERS
    assert action_type.action_type.value in _ACTION_DECODERS


def test_every_action_tag_has_a_variant():
    assert {t.action_type for t in ACTION_TYPES} == set(ActionType)

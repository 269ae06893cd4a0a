from __future__ import annotations

import pytest

from webhook_tasker.common.errors import ValidationError
from webhook_tasker.webhooks.payload_builder import (
    PayloadBuilderFactory,
    render_payload_template,
    sanitize_assignment_reason,
)


@pytest.mark.parametrize(
    "value",
    [None, "round robin", [{"reasonEnum": "ROUTING_FORM", "reasonString": "matched"}]],
)
def test_legacy_assignment_reason_shapes_are_kept(value):
    data = {"bookingUid": "b-1", "assignmentReason": value}
    assert sanitize_assignment_reason(data) == data


def test_internal_assignment_reason_shape_is_removed():
    data = {"bookingUid": "b-1", "assignmentReason": {"category": "routing", "details": "x"}}
    assert sanitize_assignment_reason(data) == {"bookingUid": "b-1"}
    assert "assignmentReason" in data


def test_builder_for_default_version():
    body = PayloadBuilderFactory().get_builder("2021-10-20").build(
        trigger_event="BOOKING_PAID", created_at="2024-01-01T00:00:00+00:00", data={"bookingUid": "b-1"}
    )
    assert body == {
        "triggerEvent": "BOOKING_PAID",
        "createdAt": "2024-01-01T00:00:00+00:00",
        "payload": {"bookingUid": "b-1"},
    }


def test_unknown_version_is_rejected():
    with pytest.raises(ValidationError):
        PayloadBuilderFactory().get_builder("2030-01-01")


def test_template_sees_payload_fields_and_envelope():
    body = {"triggerEvent": "BOOKING_CREATED", "createdAt": "t", "payload": {"title": "Intro"}}
    assert render_payload_template("{{ triggerEvent }}:{{ title }}", body) == "BOOKING_CREATED:Intro"


def test_template_with_unknown_variable_fails():
    with pytest.raises(ValidationError):
        render_payload_template("{{ missing }}", {"triggerEvent": "X", "payload": {}})

"""Unit and property tests for webhook decoding and classification."""

import json
from datetime import timedelta
from urllib.parse import urlencode

import pytest
from hypothesis import given, settings, strategies as st
from prometheus_client import CollectorRegistry

from runner_webhook.errors import MalformedPayloadError
from runner_webhook.metrics import WebhookMetrics
from runner_webhook.webhook.handler import (
    COMPLETED_MESSAGE,
    IN_PROGRESS_MESSAGE,
    DispatchRequest,
    NoAction,
    WebhookHandler,
    format_labels,
    select_image_tag_label,
)
from runner_webhook.webhook.models import UnhandledEvent, WorkflowJobEvent
from tests.mocks import make_envelope, make_payload


@pytest.fixture
def handler() -> WebhookHandler:
    return WebhookHandler()


def classify(handler: WebhookHandler, payload, event_type="workflow_job"):
    return handler.classify(handler.parse_event(make_envelope(payload, event_type=event_type)))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestParseEvent:
    def test_workflow_job_decodes_all_fields(self, handler):
        event = handler.parse_event(make_envelope(make_payload(
            created_at="2025-07-12T00:00:00Z",
            started_at="2025-07-12T00:01:30Z",
        )))

        assert isinstance(event, WorkflowJobEvent)
        assert event.action == "queued"
        assert event.installation_id == 123
        assert event.org_login == "google"
        assert event.repo_name == "webhook"
        assert event.workflow_job.id == 789
        assert event.workflow_job.run_id == 456
        assert event.workflow_job.labels == ("self-hosted",)
        assert event.queued_duration == timedelta(seconds=90)

    def test_other_event_types_are_unhandled(self, handler):
        event = handler.parse_event(make_envelope({"zen": "hi"}, event_type="ping"))

        assert event == UnhandledEvent(event_type="ping")

    def test_missing_event_header_is_malformed(self, handler):
        with pytest.raises(MalformedPayloadError) as exc_info:
            handler.parse_event(make_envelope(event_type=None))

        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize("body", [b'{"foo": "bar"', b"[1, 2]", b"\xff\xfe", b""])
    def test_undecodable_body_is_malformed(self, handler, body):
        with pytest.raises(MalformedPayloadError):
            handler.parse_event(make_envelope(body=body))

    def test_form_encoded_delivery(self, handler):
        body = urlencode({"payload": json.dumps(make_payload())}).encode("utf-8")
        envelope = make_envelope(
            body=body,
            content_type="application/x-www-form-urlencoded; charset=utf-8",
        )

        event = handler.parse_event(envelope)

        assert event.runner_id == "GCP-789"

    def test_form_delivery_without_payload_is_malformed(self, handler):
        envelope = make_envelope(
            body=b"other=1",
            content_type="application/x-www-form-urlencoded",
        )

        with pytest.raises(MalformedPayloadError):
            handler.parse_event(envelope)

    def test_org_falls_back_to_repository_owner(self, handler):
        payload = make_payload(org=None)
        payload["repository"]["owner"] = {"login": "octocat"}

        event = handler.parse_event(make_envelope(payload))

        assert event.org_login == "octocat"

    def test_wrongly_typed_fields_are_absent(self, handler):
        payload = make_payload(job_id="789", installation_id=True)
        payload["workflow_job"]["labels"] = ["self-hosted", 3, None]

        event = handler.parse_event(make_envelope(payload))

        assert event.workflow_job.id is None
        assert event.installation_id is None
        assert event.workflow_job.labels == ("self-hosted",)

    def test_non_json_body_of_other_event_is_unhandled(self, handler):
        envelope = make_envelope(
            body=b"hello=world",
            event_type="ping",
            content_type="application/x-www-form-urlencoded",
        )

        assert handler.parse_event(envelope) == UnhandledEvent(event_type="ping")

    def test_invalid_timestamp_is_malformed(self, handler):
        payload = make_payload(created_at="yesterday")

        with pytest.raises(MalformedPayloadError):
            handler.parse_event(make_envelope(payload))


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class TestClassify:
    def test_queued_self_hosted_job_dispatches(self, handler):
        decision = classify(handler, make_payload())

        assert decision == DispatchRequest(
            runner_id="GCP-789",
            installation_id=123,
            org_login="google",
            repo_name="webhook",
        )

    def test_runner_id_falls_back_to_run_id(self, handler):
        decision = classify(handler, make_payload(job_id=None))

        assert decision.runner_id == "GCP-456"

    def test_queued_without_label_is_noop(self, handler):
        decision = classify(handler, make_payload(labels=["other-label"]))

        assert decision == NoAction("no action taken for labels: [other-label]")

    def test_label_match_is_case_sensitive(self, handler):
        decision = classify(handler, make_payload(labels=["Self-Hosted"]))

        assert isinstance(decision, NoAction)

    def test_custom_runner_label(self):
        handler = WebhookHandler(runner_label="gcp")

        assert isinstance(classify(handler, make_payload(labels=["gcp"])), DispatchRequest)
        assert isinstance(classify(handler, make_payload(labels=["self-hosted"])), NoAction)

    @pytest.mark.parametrize(
        "missing",
        [
            {"installation_id": None},
            {"org": None},
            {"repo": None},
            {"job_id": None, "run_id": None},
        ],
    )
    def test_queued_job_missing_identity_is_malformed(self, handler, missing):
        with pytest.raises(MalformedPayloadError) as exc_info:
            classify(handler, make_payload(**missing))

        assert exc_info.value.status_code == 400
        assert exc_info.value.public_message == "malformed workflow job payload"

    def test_missing_identity_without_label_is_noop(self, handler):
        decision = classify(handler, make_payload(labels=["ubuntu-latest"], installation_id=None))

        assert isinstance(decision, NoAction)

    def test_in_progress_is_logged(self, handler):
        decision = classify(handler, make_payload(action="in_progress"))

        assert decision == NoAction(IN_PROGRESS_MESSAGE)

    def test_completed_is_logged(self, handler):
        decision = classify(handler, make_payload(action="completed", conclusion="success"))

        assert decision == NoAction(COMPLETED_MESSAGE)

    def test_completed_without_job_does_not_crash(self, handler):
        decision = classify(handler, {"action": "completed"})

        assert decision == NoAction(COMPLETED_MESSAGE)

    def test_missing_action(self, handler):
        decision = classify(handler, make_payload(action=None))

        assert decision == NoAction("no action taken for missing action type")

    def test_unknown_action(self, handler):
        decision = classify(handler, make_payload(action="waiting"))

        assert decision == NoAction('no action taken for action type: "waiting"')

    def test_unhandled_event_type(self, handler):
        decision = classify(handler, {"ref": "refs/heads/main"}, event_type="push")

        assert decision == NoAction('no action taken for event type: "push"')

    def test_image_tag_label_selects_tag(self, handler):
        decision = classify(handler, make_payload(labels=["self-hosted", "Linux", "x64", "node20"]))

        assert decision.image_tag == "node20"

    def test_durations_are_observed(self):
        metrics = WebhookMetrics(registry=CollectorRegistry())
        handler = WebhookHandler(metrics=metrics)

        classify(handler, make_payload(
            action="in_progress",
            created_at="2025-07-12T00:00:00Z",
            started_at="2025-07-12T00:00:10Z",
        ))
        classify(handler, make_payload(
            action="completed",
            conclusion="success",
            started_at="2025-07-12T00:00:10Z",
            completed_at="2025-07-12T00:01:10Z",
        ))

        assert metrics.registry.get_sample_value("runner_webhook_job_queued_seconds_sum") == 10.0
        assert metrics.registry.get_sample_value(
            "runner_webhook_job_run_seconds_sum", {"conclusion": "success"}
        ) == 60.0

    def test_mixed_timezone_timestamps_are_read_as_utc(self, handler):
        decision = classify(handler, make_payload(
            action="in_progress",
            created_at="2025-07-12T00:00:00Z",
            started_at="2025-07-12T00:00:10",
        ))

        assert decision == NoAction(IN_PROGRESS_MESSAGE)
        event = handler.parse_event(make_envelope(make_payload(
            created_at="2025-07-12T00:00:00Z",
            started_at="2025-07-12T00:00:10",
        )))
        assert event.queued_duration == timedelta(seconds=10)


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------

label_text = st.text(
    alphabet=st.characters(min_codepoint=33, max_codepoint=126),
    min_size=1,
    max_size=20,
)


@settings(max_examples=100)
@given(labels=st.lists(label_text, max_size=6))
def test_queued_dispatches_iff_label_present(labels):
    handler = WebhookHandler()

    decision = classify(handler, make_payload(labels=labels))

    if "self-hosted" in labels:
        assert isinstance(decision, DispatchRequest)
    else:
        assert decision == NoAction(f"no action taken for labels: {format_labels(tuple(labels))}")


@settings(max_examples=100)
@given(action=st.one_of(st.none(), st.text(max_size=20)), labels=st.lists(label_text, max_size=4))
def test_only_queued_actions_dispatch(action, labels):
    handler = WebhookHandler()

    decision = classify(handler, make_payload(action=action, labels=labels + ["self-hosted"]))

    assert isinstance(decision, DispatchRequest) == (action == "queued")


def test_select_image_tag_skips_default_and_platform_labels():
    labels = ("self-hosted", "LINUX", "X64", "not a tag!", "v1.2", "later")

    assert select_image_tag_label(labels, "self-hosted") == "v1.2"
    assert select_image_tag_label(("self-hosted", "linux"), "self-hosted") is None


def test_format_labels():
    assert format_labels(()) == "[]"
    assert format_labels(("a", "b c")) == "[a b c]"

import pytest

from core.exceptions import CollaboratorParseError
from core.schema import (
    IntentReply,
    PlanReply,
    PlanReviewReply,
    RepairReply,
    ReviewReply,
    parse_reply,
    to_plan,
    to_plan_verdict,
    to_review_verdict,
)


def test_camel_case_plan_reply():
    raw = '{"filesToCreate": ["App.jsx", "App.jsx", "Timer.jsx"], "fileDetails": ' \
          '{"Timer.jsx": {"purpose": "countdown", "keyFeatures": ["start", "stop"]}}, ' \
          '"colorScheme": {"primary": "#f97316"}, "unexpected": 1}'
    plan = to_plan(parse_reply(PlanReply, raw, role="planning"))

    assert plan.files_to_create == ["App.jsx", "Timer.jsx"]
    assert plan.detail_for("Timer.jsx").key_features == ["start", "stop"]
    assert plan.detail_for("Missing.jsx").purpose == ""
    assert plan.color_scheme == {"primary": "#f97316"}
    assert not plan.trivial


def test_snake_case_is_accepted_too():
    reply = parse_reply(RepairReply, '{"can_fix": false, "message": "no"}')
    assert reply.can_fix is False


def test_intent_is_validated_and_confidence_clamped():
    reply = parse_reply(IntentReply, '{"intent": "Style_Change", "confidence": 3}')
    assert reply.intent == "style_change"
    assert reply.confidence == 1.0
    with pytest.raises(CollaboratorParseError) as exc:
        parse_reply(IntentReply, '{"intent": "make_coffee"}', role="intent")
    assert exc.value.role == "intent"
    assert exc.value.raw == '{"intent": "make_coffee"}'


def test_non_json_and_non_object_replies_raise():
    with pytest.raises(CollaboratorParseError):
        parse_reply(ReviewReply, "looks great to me!")
    with pytest.raises(CollaboratorParseError):
        parse_reply(ReviewReply, "[1, 2, 3]")


def test_review_defaults_and_normalisation():
    reply = parse_reply(ReviewReply, '{"qualityScore": 140, "issues": [{"severity": "BLOCKER"}]}')
    assert reply.quality_score == 100
    assert reply.issues[0].severity == "medium"
    assert parse_reply(ReviewReply, "{}").quality_score == 70


def test_review_gate():
    approved = to_review_verdict(parse_reply(ReviewReply, '{"qualityScore": 80}'), quality_threshold=75)
    assert approved.approved

    low = to_review_verdict(parse_reply(ReviewReply, '{"qualityScore": 70, "approved": true}'), 75)
    assert not low.approved

    critical = to_review_verdict(parse_reply(
        ReviewReply, '{"qualityScore": 95, "issues": [{"severity": "critical", "description": "crash"}]}'), 75)
    assert not critical.approved
    assert critical.has_critical

    rejected = to_review_verdict(parse_reply(ReviewReply, '{"qualityScore": 95, "approved": false}'), 75)
    assert not rejected.approved


def test_plan_gate_includes_colour_creativity():
    dull = parse_reply(PlanReviewReply, '{"qualityScore": 90, "colorCreativityScore": 50}')
    vivid = parse_reply(PlanReviewReply, '{"qualityScore": 90, "colorCreativityScore": 85}')

    assert not to_plan_verdict(dull, 75, 70).approved
    verdict = to_plan_verdict(vivid, 75, 70)
    assert verdict.approved
    assert verdict.color_creativity_score == 85
    assert verdict.ux_completeness_score == 70

"""Referral code and status ordering tests."""

import uuid

import pytest

from coachreflect.referrals.codes import (
    REFERRAL_CHARSET,
    derive_referral_code,
    generate_random_referral_code,
    normalize_referral_code,
)
from coachreflect.referrals.service import (
    ReferralCreditError,
    ReferralStatus,
    SettlementAction,
    can_transition,
    parse_action,
)

USER_ID = uuid.UUID("1a2b3c4d-0000-4000-8000-000000000001")


class TestReferralCodes:
    def test_derived_code(self):
        assert derive_referral_code(USER_ID, "COACH") == "COACH1A2B3C4D"

    def test_derived_code_is_stable(self):
        assert derive_referral_code(USER_ID, "COACH") == derive_referral_code(USER_ID, "COACH")

    def test_random_code_shape(self):
        code = generate_random_referral_code("coach")
        assert code.startswith("COACH")
        suffix = code[len("COACH"):]
        assert len(suffix) == 8
        assert all(c in REFERRAL_CHARSET for c in suffix)

    def test_random_codes_differ(self):
        codes = {generate_random_referral_code("COACH") for _ in range(50)}
        assert len(codes) > 45

    def test_normalize(self):
        assert normalize_referral_code("  coach1a2b3c4d \n") == "COACH1A2B3C4D"

    @pytest.mark.parametrize("code", ["", "   ", "X" * 33])
    def test_normalize_rejects_invalid(self, code):
        with pytest.raises(ValueError):
            normalize_referral_code(code)


class TestStatusOrdering:
    def test_forward_transitions_allowed(self):
        assert can_transition(ReferralStatus.PENDING, ReferralStatus.SIGNED_UP)
        assert can_transition(ReferralStatus.PENDING, ReferralStatus.COMPLETED)
        assert can_transition(ReferralStatus.SIGNED_UP, ReferralStatus.COMPLETED)
        assert can_transition(ReferralStatus.COMPLETED, ReferralStatus.REWARDED)

    def test_regressions_forbidden(self):
        assert not can_transition(ReferralStatus.REWARDED, ReferralStatus.PENDING)
        assert not can_transition(ReferralStatus.COMPLETED, ReferralStatus.SIGNED_UP)
        assert not can_transition("rewarded", "completed")

    def test_same_status_is_not_a_transition(self):
        for status in ReferralStatus:
            assert not can_transition(status, status)

    def test_rank_order(self):
        assert [s.rank for s in ReferralStatus] == [0, 1, 2, 3]


class TestSettlementAction:
    def test_known_actions(self):
        assert parse_action("subscribed") is SettlementAction.SUBSCRIBED
        assert parse_action(SettlementAction.SIGNED_UP) is SettlementAction.SIGNED_UP

    def test_unknown_action_rejected(self):
        with pytest.raises(ValueError, match="Unknown settlement action"):
            parse_action("cancelled")


def test_credit_error_carries_referral_id():
    err = ReferralCreditError(42, "boom")
    assert isinstance(err, RuntimeError)
    assert err.referral_id == 42
    assert str(err) == "boom"

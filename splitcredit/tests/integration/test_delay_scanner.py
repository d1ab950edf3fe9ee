"""
tests/integration/test_delay_scanner.py — Delay penalty escalation on pending settlements.

Properties verified:
  - A settlement crosses 3, 7 and 15 days and is charged each tier once:
    -15, -25, -40
  - One tier per settlement per scan: first seen at day 20 means gt15 only
  - last_penalty_tier never goes down; repeat scans charge nothing
  - Completed settlements and other users' debts are not scanned
  - Completing a settlement after its tier was charged is a duplicate event

Also covered:
  POST /credit/check-delays  → 200
  flask scan-delays          (CLI)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

from splitcredit.app.extensions import db
from splitcredit.app.models.credit_state import CreditState
from splitcredit.app.models.participant import ParticipantRef
from splitcredit.app.models.settlement import Settlement, SettlementStatus
from splitcredit.app.services import credit_score_service, settlement_service

from .conftest import auth_headers, make_group, make_user


T0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def _setup(app):
    debtor = make_user(app, "Bo")
    creditor = make_user(app, "Asha")
    group_id = make_group(app, creditor, [debtor])
    return debtor, creditor, group_id


def _pending_settlement(app, group_id, debtor, creditor, created_at=T0,
                        status=SettlementStatus.PENDING) -> int:
    with app.app_context():
        settlement = Settlement(
            group_id=group_id,
            from_participant=ParticipantRef.user(debtor),
            to_participant=ParticipantRef.user(creditor),
            amount=Decimal("400.00"),
            status=status,
            created_at=created_at,
        )
        db.session.add(settlement)
        db.session.commit()
        return settlement.id


def _scan(app, user_id, now):
    with app.app_context():
        results = credit_score_service.scan_pending_delays(user_id, db.session, now=now)
        db.session.commit()
        return results


def _score(app, user_id) -> int:
    with app.app_context():
        state = db.session.get(CreditState, user_id)
        return state.score if state else 700


def _tier(app, settlement_id) -> int:
    with app.app_context():
        return db.session.get(Settlement, settlement_id).last_penalty_tier


# ═══════════════════════════════════════════════════════════════════════════
# scan_pending_delays
# ═══════════════════════════════════════════════════════════════════════════

class TestScanPendingDelays:

    def test_nothing_before_day_three(self, app):
        debtor, creditor, group_id = _setup(app)
        _pending_settlement(app, group_id, debtor, creditor)

        assert _scan(app, debtor, T0 + timedelta(days=2, hours=23)) == []
        assert _score(app, debtor) == 700

    def test_tiers_escalate_as_the_debt_ages(self, app):
        debtor, creditor, group_id = _setup(app)
        sid = _pending_settlement(app, group_id, debtor, creditor)

        day4 = _scan(app, debtor, T0 + timedelta(days=4))
        day10 = _scan(app, debtor, T0 + timedelta(days=10))
        day20 = _scan(app, debtor, T0 + timedelta(days=20))
        day25 = _scan(app, debtor, T0 + timedelta(days=25))

        assert [(p.tier, p.days_delayed, p.score.new_score) for p in day4] == [(3, 4, 685)]
        assert [(p.tier, p.days_delayed, p.score.new_score) for p in day10] == [(7, 10, 660)]
        assert [(p.tier, p.days_delayed, p.score.new_score) for p in day20] == [(15, 20, 620)]
        assert day25 == []
        assert _tier(app, sid) == 15
        assert _score(app, debtor) == 620

    def test_first_scan_at_day_twenty_charges_only_gt15(self, app):
        debtor, creditor, group_id = _setup(app)
        sid = _pending_settlement(app, group_id, debtor, creditor)

        results = _scan(app, debtor, T0 + timedelta(days=20))

        assert len(results) == 1
        assert results[0].tier == 15
        assert results[0].score.reason.value == "delayed_gt15"
        assert results[0].score.new_score == 660
        assert _tier(app, sid) == 15

        # Lower tiers are never charged afterwards.
        assert _scan(app, debtor, T0 + timedelta(days=21)) == []
        assert _score(app, debtor) == 660

    def test_repeat_scan_is_harmless(self, app):
        debtor, creditor, group_id = _setup(app)
        _pending_settlement(app, group_id, debtor, creditor)
        now = T0 + timedelta(days=8)

        first = _scan(app, debtor, now)
        second = _scan(app, debtor, now)

        assert len(first) == 1
        assert second == []
        assert _score(app, debtor) == 675

    def test_each_settlement_is_scanned(self, app):
        debtor, creditor, group_id = _setup(app)
        _pending_settlement(app, group_id, debtor, creditor, created_at=T0)
        _pending_settlement(app, group_id, debtor, creditor, created_at=T0 + timedelta(days=6))

        results = _scan(app, debtor, T0 + timedelta(days=10))

        assert [(p.tier, p.days_delayed) for p in results] == [(7, 10), (3, 4)]
        assert _score(app, debtor) == 700 - 25 - 15

    def test_completed_and_other_users_settlements_ignored(self, app):
        debtor, creditor, group_id = _setup(app)
        _pending_settlement(app, group_id, debtor, creditor,
                            status=SettlementStatus.COMPLETED)
        _pending_settlement(app, group_id, creditor, debtor)

        assert _scan(app, debtor, T0 + timedelta(days=30)) == []
        assert _score(app, debtor) == 700

    def test_completion_after_penalty_is_a_duplicate(self, app):
        debtor, creditor, group_id = _setup(app)
        sid = _pending_settlement(app, group_id, debtor, creditor)
        now = T0 + timedelta(days=10)
        _scan(app, debtor, now)

        with app.app_context():
            settlement, result = settlement_service.complete_settlement(
                sid, creditor, db.session, now=now,
            )
            db.session.commit()
            assert settlement.credit_score_processed is True

        assert result.reason.value == "delayed_gt7"
        assert result.duplicate is True
        assert _score(app, debtor) == 675

    def test_scan_all_covers_every_debtor(self, app):
        debtor, creditor, group_id = _setup(app)
        third = make_user(app, "Chen")
        _pending_settlement(app, group_id, debtor, creditor)
        _pending_settlement(app, group_id, third, creditor)

        with app.app_context():
            results = credit_score_service.scan_all_pending_delays(
                db.session, now=T0 + timedelta(days=16),
            )
            db.session.commit()

        assert len(results) == 2
        assert {p.tier for p in results} == {15}
        assert _score(app, debtor) == 660
        assert _score(app, third) == 660


# ═══════════════════════════════════════════════════════════════════════════
# POST /credit/check-delays and the CLI
# ═══════════════════════════════════════════════════════════════════════════

class TestScanEntryPoints:

    def test_check_delays_endpoint(self, client, app):
        debtor, creditor, group_id = _setup(app)
        created_at = datetime.now(timezone.utc) - timedelta(days=8, hours=1)
        sid = _pending_settlement(app, group_id, debtor, creditor, created_at=created_at)

        resp = client.post("/api/v1/credit/check-delays", headers=auth_headers(app, debtor))

        assert resp.status_code == 200
        penalties = resp.get_json()["data"]["penalties"]
        assert len(penalties) == 1
        assert penalties[0]["settlement_id"] == sid
        assert penalties[0]["days_delayed"] == 8
        assert penalties[0]["tier"] == 7
        assert penalties[0]["reason"] == "delayed_gt7"
        assert penalties[0]["new_score"] == 675

        again = client.post("/api/v1/credit/check-delays", headers=auth_headers(app, debtor))
        assert again.get_json()["data"]["penalties"] == []

    def test_scan_delays_command(self, app):
        debtor, creditor, group_id = _setup(app)
        created_at = datetime.now(timezone.utc) - timedelta(days=4, hours=1)
        sid = _pending_settlement(app, group_id, debtor, creditor, created_at=created_at)

        result = app.test_cli_runner().invoke(args=["scan-delays"])

        assert result.exit_code == 0, result.output
        assert f"settlement={sid} days=4 tier=3 score=685" in result.output
        assert "1 penalty event(s) processed." in result.output
        assert _score(app, debtor) == 685

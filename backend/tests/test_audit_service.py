# Overview: Pytest coverage for the append-only audit log.

from conftest import BRANCH, OTHER_BRANCH
from salon_pos.models import AuditLogEntry, AuditOutcome, Bill
from salon_pos.services import audit_service
from salon_pos.services.billing_service import create_bill, refund_bill


class TestAppend:
    def test_entry_fields(self, db_session, cashier):
        entry = audit_service.record_audit_entry(
            action="stock.adjust",
            entity_type="batch",
            entity_id=7,
            actor=cashier,
            branch_id=BRANCH,
            outcome=AuditOutcome.DEGRADED,
            details="x" * 5000,
        )

        stored = db_session.get(AuditLogEntry, entry.id)
        assert stored.entity_id == "7"
        assert stored.performed_by == "staff-1"
        assert stored.performed_by_name == "Rita Receptionist"
        assert stored.outcome == AuditOutcome.DEGRADED
        assert len(stored.details) == 2000

    def test_missing_actor_is_system(self, db_session):
        entry = audit_service.record_audit_entry(action="system.check", entity_type="system")

        assert entry.performed_by == "system"

    def test_write_failure_does_not_fail_operation(self, db_session, cashier, monkeypatch):
        def broken(**kwargs):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(audit_service, "AuditLogEntry", broken)

        result = create_bill({
            "branch_id": BRANCH,
            "payment_method": "cash",
            "lines": [{"type": "service", "item_id": "S-CUT", "unit_price_cents": 2000}],
        }, cashier)

        assert db_session.get(Bill, result.bill.id) is not None
        monkeypatch.undo()
        assert db_session.query(AuditLogEntry).count() == 0


class TestQueries:
    def test_bill_log_newest_first(self, db_session, paid_bill, manager):
        bill = paid_bill(client_id=None)
        refund_bill(bill.id, actor=manager)

        actions = [e.action for e in audit_service.get_bill_audit_log(bill.id)]

        assert actions == ["bill.refund", "bill.create"]

    def test_branch_log_scoped_and_limited(self, db_session, paid_bill):
        for _ in range(3):
            paid_bill(client_id=None)
        paid_bill(client_id=None, branch_id=OTHER_BRANCH)

        entries = audit_service.get_branch_audit_log(BRANCH, limit=2)

        assert len(entries) == 2
        assert {e.branch_id for e in entries} == {BRANCH}
        assert len(audit_service.get_branch_audit_log(OTHER_BRANCH)) == 1

# Overview: Pytest coverage for bill creation, the side-effect saga, refunds and voids.

"""
Transaction Ledger Tests

The bill commit is the durability boundary: once create_bill has persisted
the bill it must come back PAID no matter which side effects degrade or
fail afterwards. Refund and void are the only transitions, both terminal.
"""

from datetime import date

import pytest

from conftest import BRANCH, OTHER_BRANCH, bill_payload, product_line, service_line
from salon_pos.identity import Witness
from salon_pos.models import (
    AuditLogEntry,
    AuditOutcome,
    Bill,
    BillStatus,
    ClientProfile,
    DiscountType,
    LineType,
    SalesType,
    UsageType,
)
from salon_pos.services import billing_service, referral_service, stock_service
from salon_pos.services.billing_service import (
    AlreadyFinalizedError,
    BillNotFoundError,
    WitnessRequiredError,
    calculate_bill_totals,
    create_bill,
    refund_bill,
    void_bill,
)
from salon_pos.services.loyalty_service import (
    InsufficientPointsError,
    get_loyalty_points,
    grant_loyalty_points,
)
from salon_pos.validation import LineInput, ValidationError


def _line(price, quantity=1, line_type=LineType.SERVICE):
    return LineInput(line_type=line_type, item_id="X", unit_price_cents=price, quantity=quantity)


class TestTotals:
    def test_fixed_discount_and_tax(self, app):
        totals = calculate_bill_totals(
            [_line(10_000), _line(2_500, 2, LineType.PRODUCT)],
            discount_type=DiscountType.FIXED,
            discount_value=1_000,
            tax_rate_bps=1_200,
        )

        assert totals.subtotal_cents == 15_000
        assert totals.discount_cents == 1_000
        assert totals.tax_cents == 1_680
        assert totals.total_cents == 15_680

    def test_percentage_loyalty_and_promotion_stack(self, app):
        totals = calculate_bill_totals(
            [_line(10_000)],
            discount_type=DiscountType.PERCENTAGE,
            discount_value=10,
            loyalty_points_used=5,
            promotion_discount_cents=500,
        )

        assert totals.manual_discount_cents == 1_000
        assert totals.loyalty_discount_cents == 500
        assert totals.discount_cents == 2_000
        assert totals.total_cents == 8_000

    def test_discount_capped_at_subtotal(self, app):
        totals = calculate_bill_totals([_line(1_000)], discount_value=5_000, tax_rate_bps=1_000)

        assert totals.discount_cents == 1_000
        assert totals.tax_cents == 0
        assert totals.total_cents == 0

    def test_tax_rounds_half_up(self, app):
        totals = calculate_bill_totals([_line(125)], tax_rate_bps=200)

        assert totals.tax_cents == 3

    def test_sales_type_classification(self):
        assert billing_service.classify_sales_type([_line(1)]) == SalesType.SERVICE
        assert billing_service.classify_sales_type([_line(1, line_type=LineType.PRODUCT)]) == SalesType.PRODUCT
        assert billing_service.classify_sales_type(
            [_line(1), _line(1, line_type=LineType.PRODUCT)]
        ) == SalesType.MIXED


class TestCreateBill:
    def test_bill_is_paid_with_server_totals(self, db_session, cashier):
        payload = bill_payload(
            lines=[service_line(price=4_000), product_line(price=1_000, quantity=2)],
            total_cents=1,
        )

        result = create_bill(payload, cashier)

        bill = result.bill
        assert bill.status == BillStatus.PAID
        assert bill.sales_type == SalesType.MIXED
        assert bill.subtotal_cents == 6_000
        assert bill.total_cents == 6_000
        assert bill.created_by == cashier.id
        assert bill.document_number == "B-BRANCH-A-0001"
        assert [line.line_number for line in bill.lines] == [1, 2]

    def test_document_numbers_are_per_branch(self, db_session, cashier):
        create_bill(bill_payload(), cashier)
        second = create_bill(bill_payload(), cashier).bill
        other = create_bill(bill_payload(branch_id=OTHER_BRANCH), cashier).bill

        assert second.document_number == "B-BRANCH-A-0002"
        assert other.document_number == "B-BRANCH-B-0001"

    def test_empty_lines_rejected(self, db_session, cashier):
        with pytest.raises(ValidationError):
            create_bill(bill_payload(lines=[]), cashier)
        assert db_session.query(Bill).count() == 0

    @pytest.mark.parametrize("bad_line", [
        {"type": "service", "item_id": "S", "unit_price_cents": -1},
        {"type": "service", "item_id": "S", "unit_price_cents": 100, "quantity": 0},
        {"type": "service", "item_id": "S", "unit_price_cents": 100, "quantity": 1.5},
        {"type": "retail", "item_id": "S", "unit_price_cents": 100},
    ])
    def test_malformed_lines_rejected(self, db_session, cashier, bad_line):
        with pytest.raises(ValidationError):
            create_bill(bill_payload(lines=[bad_line]), cashier)
        assert db_session.query(Bill).count() == 0

    def test_unknown_payment_method_rejected(self, db_session, cashier):
        with pytest.raises(ValidationError):
            create_bill(bill_payload(payment_method="bitcoin"), cashier)

    def test_guest_cannot_redeem_points(self, db_session, cashier):
        with pytest.raises(ValidationError):
            create_bill(bill_payload(client_id=None, loyalty_points_used=5), cashier)

    def test_insufficient_points_writes_nothing(self, db_session, cashier):
        grant_loyalty_points("client-1", BRANCH, 5, "seed")

        with pytest.raises(InsufficientPointsError):
            create_bill(bill_payload(loyalty_points_used=10), cashier)

        assert db_session.query(Bill).count() == 0
        assert get_loyalty_points("client-1", BRANCH) == 5

    def test_create_is_audited(self, db_session, cashier):
        bill = create_bill(bill_payload(), cashier).bill

        entry = db_session.query(AuditLogEntry).filter_by(action="bill.create").one()
        assert entry.bill_id == bill.id
        assert entry.performed_by == cashier.id


class TestSideEffects:
    def test_otc_and_salon_use_deductions(self, db_session, cashier, make_batch, map_service):
        make_batch("P-SHAMPOO", 10, usage_type=UsageType.OTC)
        make_batch("P-DYE", 10, usage_type=UsageType.SALON_USE)
        map_service("S-COLOR", "P-DYE", quantity_per_service=2)

        result = create_bill(bill_payload(lines=[
            service_line("S-COLOR", quantity=2),
            product_line("P-SHAMPOO", quantity=3),
        ]), cashier)

        assert result.warnings == []
        assert stock_service.get_available_quantity(BRANCH, "P-SHAMPOO", UsageType.OTC) == 7
        assert stock_service.get_available_quantity(BRANCH, "P-DYE", UsageType.SALON_USE) == 6
        movements = stock_service.get_stock_movements(BRANCH, bill_id=result.bill.id)
        assert {m.reason for m in movements} == {"Transaction Sale", "Service Use"}

    def test_stock_shortage_degrades_but_bill_stays_paid(self, db_session, cashier, make_batch):
        make_batch("P-SHAMPOO", 1)

        result = create_bill(bill_payload(lines=[product_line("P-SHAMPOO", quantity=3)]), cashier)

        assert result.bill.status == BillStatus.PAID
        step = next(s for s in result.steps if s.name == "stock.otc")
        assert step.outcome == AuditOutcome.DEGRADED
        assert len(result.warnings) == 1
        audit = db_session.query(AuditLogEntry).filter_by(action="stock.otc").one()
        assert audit.outcome == AuditOutcome.DEGRADED

    def test_failing_step_is_contained(self, db_session, cashier, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("referral store offline")

        monkeypatch.setattr(billing_service, "get_referral_code", boom)

        result = create_bill(bill_payload(), cashier)

        assert result.bill.status == BillStatus.PAID
        step = next(s for s in result.steps if s.name == "referral.code")
        assert step.outcome == AuditOutcome.FAILED
        assert any("referral store offline" in w for w in result.warnings)
        assert db_session.get(Bill, result.bill.id).status == BillStatus.PAID
        failed = db_session.query(AuditLogEntry).filter_by(action="referral.code").one()
        assert failed.outcome == AuditOutcome.FAILED

    def test_failed_step_does_not_block_later_steps(self, db_session, cashier, monkeypatch):
        def boom(*args, **kwargs):
            raise RuntimeError("stock service down")

        monkeypatch.setattr(billing_service, "deduct_stock_fifo", boom)

        result = create_bill(bill_payload(lines=[product_line(), service_line()]), cashier)

        names = [s.name for s in result.steps]
        assert names == ["stock.otc", "loyalty.earn", "client.stats", "referral.code"]
        assert [s.outcome for s in result.steps[1:]] == [AuditOutcome.OK] * 3

    def test_redeem_then_earn_on_final_total(self, db_session, cashier, app, monkeypatch):
        monkeypatch.setitem(app.config, "LOYALTY_POINTS_PER_CURRENCY_UNIT", 0.1)
        grant_loyalty_points("client-1", BRANCH, 50, "seed")

        result = create_bill(bill_payload(
            lines=[service_line(price=10_000)],
            loyalty_points_used=10,
        ), cashier)

        bill = result.bill
        assert bill.loyalty_discount_cents == 1_000
        assert bill.total_cents == 9_000
        # 50 - 10 redeemed + floor(90.00 * 0.1) earned
        assert get_loyalty_points("client-1", BRANCH) == 49
        names = [s.name for s in result.steps]
        assert names.index("loyalty.redeem") < names.index("loyalty.earn")

    def test_client_stats_updated(self, db_session, cashier):
        create_bill(bill_payload(lines=[
            service_line("S-CUT", price=3_000),
            service_line("S-WASH", price=1_000),
            product_line(price=500),
        ]), cashier)

        profile = db_session.query(ClientProfile).filter_by(client_id="client-1").one()
        assert profile.visit_count == 2
        assert profile.total_spent_cents == 4_000

    def test_referral_code_issued_after_first_bill(self, db_session, cashier):
        result = create_bill(bill_payload(), cashier)

        step = next(s for s in result.steps if s.name == "referral.code")
        assert step.outcome == AuditOutcome.OK
        assert step.data["referral_code"] == referral_service.get_referral_code("client-1", BRANCH)

    def test_guest_bill_skips_client_steps(self, db_session, cashier):
        result = create_bill(bill_payload(client_id=None), cashier)

        assert result.steps == []
        assert result.bill.client_id is None


class TestRefund:
    def test_full_refund(self, db_session, paid_bill, manager):
        bill = paid_bill()

        refunded = refund_bill(bill.id, reason="Unhappy", actor=manager)

        assert refunded.status == BillStatus.REFUNDED
        assert refunded.refund_amount_cents == bill.total_cents
        assert refunded.refunded_at is not None
        assert refunded.approved_by == manager.id

    def test_partial_refund(self, db_session, paid_bill, manager):
        bill = paid_bill()

        refunded = refund_bill(bill.id, 1_000, "Partial", manager)

        assert refunded.refund_amount_cents == 1_000

    def test_refund_over_total_rejected(self, db_session, paid_bill, manager):
        bill = paid_bill()

        with pytest.raises(ValidationError):
            refund_bill(bill.id, bill.total_cents + 1, "Too much", manager)
        assert db_session.get(Bill, bill.id).status == BillStatus.PAID

    def test_refund_twice_rejected(self, db_session, paid_bill, manager):
        bill = paid_bill()
        refund_bill(bill.id, actor=manager)

        with pytest.raises(AlreadyFinalizedError):
            refund_bill(bill.id, actor=manager)

    def test_refund_does_not_reverse_loyalty(self, db_session, paid_bill, manager):
        bill = paid_bill(lines=[service_line(price=1_000_000)])
        balance = get_loyalty_points("client-1", BRANCH)

        refund_bill(bill.id, actor=manager)

        assert balance == 100
        assert get_loyalty_points("client-1", BRANCH) == balance

    def test_missing_bill(self, db_session, manager):
        with pytest.raises(BillNotFoundError):
            refund_bill(999, actor=manager)


class TestVoid:
    def test_void_records_witness(self, db_session, paid_bill, manager, witness):
        bill = paid_bill()

        voided = void_bill(bill.id, "Entered twice", manager, witness)

        assert voided.status == BillStatus.VOIDED
        assert voided.witness_id == witness.id
        assert voided.witness_email == witness.email
        assert voided.void_reason == "Entered twice"
        assert db_session.query(AuditLogEntry).filter_by(action="bill.void").count() == 1

    def test_void_without_witness(self, db_session, paid_bill, manager):
        bill = paid_bill()

        with pytest.raises(WitnessRequiredError):
            void_bill(bill.id, "Oops", manager, None)
        with pytest.raises(WitnessRequiredError):
            void_bill(bill.id, "Oops", manager, {"email": "no-id@salon.test"})
        assert db_session.get(Bill, bill.id).status == BillStatus.PAID

    def test_witness_required_even_for_missing_bill(self, db_session, manager):
        with pytest.raises(WitnessRequiredError):
            void_bill(999, "Oops", manager, None)

    def test_actor_cannot_witness_own_void(self, db_session, paid_bill, manager):
        bill = paid_bill()

        with pytest.raises(WitnessRequiredError):
            void_bill(bill.id, "Oops", manager, Witness(id=manager.id))

    def test_void_requires_reason(self, db_session, paid_bill, manager, witness):
        bill = paid_bill()

        with pytest.raises(ValidationError):
            void_bill(bill.id, "  ", manager, witness)

    @pytest.mark.parametrize("finalize", ["refund", "void"])
    def test_terminal_states_cannot_be_voided(self, db_session, paid_bill, manager, witness, finalize):
        bill = paid_bill()
        if finalize == "refund":
            refund_bill(bill.id, actor=manager)
        else:
            void_bill(bill.id, "First", manager, witness)

        with pytest.raises(AlreadyFinalizedError):
            void_bill(bill.id, "Second", manager, witness)

    def test_voided_bill_cannot_be_refunded(self, db_session, paid_bill, manager, witness):
        bill = paid_bill()
        void_bill(bill.id, "Mistake", manager, witness)

        with pytest.raises(AlreadyFinalizedError):
            refund_bill(bill.id, actor=manager)


class TestQueries:
    def test_get_bill_by_id_missing(self, db_session):
        with pytest.raises(BillNotFoundError):
            billing_service.get_bill_by_id(12345)

    def test_bills_by_branch_newest_first_with_status(self, db_session, paid_bill, manager):
        first = paid_bill()
        second = paid_bill()
        paid_bill(branch_id=OTHER_BRANCH)
        refund_bill(first.id, actor=manager)

        bills = billing_service.get_bills_by_branch(BRANCH)
        assert [b.id for b in bills] == [second.id, first.id]

        refunded = billing_service.get_bills_by_branch(BRANCH, status=BillStatus.REFUNDED)
        assert [b.id for b in refunded] == [first.id]

    def test_date_bounds_are_whole_day_inclusive(self, db_session, paid_bill):
        bill = paid_bill()
        today = bill.created_at.date()

        assert len(billing_service.get_bills_by_branch(BRANCH, start_date=today, end_date=today)) == 1
        assert billing_service.get_bills_by_branch(BRANCH, start_date=date(2000, 1, 2), end_date=date(2000, 1, 2)) == []

    def test_bills_by_client(self, db_session, paid_bill):
        paid_bill()
        paid_bill(client_id="client-2")

        assert [b.client_id for b in billing_service.get_bills_by_client("client-2")] == ["client-2"]

    def test_daily_summary(self, db_session, paid_bill, manager, witness):
        a = paid_bill(lines=[service_line(price=5_000)])
        b = paid_bill(lines=[service_line(price=3_000)], payment_method="card")
        c = paid_bill(lines=[service_line(price=2_000)])
        refund_bill(b.id, 1_000, "Partial", manager)
        void_bill(c.id, "Mistake", manager, witness)

        summary = billing_service.get_daily_sales_summary(BRANCH, a.created_at.date())

        assert summary["transaction_count"] == 2
        assert summary["gross_sales_cents"] == 8_000
        assert summary["refund_cents"] == 1_000
        assert summary["net_sales_cents"] == 7_000
        assert summary["by_payment_method"] == {"cash": 5_000, "card": 3_000}
        assert summary["by_status"] == {"paid": 1, "refunded": 1, "voided": 1}

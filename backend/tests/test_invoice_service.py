"""
Invoice service tests.

Verifies:
- One live draft per billing session, replaced once its window lapses
- Item add/update/remove keep stock, items and totals consistent
- Session expiry is recorded lazily and reported as SessionExpiredError
- Completion rules and ownership checks
- Listing filters and pagination
"""

from decimal import Decimal

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy.orm import scoped_session

from billdesk.errors import (
    InsufficientStockError,
    NotFoundError,
    PermissionDeniedError,
    SessionExpiredError,
    StateTransitionError,
    ValidationError,
)
from billdesk.extensions import db
from billdesk.models import Invoice, InvoiceItem, Product, User
from billdesk.services.invoice_service import InvoiceFilters, InvoiceService
from billdesk.services.session_clock import Actor


def fresh(db_session, invoice_id) -> Invoice:
    db_session.expire_all()
    return db_session.get(Invoice, invoice_id)


# =============================================================================
# DRAFT LIFECYCLE
# =============================================================================


class TestDraftLifecycle:

    def test_creates_draft_with_fixed_window(self, service, cashier_actor, clock):
        result = service.get_or_create_draft(cashier_actor)

        assert result.created is True
        invoice = result.invoice
        assert invoice.status == "draft"
        assert invoice.session_id == "session-cashier-1"
        assert invoice.session_start_time == clock.current
        assert (invoice.session_end_time - invoice.session_start_time).total_seconds() == 20 * 60
        assert invoice.is_session_expired is False
        assert invoice.invoice_number.startswith("INV-")
        assert result.time_remaining.total_seconds() == 20 * 60

    def test_second_call_returns_same_draft(self, service, cashier_actor, clock):
        first = service.get_or_create_draft(cashier_actor)
        clock.advance(minutes=5)
        second = service.get_or_create_draft(cashier_actor)

        assert second.created is False
        assert second.invoice.id == first.invoice.id
        assert second.time_remaining.total_seconds() == 15 * 60

    def test_lapsed_draft_is_abandoned_and_replaced(self, db_session, service, cashier_actor, clock):
        first = service.get_or_create_draft(cashier_actor)
        first_id = first.invoice.id
        clock.advance(minutes=20, seconds=1)

        second = service.get_or_create_draft(cashier_actor)

        assert second.created is True
        assert second.invoice.id != first_id
        assert second.invoice.session_start_time == clock.current
        old = fresh(db_session, first_id)
        assert old.status == "draft"
        assert old.is_session_expired is True
        assert old.is_abandoned

    def test_cashier_without_session_is_rejected(self, service, cashier):
        with pytest.raises(SessionExpiredError):
            service.get_or_create_draft(Actor(user_id=cashier.id, role="user"))

    def test_cashier_past_session_expiry_is_rejected(self, service, cashier, clock):
        actor = Actor(user_id=cashier.id, role="user", session_id="s1", session_expiry=clock.current)
        with pytest.raises(SessionExpiredError):
            service.get_or_create_draft(actor)

    def test_admin_without_session_is_granted_one(self, db_session, service, admin):
        result = service.get_or_create_draft(Actor(user_id=admin.id, role="admin"))

        assert result.created is True
        assert result.time_remaining is None
        db_session.expire_all()
        assert result.invoice.session_id == db_session.get(User, admin.id).session_id

    def test_admin_draft_survives_window(self, service, admin_actor, clock):
        first = service.get_or_create_draft(admin_actor)
        clock.advance(hours=2)
        second = service.get_or_create_draft(admin_actor)
        assert second.created is False
        assert second.invoice.id == first.invoice.id

    def test_drafts_are_per_user(self, service, cashier_actor, other_actor):
        mine = service.get_or_create_draft(cashier_actor)
        theirs = service.get_or_create_draft(other_actor)
        assert mine.invoice.id != theirs.invoice.id

    def test_mutations_run_on_the_app_scoped_session(self, app, db_session, cashier_actor, product, stock):
        assert isinstance(db.session, scoped_session)
        service = InvoiceService.from_config(db.session, app.config)

        draft = service.get_or_create_draft(cashier_actor).invoice
        invoice, item = service.add_item(cashier_actor, draft.id, product.id, 5)
        invoice, item = service.update_item(cashier_actor, draft.id, item.id, 3)

        assert invoice.total_amount == Decimal("354.00")
        assert stock(product.id) == Decimal("47")

        service.remove_item(cashier_actor, draft.id, item.id)
        assert stock(product.id) == Decimal("50")


# =============================================================================
# ITEMS, STOCK AND TOTALS
# =============================================================================


class TestItems:

    def test_add_item_prices_line_and_reserves_stock(self, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice

        invoice, item = service.add_item(cashier_actor, draft.id, product.id, 5)

        assert item.line_total == Decimal("500.00")
        assert item.gst_amount == Decimal("90.00")
        assert item.total_amount == Decimal("590.00")
        assert invoice.subtotal == Decimal("500.00")
        assert invoice.total_gst == Decimal("90.00")
        assert invoice.total_amount == Decimal("590.00")
        assert stock(product.id) == Decimal("45")

    def test_remove_item_restores_stock_and_zeroes_totals(self, db_session, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 5)

        invoice = service.remove_item(cashier_actor, draft.id, item.id)

        assert stock(product.id) == Decimal("50")
        invoice = fresh(db_session, invoice.id)
        assert invoice.items == []
        assert invoice.subtotal == Decimal("0")
        assert invoice.total_gst == Decimal("0")
        assert invoice.total_amount == Decimal("0")

    def test_adding_same_product_merges_lines(self, db_session, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, first = service.add_item(cashier_actor, draft.id, product.id, 2)
        invoice, merged = service.add_item(cashier_actor, draft.id, product.id, 3)

        assert merged.id == first.id
        assert merged.quantity == Decimal("5")
        assert db_session.query(InvoiceItem).filter_by(invoice_id=draft.id).count() == 1
        assert invoice.total_amount == Decimal("590.00")
        assert stock(product.id) == Decimal("45")

    def test_update_quantity_moves_stock_by_delta(self, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 5)

        invoice, item = service.update_item(cashier_actor, draft.id, item.id, 8)
        assert stock(product.id) == Decimal("42")
        assert invoice.total_amount == Decimal("944.00")

        invoice, item = service.update_item(cashier_actor, draft.id, item.id, 1)
        assert stock(product.id) == Decimal("49")
        assert item.line_total == Decimal("100.00")

    def test_quantity_reduction_succeeds_when_shelf_is_empty(self, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 50)
        assert stock(product.id) == Decimal("0")

        service.update_item(cashier_actor, draft.id, item.id, 10)
        assert stock(product.id) == Decimal("40")

    def test_update_changes_discount(self, service, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 2)

        invoice, item = service.update_item(
            cashier_actor, draft.id, item.id, 2, discount="10", discount_type="percentage"
        )
        assert item.line_total == Decimal("180.00")
        assert item.gst_amount == Decimal("32.40")
        assert invoice.total_amount == Decimal("212.40")

    def test_insufficient_stock_leaves_everything_unchanged(self, db_session, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 45)

        with pytest.raises(InsufficientStockError) as exc_info:
            service.add_item(cashier_actor, draft.id, product.id, 6)

        assert exc_info.value.available == Decimal("5")
        assert stock(product.id) == Decimal("5")
        invoice = fresh(db_session, draft.id)
        assert invoice.items[0].quantity == Decimal("45")
        assert invoice.total_amount == Decimal("5310.00")

    def test_invalid_discount_does_not_touch_stock(self, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        with pytest.raises(ValidationError):
            service.add_item(cashier_actor, draft.id, product.id, 1, discount="500")
        assert stock(product.id) == Decimal("50")

    def test_quantity_finer_than_stored_scale_is_rejected(self, db_session, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice

        with pytest.raises(ValidationError) as exc_info:
            service.add_item(cashier_actor, draft.id, product.id, "1.2345")

        assert "3 decimal places" in exc_info.value.message
        assert stock(product.id) == Decimal("50")
        assert fresh(db_session, draft.id).items == []

    def test_three_place_quantity_is_stored_as_priced(self, db_session, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice

        _, item = service.add_item(cashier_actor, draft.id, product.id, "1.234")

        stored = db_session.get(InvoiceItem, item.id)
        assert Decimal(stored.quantity) == Decimal("1.234")
        assert stored.line_total == Decimal("123.40")
        assert stock(product.id) == Decimal("48.766")

    def test_discount_finer_than_cents_is_rejected(self, service, cashier_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 1)

        with pytest.raises(ValidationError):
            service.update_item(cashier_actor, draft.id, item.id, 2, discount="0.005")
        assert stock(product.id) == Decimal("49")

    @pytest.mark.parametrize("quantity", [0, -2, "abc"])
    def test_invalid_quantity(self, service, cashier_actor, product, quantity):
        draft = service.get_or_create_draft(cashier_actor).invoice
        with pytest.raises(ValidationError):
            service.add_item(cashier_actor, draft.id, product.id, quantity)

    def test_unknown_product(self, service, cashier_actor):
        draft = service.get_or_create_draft(cashier_actor).invoice
        with pytest.raises(NotFoundError):
            service.add_item(cashier_actor, draft.id, 424242, 1)

    def test_inactive_product_cannot_be_added(self, service, cashier_actor, product_factory):
        retired = product_factory(barcode="OLD-1", is_active=False)
        draft = service.get_or_create_draft(cashier_actor).invoice
        with pytest.raises(ValidationError):
            service.add_item(cashier_actor, draft.id, retired.id, 1)

    def test_unknown_item(self, service, cashier_actor):
        draft = service.get_or_create_draft(cashier_actor).invoice
        with pytest.raises(NotFoundError):
            service.remove_item(cashier_actor, draft.id, 99999)

    def test_line_keeps_snapshot_after_catalog_edit(self, db_session, service, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 1)

        catalog = db_session.get(Product, product.id)
        catalog.sales_price = Decimal("999.00")
        catalog.name = "Renamed"
        db_session.commit()

        invoice, item = service.update_item(cashier_actor, draft.id, item.id, 2)
        assert item.product_name == "Basmati Rice 1kg"
        assert item.unit_price == Decimal("100.00")
        assert item.line_total == Decimal("200.00")

    def test_stock_is_conserved_across_edits(self, service, cashier_actor, product, second_product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, rice = service.add_item(cashier_actor, draft.id, product.id, 4)
        _, oil = service.add_item(cashier_actor, draft.id, second_product.id, 7)
        service.update_item(cashier_actor, draft.id, rice.id, 9)
        service.add_item(cashier_actor, draft.id, second_product.id, 1)
        service.remove_item(cashier_actor, draft.id, rice.id)

        assert stock(product.id) == Decimal("50")
        assert stock(second_product.id) == Decimal("12")

    def test_recalculate_totals_is_idempotent(self, service, cashier_actor, product, second_product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 3)
        service.add_item(cashier_actor, draft.id, second_product.id, 2)

        once = service.recalculate_totals(draft.id)
        first = (once.subtotal, once.total_gst, once.total_amount)
        twice = service.recalculate_totals(draft.id)

        assert (twice.subtotal, twice.total_gst, twice.total_amount) == first
        # 300 + 54 gst, 300 + 15 gst
        assert first == (Decimal("600.00"), Decimal("69.00"), Decimal("669.00"))

    def test_product_with_invoice_lines_cannot_be_deleted(self, db_session, service, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 1)

        db_session.delete(db_session.get(Product, product.id))
        with pytest.raises(sa_exc.IntegrityError):
            db_session.commit()
        db_session.rollback()


# =============================================================================
# SESSION EXPIRY
# =============================================================================


class TestSessionExpiry:

    def test_add_after_window_fails_and_marks_expired(self, db_session, service, cashier_actor, product, clock, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        clock.advance(minutes=20, seconds=1)

        with pytest.raises(SessionExpiredError):
            service.add_item(cashier_actor, draft.id, product.id, 1)

        assert fresh(db_session, draft.id).is_session_expired is True
        assert stock(product.id) == Decimal("50")

    def test_next_create_opens_fresh_draft(self, service, cashier_actor, product, clock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        clock.advance(minutes=20, seconds=1)
        with pytest.raises(SessionExpiredError):
            service.add_item(cashier_actor, draft.id, product.id, 1)

        result = service.get_or_create_draft(cashier_actor)
        assert result.created is True
        assert result.invoice.id != draft.id
        assert result.invoice.session_start_time == clock.current

    def test_reserved_stock_stays_with_abandoned_draft(self, service, cashier_actor, product, clock, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 5)
        clock.advance(minutes=21)

        with pytest.raises(SessionExpiredError):
            service.remove_item(cashier_actor, draft.id, item.id)
        assert stock(product.id) == Decimal("45")

    def test_new_login_session_locks_old_draft(self, db_session, service, cashier, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        relogged = Actor(user_id=cashier.id, role="user", session_id="session-cashier-2")

        with pytest.raises(SessionExpiredError):
            service.add_item(relogged, draft.id, product.id, 1)
        assert fresh(db_session, draft.id).is_session_expired is True

    def test_complete_after_window_fails(self, service, cashier_actor, product, clock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 1)
        clock.advance(minutes=25)
        with pytest.raises(SessionExpiredError):
            service.complete(cashier_actor, draft.id)

    def test_admin_edits_after_window(self, service, admin_actor, product, clock, stock):
        draft = service.get_or_create_draft(admin_actor).invoice
        clock.advance(hours=1)
        service.add_item(admin_actor, draft.id, product.id, 2)
        assert stock(product.id) == Decimal("48")


# =============================================================================
# COMPLETION AND OWNERSHIP
# =============================================================================


class TestCompletion:

    def test_empty_invoice_cannot_be_completed(self, service, cashier_actor):
        draft = service.get_or_create_draft(cashier_actor).invoice
        with pytest.raises(StateTransitionError):
            service.complete(cashier_actor, draft.id)

    def test_complete_submits_for_verification(self, service, cashier_actor, product, clock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 1)
        clock.advance(minutes=3)

        invoice = service.complete(
            cashier_actor,
            draft.id,
            customer={"customer_name": "Asha", "customer_phone": "9876543210"},
            payment_method="upi",
            notes="walk-in",
        )

        assert invoice.status == "pending"
        assert invoice.payment_status == "paid"
        assert invoice.payment_method == "upi"
        assert invoice.customer_name == "Asha"
        assert invoice.notes == "walk-in"
        assert invoice.session_end_time == clock.current
        assert invoice.is_session_expired is True
        assert invoice.admin_verified is False

    def test_completed_invoice_is_frozen(self, service, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 1)
        service.complete(cashier_actor, draft.id)

        with pytest.raises(StateTransitionError):
            service.add_item(cashier_actor, draft.id, product.id, 1)
        with pytest.raises(StateTransitionError):
            service.remove_item(cashier_actor, draft.id, item.id)
        with pytest.raises(StateTransitionError):
            service.complete(cashier_actor, draft.id)

    def test_completion_frees_session_for_next_draft(self, service, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 1)
        service.complete(cashier_actor, draft.id)

        result = service.get_or_create_draft(cashier_actor)
        assert result.created is True
        assert result.invoice.id != draft.id

    def test_unknown_payment_method(self, service, cashier_actor, product):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 1)
        with pytest.raises(ValidationError):
            service.complete(cashier_actor, draft.id, payment_method="barter")

    def test_other_users_cannot_touch_draft(self, service, cashier_actor, other_actor, admin_actor, product, stock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        _, item = service.add_item(cashier_actor, draft.id, product.id, 1)

        with pytest.raises(NotFoundError):
            service.add_item(other_actor, draft.id, product.id, 1)
        with pytest.raises(NotFoundError):
            service.update_item(admin_actor, draft.id, item.id, 3)
        with pytest.raises(NotFoundError):
            service.get_invoice(other_actor, draft.id)
        assert stock(product.id) == Decimal("49")

        assert service.get_invoice(admin_actor, draft.id).id == draft.id

    def test_record_print_requires_submitted_invoice(self, service, cashier_actor, product, clock):
        draft = service.get_or_create_draft(cashier_actor).invoice
        service.add_item(cashier_actor, draft.id, product.id, 1)
        with pytest.raises(StateTransitionError):
            service.record_print(cashier_actor, draft.id)

        service.complete(cashier_actor, draft.id)
        service.record_print(cashier_actor, draft.id)
        invoice = service.record_print(cashier_actor, draft.id)
        assert invoice.print_count == 2
        assert invoice.last_printed_at == clock.current
        assert invoice.total_amount == Decimal("118.00")


# =============================================================================
# LISTING
# =============================================================================


class TestListing:

    def _submitted(self, service, actor, product_id, quantity=1):
        draft = service.get_or_create_draft(actor).invoice
        service.add_item(actor, draft.id, product_id, quantity)
        return service.complete(actor, draft.id)

    def test_my_invoices_hides_abandoned_and_completed(self, service, cashier_actor, admin_actor, product, clock):
        abandoned = service.get_or_create_draft(cashier_actor).invoice
        clock.advance(minutes=21)
        pending = self._submitted(service, cashier_actor, product.id)
        service.verification.verify(admin_actor, pending.id, approved=True)
        open_draft = service.get_or_create_draft(cashier_actor).invoice

        page = service.list_invoices(cashier_actor)
        assert [inv.id for inv in page.invoices] == [open_draft.id]

        page = service.list_invoices(cashier_actor, InvoiceFilters(include_completed=True, include_abandoned=True))
        assert {inv.id for inv in page.invoices} == {abandoned.id, pending.id, open_draft.id}

        page = service.list_invoices(cashier_actor, InvoiceFilters(status="completed"))
        assert [inv.id for inv in page.invoices] == [pending.id]

    def test_pagination(self, service, cashier_actor, product, clock):
        for _ in range(3):
            self._submitted(service, cashier_actor, product.id)
            clock.advance(seconds=1)

        page = service.list_invoices(cashier_actor, page=2, limit=2)
        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.invoices) == 1
        body = page.to_dict()
        assert body["pagination"] == {
            "current_page": 2,
            "total_pages": 2,
            "total_items": 3,
            "items_per_page": 2,
        }

    def test_admin_view_filters_by_user(self, service, cashier_actor, other_actor, admin_actor, product):
        mine = self._submitted(service, cashier_actor, product.id)
        self._submitted(service, other_actor, product.id)

        page = service.list_invoices(admin_actor, InvoiceFilters(user_id=cashier_actor.user_id), mine=False)
        assert [inv.id for inv in page.invoices] == [mine.id]
        assert service.list_invoices(admin_actor, mine=False).total == 2

    def test_admin_view_requires_admin(self, service, cashier_actor):
        with pytest.raises(PermissionDeniedError):
            service.list_invoices(cashier_actor, mine=False)

    @pytest.mark.parametrize("kwargs", [
        {"page": 0},
        {"limit": 0},
        {"limit": 101},
        {"filters": InvoiceFilters(status="archived")},
    ])
    def test_invalid_listing_arguments(self, service, cashier_actor, kwargs):
        with pytest.raises(ValidationError):
            service.list_invoices(cashier_actor, **kwargs)

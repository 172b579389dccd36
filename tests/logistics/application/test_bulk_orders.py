"""Application tests for bulk consolidation through the order service."""

import json
from unittest.mock import patch

import pytest
from logistics.guide import issuer
from logistics.guide.guide import GuideStatus
from logistics.order.order import Order, OrderKind, ProductKey
from logistics.order.service import OrderUpdateService
from logistics.order.transitions import EventType, OrderStatus
from logistics.shared.actor import Actor
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError

TOMATO = ProductKey("TOM", "kg", "Tomate")


@pytest.fixture()
def service():
    return OrderUpdateService()


@pytest.fixture()
def actor():
    return Actor(role="armazem", user_id="wh-1", name="Armazém 1")


def _specs():
    return [
        {
            "client_id": client,
            "client_name": f"Client {client}",
            "date": "2026-03-10",
            "carrier": "CTT",
            "items": [{**TOMATO.as_dict(), "qty": qty, "unit_price": 2.0}],
        }
        for client, qty in (("A", 10), ("B", 5))
    ]


def _load(order_id):
    return current_domain.repository_for(Order).get(order_id)


def _started_batch(service, actor):
    batch_id, sub_ids = service.create_bulk_order(_specs(), actor)
    service.start_warehouse_job(batch_id, actor)
    return batch_id, sub_ids


def _tomato(order_id):
    return _load(order_id).item_for(TOMATO)


class TestCreateBulkOrder:
    def test_batch_and_sub_orders_are_persisted(self, service, actor):
        batch_id, sub_ids = service.create_bulk_order(_specs(), actor)

        batch = _load(batch_id)
        assert batch.kind == OrderKind.BULK_BATCH.value
        assert batch.item_for(TOMATO).qty == 15
        assert batch.sub_order_ids == sub_ids
        for sub_id in sub_ids:
            sub = _load(sub_id)
            assert sub.kind == OrderKind.BULK_SUB.value
            assert sub.linked_to_bulk_batch_id == batch_id

    def test_creation_is_audited(self, service, actor):
        batch_id, sub_ids = service.create_bulk_order(_specs(), actor)

        [event] = service.timeline(batch_id)
        assert event.type == EventType.BULK_BATCH_CREATED.value
        assert event.actor_name == "Armazém 1"
        assert event.meta_data["sub_order_ids"] == sub_ids

    def test_starting_the_batch_starts_every_sub_order(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)

        assert _load(batch_id).status == OrderStatus.PREP.value
        assert all(_load(sub_id).status == OrderStatus.PREP.value for sub_id in sub_ids)


class TestCloseFullyPreparedBatch:
    def test_close_distributes_and_advances_sub_orders(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)

        changes = service.close_warehouse_job(
            batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor
        )

        assert [c.order_id for c in changes] == [batch_id, *sub_ids]
        assert _tomato(sub_ids[0]).prepared_qty == 10
        assert _tomato(sub_ids[1]).prepared_qty == 5
        assert all(_load(sub_id).status == OrderStatus.A_FATURAR.value for sub_id in sub_ids)

    def test_batch_is_archived(self, service, actor):
        batch_id, _ = _started_batch(service, actor)
        service.close_warehouse_job(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        batch = _load(batch_id)
        assert batch.status == OrderStatus.ENTREGUE.value
        assert batch.bulk_batch_internal is True
        assert batch.bulk_batch_closed_at is not None

        [closed] = [e for e in service.timeline(batch_id) if e.meta_data.get("archived")]
        assert closed.type == EventType.PREP_CLOSED_OK.value

    def test_one_pending_guide_per_sub_order(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.close_warehouse_job(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        guides = service.shipping_guides()
        assert sorted(str(g.order_id) for g in guides) == sorted(sub_ids)
        assert all(g.status == GuideStatus.PENDENTE.value for g in guides)
        assert all(g.bulk_batch_id == batch_id for g in guides)

    def test_sub_order_timeline_records_the_close(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.close_warehouse_job(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        types = [e.type for e in service.timeline(sub_ids[0])]
        assert types == [EventType.CREATED.value, EventType.SEND_TO_PREP.value, EventType.PREP_CLOSED_OK.value]


class TestPartiallyPreparedBatch:
    def _batch_covered_by_purchase(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.save_warehouse_progress(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 12}], actor)

        repo = current_domain.repository_for(Order)
        batch = repo.get(batch_id)
        batch.item_for(TOMATO).purchased_qty = 3.0
        repo.add(batch)
        return batch_id, sub_ids

    def test_prepared_quantity_is_split_in_proportion(self, service, actor):
        batch_id, sub_ids = self._batch_covered_by_purchase(service, actor)

        service.close_bulk_batch(batch_id, actor)

        assert _tomato(sub_ids[0]).prepared_qty == 8
        assert _tomato(sub_ids[1]).prepared_qty == 4

    def test_short_sub_orders_wait_in_faltas_without_guides(self, service, actor):
        batch_id, sub_ids = self._batch_covered_by_purchase(service, actor)

        changes = service.close_bulk_batch(batch_id, actor)

        assert all(_load(sub_id).status == OrderStatus.FALTAS.value for sub_id in sub_ids)
        assert {c.event_type for c in changes[1:]} == {EventType.PREP_CLOSED_MISSING.value}
        assert service.shipping_guides() == []

    def test_closing_with_missing_items_is_rejected(self, service, actor):
        batch_id, _ = _started_batch(service, actor)
        service.save_warehouse_progress(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 12}], actor)

        with pytest.raises(ValidationError):
            service.close_bulk_batch(batch_id, actor)

    def test_warehouse_close_with_missing_items_sends_batch_to_faltas(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)

        service.close_warehouse_job(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 12}], actor)

        assert _load(batch_id).status == OrderStatus.FALTAS.value
        assert all(_load(sub_id).status == OrderStatus.PREP.value for sub_id in sub_ids)


class TestReplayedClose:
    def test_second_close_is_a_no_op(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.close_warehouse_job(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)
        revisions = [_load(sub_id).revision for sub_id in sub_ids]

        assert service.close_bulk_batch(batch_id, actor) == []

        assert _tomato(sub_ids[0]).prepared_qty == 10
        assert _tomato(sub_ids[1]).prepared_qty == 5
        assert [_load(sub_id).revision for sub_id in sub_ids] == revisions
        assert len(service.shipping_guides()) == 2

    def test_status_patch_on_archived_batch_is_a_no_op(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.close_warehouse_job(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        assert service.update_order_status(batch_id, {"status": "A_FATURAR"}, actor) == []
        assert _tomato(sub_ids[0]).prepared_qty == 10


class TestAtomicClose:
    def test_missing_sub_order_aborts_before_any_change(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.save_warehouse_progress(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        repo = current_domain.repository_for(Order)
        batch = repo.get(batch_id)
        batch.bulk_sub_order_ids = json.dumps([sub_ids[0], "does-not-exist"])
        repo.add(batch)

        with pytest.raises(ObjectNotFoundError):
            service.close_bulk_batch(batch_id, actor)

        assert _load(batch_id).status == OrderStatus.PREP.value
        assert _load(sub_ids[0]).status == OrderStatus.PREP.value
        assert _tomato(sub_ids[0]).prepared_qty == 0

    def test_failure_mid_fan_out_commits_nothing(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.save_warehouse_progress(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        real_on_transition = issuer.on_transition
        calls = []

        def fail_on_second(*args, **kwargs):
            calls.append(args)
            if len(calls) == 2:
                raise RuntimeError("store unavailable")
            return real_on_transition(*args, **kwargs)

        with patch("logistics.order.bulk.issuer.on_transition", side_effect=fail_on_second):
            with pytest.raises(RuntimeError):
                service.close_bulk_batch(batch_id, actor)

        assert _load(batch_id).status == OrderStatus.PREP.value
        assert all(_load(sub_id).status == OrderStatus.PREP.value for sub_id in sub_ids)
        assert _tomato(sub_ids[0]).prepared_qty == 0
        assert service.shipping_guides() == []

    def test_sub_order_in_wrong_status_aborts(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.save_warehouse_progress(batch_id, [{**TOMATO.as_dict(), "prepared_qty": 15}], actor)

        repo = current_domain.repository_for(Order)
        sub = repo.get(sub_ids[1])
        sub.status = OrderStatus.ESPERA.value
        repo.add(sub)

        with pytest.raises(ValidationError):
            service.close_bulk_batch(batch_id, actor)
        assert _load(sub_ids[0]).status == OrderStatus.PREP.value


class TestDelegation:
    def test_sub_order_cannot_be_prepared_on_its_own(self, service, actor):
        _, sub_ids = _started_batch(service, actor)

        with pytest.raises(ValidationError):
            service.close_warehouse_job(sub_ids[0], [], actor, confirm_low_progress=True)

    def test_sub_order_cannot_be_cancelled_while_batch_is_active(self, service, actor):
        _, sub_ids = service.create_bulk_order(_specs(), actor)

        with pytest.raises(ValidationError):
            service.update_order_status(sub_ids[0], {"status": "CANCELADA"}, actor)

    def test_sub_order_cannot_be_sent_to_prep_on_its_own(self, service, actor):
        _, sub_ids = service.create_bulk_order(_specs(), actor)

        with pytest.raises(ValidationError):
            service.update_order_status(sub_ids[0], {"status": "PREP"}, actor)

        assert _load(sub_ids[0]).status == OrderStatus.ESPERA.value

    def test_cancelling_the_batch_cancels_its_sub_orders(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)

        service.update_order_status(batch_id, {"status": "CANCELADA"}, actor)

        assert all(_load(sub_id).status == OrderStatus.CANCELADA.value for sub_id in sub_ids)

    def test_reactivating_the_batch_brings_sub_orders_back(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)
        service.update_order_status(batch_id, {"status": "CANCELADA"}, actor)

        service.reactivate_order(batch_id, actor)

        assert _load(batch_id).status == OrderStatus.ESPERA.value
        assert all(_load(sub_id).status == OrderStatus.ESPERA.value for sub_id in sub_ids)

    def test_sending_the_batch_back_sends_sub_orders_back(self, service, actor):
        batch_id, sub_ids = _started_batch(service, actor)

        service.update_order_status(batch_id, {"status": "ESPERA"}, actor)

        assert all(_load(sub_id).status == OrderStatus.ESPERA.value for sub_id in sub_ids)

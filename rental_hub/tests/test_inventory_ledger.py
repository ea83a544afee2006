import unittest

from rental_fixtures import make_session_factory, seed_product, seed_user

from rental_hub.models.rental_models import InventoryMovement, Product
from rental_hub.services.errors import NotFoundError, RentalValidationError
from rental_hub.services.inventory_service import (
    REASON_RETURN,
    REASON_RETURN_REQUEST,
    apply_inventory_movements,
    build_movement,
    ledger_balance,
)


class InventoryLedgerTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.SessionLocal = make_session_factory()
        self.db = self.SessionLocal()
        self.vendor = seed_user(self.db, "Vendor One", "vendor")
        self.drill = seed_product(self.db, self.vendor, "Drill", stock=5)
        self.saw = seed_product(self.db, self.vendor, "Saw", stock=1)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def test_movement_shifts_available_and_records_ledger_row(self):
        applied = apply_inventory_movements(
            self.db, [build_movement(self.drill.ProductID, 3, REASON_RETURN, "return:1:1:3", order_id=1)]
        )
        self.db.commit()

        self.assertEqual(len(applied), 1)
        self.assertEqual(self.drill.Available, 8)
        self.assertEqual(ledger_balance(self.db, self.drill.ProductID), 3)

    def test_replayed_dedupe_key_is_skipped(self):
        movement = build_movement(self.drill.ProductID, 2, REASON_RETURN, "return:1:1:2")
        apply_inventory_movements(self.db, [movement])
        second = apply_inventory_movements(self.db, [movement])
        self.db.commit()

        self.assertEqual(second, [])
        self.assertEqual(self.drill.Available, 7)
        rows = self.db.query(InventoryMovement).filter(InventoryMovement.DedupeKey == "return:1:1:2").count()
        self.assertEqual(rows, 1)

    def test_restock_past_stock_is_not_clamped(self):
        with self.assertLogs("rental_hub.inventory", level="WARNING"):
            apply_inventory_movements(self.db, [build_movement(self.saw.ProductID, 2, REASON_RETURN, "return:3:2:2")])
        self.db.commit()

        self.assertEqual(self.db.get(Product, self.saw.ProductID).Available, 3)

    def test_batch_is_rejected_whole_when_one_product_is_unknown(self):
        with self.assertRaises(NotFoundError):
            apply_inventory_movements(
                self.db,
                [
                    build_movement(self.drill.ProductID, 2, REASON_RETURN_REQUEST, "return-request:7:drill"),
                    build_movement(9999, 1, REASON_RETURN_REQUEST, "return-request:7:9999"),
                ],
            )
        self.db.rollback()

        self.assertEqual(self.db.get(Product, self.drill.ProductID).Available, 5)
        self.assertEqual(self.db.query(InventoryMovement).count(), 0)

    def test_negative_movement_is_rejected(self):
        with self.assertRaises(RentalValidationError):
            apply_inventory_movements(self.db, [build_movement(self.drill.ProductID, -1, REASON_RETURN, "return:8:1:0")])

        self.assertEqual(self.db.get(Product, self.drill.ProductID).Available, 5)

    def test_duplicate_keys_inside_one_batch_are_rejected(self):
        movement = build_movement(self.drill.ProductID, 1, REASON_RETURN, "return:8:1:1")
        with self.assertRaises(RentalValidationError):
            apply_inventory_movements(self.db, [movement, dict(movement)])

    def test_zero_delta_movements_are_ignored(self):
        applied = apply_inventory_movements(self.db, [build_movement(self.drill.ProductID, 0, REASON_RETURN, "return:1:1:0")])

        self.assertEqual(applied, [])
        self.assertEqual(self.db.query(InventoryMovement).count(), 0)


if __name__ == "__main__":
    unittest.main()

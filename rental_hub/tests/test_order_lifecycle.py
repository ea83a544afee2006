import unittest
from datetime import timedelta

from rental_fixtures import PICKUP_AT, actor_for, make_session_factory, order_payload, seed_product, seed_user

from rental_hub.models.rental_models import InventoryMovement, Invoice, Order, OrderItem, Product
from rental_hub.schemas.orders import (
    CreateOrderDto,
    OrderItemDto,
    PickupItemDto,
    ProcessPickupDto,
    ProcessReturnDto,
    ReturnItemDto,
    SchedulePickupDto,
    UpdateOrderStatusDto,
)
from rental_hub.services.errors import ForbiddenError, InvalidTransitionError, RentalValidationError
from rental_hub.services.order_service import (
    cancel_pickup,
    create_order,
    list_eligible_orders,
    list_orders,
    list_pickups,
    list_returns,
    process_pickup,
    process_return,
    schedule_pickup,
    update_order_status,
)


class OrderLifecycleTests(unittest.TestCase):
    def setUp(self):
        self.engine, self.SessionLocal = make_session_factory()
        self.db = self.SessionLocal()
        self.vendor = seed_user(self.db, "Vendor One", "vendor")
        self.other_vendor = seed_user(self.db, "Vendor Two", "vendor")
        self.customer = seed_user(self.db, "Customer One")
        self.admin = seed_user(self.db, "Admin One", "admin")
        self.drill = seed_product(self.db, self.vendor, "Drill", stock=5, daily_rate=1000, deposit=200)
        self.saw = seed_product(self.db, self.vendor, "Saw", stock=1, daily_rate=400)
        self.vendor_actor = actor_for(self.db, self.vendor)
        self.customer_actor = actor_for(self.db, self.customer)

    def tearDown(self):
        self.db.close()
        self.engine.dispose()

    def _order(self, items):
        order = create_order(self.db, self.customer_actor, order_payload(items))
        self.db.commit()
        return order

    def _product(self, product_id):
        self.db.expire_all()
        return self.db.get(Product, product_id)

    def test_create_order_derives_pricing_and_invoice(self):
        order = self._order([(self.drill.ProductID, 2)])

        self.assertEqual(order.OrderNumber, "RO-00001")
        self.assertEqual(order.Status, "pending")
        self.assertEqual(order.VendorID, self.vendor.UserID)
        self.assertEqual(order.CustomerEmail, self.customer.Email)
        line = order.OrderItems[0]
        self.assertEqual(line.RentalDays, 3)
        self.assertAlmostEqual(float(line.Subtotal), 6000.0)
        self.assertAlmostEqual(float(order.TaxAmount), 1080.0)
        self.assertAlmostEqual(float(order.DepositAmount), 400.0)
        self.assertAlmostEqual(float(order.TotalAmount), 7080.0)

        invoice = self.db.query(Invoice).filter(Invoice.OrderID == order.OrderID).one()
        self.assertEqual(invoice.InvoiceNumber, "INV-00001")
        self.assertEqual(invoice.Status, "pending")
        self.assertAlmostEqual(float(invoice.BalanceAmount), 7080.0)
        self.assertEqual(invoice.DueDate - invoice.IssueDate, timedelta(days=15))

    def test_create_order_rejects_bad_payloads(self):
        with self.assertRaises(RentalValidationError):
            create_order(self.db, self.customer_actor, CreateOrderDto(items=[]))
        with self.assertRaises(RentalValidationError):
            create_order(
                self.db,
                self.customer_actor,
                CreateOrderDto(
                    items=[OrderItemDto(productId=self.drill.ProductID, quantity=1)],
                    pickupDate=PICKUP_AT,
                    returnDate=PICKUP_AT - timedelta(days=1),
                ),
            )
        with self.assertRaises(RentalValidationError):
            create_order(self.db, self.customer_actor, order_payload([(self.drill.ProductID, 0)]))

    def test_pickup_then_partial_return_end_to_end(self):
        order = self._order([(self.drill.ProductID, 3)])

        process_pickup(self.db, self.vendor_actor, order.OrderID)
        self.db.commit()
        self.assertEqual(order.Status, "picked_up")
        self.assertEqual(order.OrderItems[0].PickedUpQuantity, 3)
        self.assertEqual(self._product(self.drill.ProductID).Available, 5)

        payload = ProcessReturnDto(items=[ReturnItemDto(productId=self.drill.ProductID, returnedQuantity=2)])
        order = process_return(self.db, self.vendor_actor, order.OrderID, payload)
        self.db.commit()
        self.assertEqual(order.Status, "completed")
        self.assertIsNotNone(order.ActualReturnDate)
        self.assertEqual(order.OrderItems[0].ReturnedQuantity, 2)
        self.assertEqual(self._product(self.drill.ProductID).Available, 7)

        # Same call again changes nothing.
        order = process_return(self.db, self.vendor_actor, order.OrderID, payload)
        self.db.commit()
        self.assertEqual(order.OrderItems[0].ReturnedQuantity, 2)
        self.assertEqual(self._product(self.drill.ProductID).Available, 7)

    def test_completed_order_rejects_new_return_quantities(self):
        order = self._order([(self.drill.ProductID, 3)])
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        process_return(
            self.db,
            self.vendor_actor,
            order.OrderID,
            ProcessReturnDto(items=[ReturnItemDto(productId=self.drill.ProductID, returnedQuantity=2)]),
        )
        self.db.commit()

        with self.assertRaises(InvalidTransitionError):
            process_return(
                self.db,
                self.vendor_actor,
                order.OrderID,
                ProcessReturnDto(items=[ReturnItemDto(productId=self.drill.ProductID, returnedQuantity=3)]),
            )

    def test_partial_pickups_leave_available_untouched(self):
        order = self._order([(self.drill.ProductID, 3)])

        process_pickup(
            self.db,
            self.vendor_actor,
            order.OrderID,
            ProcessPickupDto(items=[PickupItemDto(productId=self.drill.ProductID, pickedUpQuantity=1)]),
        )
        process_pickup(
            self.db,
            self.vendor_actor,
            order.OrderID,
            ProcessPickupDto(items=[PickupItemDto(productId=self.drill.ProductID, pickedUpQuantity=3)]),
        )
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        self.db.commit()

        self.assertEqual(order.OrderItems[0].PickedUpQuantity, 3)
        self.assertEqual(self._product(self.drill.ProductID).Available, 5)
        self.assertEqual(self.db.query(InventoryMovement).count(), 0)

    def test_pickups_are_not_blocked_by_catalog_availability(self):
        first = self._order([(self.drill.ProductID, 3)])
        second = self._order([(self.drill.ProductID, 3)])

        process_pickup(self.db, self.vendor_actor, first.OrderID)
        process_pickup(self.db, self.vendor_actor, second.OrderID)
        self.db.commit()

        self.assertEqual(first.Status, "picked_up")
        self.assertEqual(second.Status, "picked_up")
        self.assertEqual(second.OrderItems[0].PickedUpQuantity, 3)
        self.assertEqual(self._product(self.drill.ProductID).Available, 5)

    def test_pickup_rejects_quantities_outside_line_bounds(self):
        order = self._order([(self.drill.ProductID, 2)])
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        self.db.commit()

        with self.assertRaises(RentalValidationError):
            process_pickup(
                self.db,
                self.vendor_actor,
                order.OrderID,
                ProcessPickupDto(items=[PickupItemDto(productId=self.drill.ProductID, pickedUpQuantity=3)]),
            )
        with self.assertRaises(RentalValidationError):
            process_pickup(
                self.db,
                self.vendor_actor,
                order.OrderID,
                ProcessPickupDto(items=[PickupItemDto(productId=self.drill.ProductID, pickedUpQuantity=1)]),
            )
        with self.assertRaises(RentalValidationError):
            process_pickup(
                self.db,
                self.vendor_actor,
                order.OrderID,
                ProcessPickupDto(items=[PickupItemDto(productId=self.saw.ProductID, pickedUpQuantity=1)]),
            )

    def test_failed_multi_item_pickup_leaves_no_partial_mutation(self):
        order = self._order([(self.drill.ProductID, 2), (self.saw.ProductID, 1)])

        with self.assertRaises(RentalValidationError):
            process_pickup(
                self.db,
                self.vendor_actor,
                order.OrderID,
                ProcessPickupDto(
                    items=[
                        PickupItemDto(productId=self.drill.ProductID, pickedUpQuantity=2),
                        PickupItemDto(productId=self.saw.ProductID, pickedUpQuantity=2),
                    ]
                ),
            )
        self.db.rollback()

        picked = [line.PickedUpQuantity for line in self.db.query(OrderItem).filter(OrderItem.OrderID == order.OrderID)]
        self.assertEqual(picked, [0, 0])
        self.assertEqual(self.db.get(Order, order.OrderID).Status, "pending")

    def test_failed_multi_item_return_leaves_no_partial_mutation(self):
        order = self._order([(self.drill.ProductID, 2), (self.saw.ProductID, 1)])
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        self.db.commit()

        with self.assertRaises(RentalValidationError):
            process_return(
                self.db,
                self.vendor_actor,
                order.OrderID,
                ProcessReturnDto(
                    items=[
                        ReturnItemDto(productId=self.drill.ProductID, returnedQuantity=2),
                        ReturnItemDto(productId=self.saw.ProductID, returnedQuantity=2),
                    ]
                ),
            )
        self.db.rollback()

        self.assertEqual(self._product(self.drill.ProductID).Available, 5)
        self.assertEqual(self._product(self.saw.ProductID).Available, 1)
        returned = [line.ReturnedQuantity for line in self.db.query(OrderItem).filter(OrderItem.OrderID == order.OrderID)]
        self.assertEqual(returned, [0, 0])
        self.assertEqual(self.db.get(Order, order.OrderID).Status, "picked_up")
        self.assertEqual(self.db.query(InventoryMovement).count(), 0)

    def test_quantities_stay_ordered_after_pickups_and_returns(self):
        order = self._order([(self.drill.ProductID, 2), (self.saw.ProductID, 1)])
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        process_return(self.db, self.vendor_actor, order.OrderID)
        self.db.commit()

        for line in order.OrderItems:
            self.assertLessEqual(line.ReturnedQuantity, line.PickedUpQuantity)
            self.assertLessEqual(line.PickedUpQuantity, line.Quantity)
        self.assertEqual(self._product(self.drill.ProductID).Available, 7)
        self.assertEqual(self._product(self.saw.ProductID).Available, 2)

    def test_return_applies_charges_and_notes(self):
        order = self._order([(self.drill.ProductID, 1)])
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        order = process_return(
            self.db,
            self.vendor_actor,
            order.OrderID,
            ProcessReturnDto(
                items=[ReturnItemDto(productId=self.drill.ProductID, returnedQuantity=1, damageNotes="Cracked casing")],
                lateFee=50,
                damageCharges=120,
                damageNotes="Returned dusty",
            ),
        )
        self.db.commit()

        self.assertAlmostEqual(float(order.LateFee), 50.0)
        self.assertAlmostEqual(float(order.DamageCharges), 120.0)
        self.assertIn("Return Notes: Returned dusty", order.Notes)
        self.assertEqual(order.OrderItems[0].Notes, "Cracked casing")

    def test_return_requires_order_out_with_customer(self):
        order = self._order([(self.drill.ProductID, 1)])

        with self.assertRaises(InvalidTransitionError):
            process_return(self.db, self.vendor_actor, order.OrderID)

    def test_generic_status_update_follows_transition_table(self):
        order = self._order([(self.drill.ProductID, 1)])

        update_order_status(self.db, self.vendor_actor, order.OrderID, UpdateOrderStatusDto(status="confirmed"))
        self.assertEqual(order.Status, "confirmed")
        with self.assertRaises(InvalidTransitionError):
            update_order_status(self.db, self.vendor_actor, order.OrderID, UpdateOrderStatusDto(status="completed"))
        with self.assertRaises(InvalidTransitionError):
            update_order_status(self.db, self.vendor_actor, order.OrderID, UpdateOrderStatusDto(status="active"))
        with self.assertRaises(RentalValidationError):
            update_order_status(self.db, self.vendor_actor, order.OrderID, UpdateOrderStatusDto(status="lost"))

    def test_status_update_requires_owning_vendor(self):
        order = self._order([(self.drill.ProductID, 1)])

        with self.assertRaises(ForbiddenError):
            update_order_status(
                self.db, actor_for(self.db, self.other_vendor), order.OrderID, UpdateOrderStatusDto(status="confirmed")
            )
        with self.assertRaises(ForbiddenError):
            process_pickup(self.db, self.customer_actor, order.OrderID)
        update_order_status(self.db, actor_for(self.db, self.admin), order.OrderID, UpdateOrderStatusDto(status="confirmed"))
        self.assertEqual(order.Status, "confirmed")

    def test_cancel_pickup_steps_back_then_cancels(self):
        order = self._order([(self.drill.ProductID, 1)])
        update_order_status(self.db, self.vendor_actor, order.OrderID, UpdateOrderStatusDto(status="confirmed"))

        cancel_pickup(self.db, self.vendor_actor, order.OrderID)
        self.assertEqual(order.Status, "pending")
        cancel_pickup(self.db, self.vendor_actor, order.OrderID)
        self.assertEqual(order.Status, "cancelled")
        with self.assertRaises(InvalidTransitionError):
            cancel_pickup(self.db, self.vendor_actor, order.OrderID)
        with self.assertRaises(InvalidTransitionError):
            process_pickup(self.db, self.vendor_actor, order.OrderID)

    def test_cancel_pickup_is_refused_once_units_are_out(self):
        order = self._order([(self.drill.ProductID, 1)])
        process_pickup(self.db, self.vendor_actor, order.OrderID)
        self.db.commit()

        with self.assertRaises(InvalidTransitionError):
            cancel_pickup(self.db, self.vendor_actor, order.OrderID)
        self.assertEqual(order.Status, "picked_up")
        self.assertEqual(order.OrderItems[0].PickedUpQuantity, 1)

    def test_schedule_pickup_prepends_time_note(self):
        order = self._order([(self.drill.ProductID, 1)])
        order.Notes = "Gate B"

        schedule_pickup(
            self.db,
            self.vendor_actor,
            order.OrderID,
            SchedulePickupDto(pickupDate=PICKUP_AT + timedelta(days=1), pickupTime="10:30"),
        )

        self.assertEqual(order.Status, "pending")
        self.assertEqual(order.PickupDate, PICKUP_AT + timedelta(days=1))
        self.assertTrue(order.Notes.startswith("Scheduled pickup time: 10:30."))
        self.assertIn("Gate B", order.Notes)

    def test_listings_are_scoped_by_role(self):
        first = self._order([(self.drill.ProductID, 1)])
        second = self._order([(self.saw.ProductID, 1)])
        update_order_status(self.db, self.vendor_actor, first.OrderID, UpdateOrderStatusDto(status="confirmed"))
        process_pickup(self.db, self.vendor_actor, second.OrderID)
        self.db.commit()

        self.assertEqual([o.OrderID for o in list_orders(self.db, self.customer_actor)], [second.OrderID, first.OrderID])
        self.assertEqual(list_orders(self.db, actor_for(self.db, self.other_vendor)), [])
        self.assertEqual(len(list_orders(self.db, actor_for(self.db, self.admin))), 2)
        self.assertEqual(len(list_pickups(self.db, self.vendor_actor)), 2)
        with self.assertRaises(ForbiddenError):
            list_pickups(self.db, self.customer_actor)

        returns = list_returns(self.db, self.vendor_actor, now=second.ReturnDate + timedelta(hours=1))
        self.assertEqual([row["orderID"] for row in returns], [second.OrderID])
        self.assertTrue(returns[0]["isOverdue"])

        eligible = list_eligible_orders(self.db, self.customer_actor)
        self.assertEqual([o.OrderID for o in eligible], [second.OrderID])


if __name__ == "__main__":
    unittest.main()

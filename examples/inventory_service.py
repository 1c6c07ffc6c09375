"""
Inventory Service Example

This example wires the messaging core to an in-memory inventory:
- Loading broker settings from the environment (AMQP_URI, INVENTORY_*)
- Starting the service, degraded if no broker is reachable
- Reserving stock for an order the way the order.created consumer would
- Reading the health report served by the HTTP layer

Run with: python examples/inventory_service.py
"""

import asyncio
import json
import logging

from inventorybus import (
    BrokerConfig,
    InMemoryInventoryRepository,
    InventoryItem,
    InventoryMessaging,
)


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("Inventory Service Example")
    print("=" * 60)

    # =========================================================================
    # Step 1: Seed the inventory
    # =========================================================================
    repository = InMemoryInventoryRepository(
        [
            InventoryItem(product_id="widget", name="Widget", quantity=25, price=2.5),
            InventoryItem(product_id="gadget", name="Gadget", quantity=11, price=10.0),
        ]
    )

    # =========================================================================
    # Step 2: Start messaging
    # =========================================================================
    # Keep the automatic retries short so the example finishes quickly
    # when no broker is running.
    config = BrokerConfig.from_env()
    config.reconnect_base_delay = 0.5
    config.max_reconnect_attempts = 2

    async with InventoryMessaging(repository, config) as messaging:
        print("\n1. Broker status:")
        print(f"   {messaging.status().to_dict()}")

        # =====================================================================
        # Step 3: Handle an order
        # =====================================================================
        print("\n2. Reserving stock for order o-100:")
        await messaging.handlers.handle_order_created(
            {
                "orderId": "o-100",
                "items": [
                    {"productId": "widget", "quantity": 5},
                    {"productId": "gadget", "quantity": 3},
                ],
            }
        )
        for product_id in ("widget", "gadget"):
            item = await repository.get(product_id)
            assert item is not None
            print(f"   {item.name}: {item.quantity} left")

        low = await repository.find_low_stock(config.low_stock_threshold)
        print(f"   Low stock: {[item.product_id for item in low]}")

        # =====================================================================
        # Step 4: Health report
        # =====================================================================
        print("\n3. Health report:")
        print(json.dumps(messaging.health(), indent=2))

    print("\n" + "=" * 60)
    print("Example completed successfully!")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())

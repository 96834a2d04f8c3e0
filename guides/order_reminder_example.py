"""Remind a customer about an unfinished order every two days for a month."""

import asyncio
from datetime import datetime, timedelta, timezone

from longsteps import LongSteps, Process, get_storage, register_process


class Shop:
    """Stand-in for the application object injected as context."""

    def __init__(self):
        self.finished_orders = set()

    def send_reminder(self, order_id):
        print(f"📧 Reminder sent for order {order_id}")


@register_process(name="order-reminder")
class OrderReminder(Process):
    def __init__(self, *, shop, **kwargs):
        super().__init__(**kwargs)
        self.shop = shop

    def build_first_step(self):
        return self.new_step("check_order", self.manager.now() + timedelta(hours=1))

    def check_order(self):
        order_id = self.state["order_id"]
        if order_id in self.shop.finished_orders:
            return self.final_step({**self.state, "outcome": "finished"})
        started_at = datetime.fromisoformat(self.state["started_at"])
        if self.manager.now() - started_at > timedelta(days=30):
            return self.final_step({**self.state, "outcome": "abandoned"})
        self.shop.send_reminder(order_id)
        return self.new_step("check_order", self.manager.now() + timedelta(days=2))


async def main():
    """Start a reminder, then sweep as a cron job would."""
    shop = Shop()
    manager = LongSteps(storage=get_storage("sqlite://reminders.db"))

    record = await manager.instantiate_process(
        "order-reminder",
        {"shop": shop},
        {"order_id": 123, "started_at": datetime.now(timezone.utc).isoformat()},
    )
    print(f"✅ Process started: {record.id} (first step at {record.run_at})")

    # Normally run from cron: `longsteps run -i order_reminder_example`
    count = await manager.run_due_processes({"shop": shop})
    print(f"🔁 Ran {count} due step(s)")


if __name__ == "__main__":
    asyncio.run(main())

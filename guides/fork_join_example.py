"""Fork child processes and resume once all of them have terminated."""

import asyncio

from longsteps import LongSteps, LongStepsConfig, Process, register_process
from longsteps.storage import InMemoryProcessStorage


@register_process(name="quote")
class QuoteRequest(Process):
    def build_first_step(self):
        return self.new_step("collect")

    def collect(self):
        supplier = self.state["supplier"]
        return self.final_step({"supplier": supplier, "price": len(supplier) * 10})


@register_process(name="purchase")
class Purchase(Process):
    def build_first_step(self):
        return self.new_step("request_quotes")

    async def request_quotes(self):
        children = [
            await self.manager.instantiate_process("quote", {}, {"supplier": supplier})
            for supplier in self.state["suppliers"]
        ]
        return self.new_step("pick_cheapest", state={"quotes": [c.id for c in children]})

    async def pick_cheapest(self):
        return await self.wait_processes(self.state["quotes"], self._pick)

    def _pick(self, quotes):
        best = min(quotes, key=lambda quote: quote.state["price"])
        return self.final_step({"winner": best.state["supplier"]})


async def main():
    manager = LongSteps(
        storage=InMemoryProcessStorage(), config=LongStepsConfig(join_poll_interval=1)
    )
    purchase = await manager.instantiate_process(
        "purchase", {}, {"suppliers": ["acme", "globex", "initech"]}
    )

    while not (await manager.find_process(purchase.id)).is_terminated:
        count = await manager.run_due_processes()
        print(f"🔁 Sweep ran {count} step(s)")
        await asyncio.sleep(1)

    final = await manager.find_process(purchase.id)
    print(f"🏆 Winner: {final.state['winner']}")


if __name__ == "__main__":
    asyncio.run(main())

# driver.py
# Runs a scenario script of ActionSteps against two or three actors.
#
#   Pending → Executing(step i) → [after_test] → Executing(step i+1) → … → Completed
#
# Steps run strictly one at a time. The only concurrency is a step marked
# blocking=False: it is started as a task and the driver moves on to the
# next step. Every such task is awaited before the run completes, so nothing
# is left dangling.
#
# The first failure ends the scenario. Nothing is retried.

import asyncio
from typing import Any, Iterable

from cnd_harness import display
from cnd_harness.actor import Actor, Body, Predicate, swap_locations
from cnd_harness.errors import ConfigurationError, ScenarioError
from cnd_harness.models import ActionStep, StepRecord


class SwapTestDriver:
    """
    Sequences swap actions across actors and checks post-conditions.

    Example:
        driver = SwapTestDriver([alice, bob])
        locations = await driver.create_swap("alice", "bob", swap_request)
        await driver.run(steps, locations)
    """

    def __init__(self, actors: Iterable[Actor] | dict[str, Actor]) -> None:
        if isinstance(actors, dict):
            self.actors = dict(actors)
        else:
            self.actors = {actor.name: actor for actor in actors}
        self.records: list[StepRecord] = []
        self._background: list[tuple[int, ActionStep, asyncio.Task]] = []

    def actor(self, name: str) -> Actor:
        try:
            return self.actors[name]
        except KeyError:
            raise ConfigurationError(f"No actor named {name!r} in this scenario") from None

    # ------------------------------------------------------------------
    # Swap setup
    # ------------------------------------------------------------------

    async def create_swap(
        self,
        initiator: str,
        counterparty: str,
        request: Body,
        protocol: str = "rfc003",
        list_url: str = "/swaps",
        timeout: float | None = 30.0,
    ) -> dict[str, str]:
        """
        Post the swap from `initiator` and wait until `counterparty` lists it.

        Returns the location of the swap as seen by each actor.
        """
        location = await self.actor(initiator).post_swap(request, protocol=protocol)

        listing = await self.actor(counterparty).poll_until(
            list_url, lambda body: bool(swap_locations(body)), timeout=timeout
        )
        counterparty_location = swap_locations(listing)[0]
        display.swap_created(counterparty, counterparty_location)

        return {initiator: location, counterparty: counterparty_location}

    async def poll_all(
        self,
        locations: dict[str, str],
        predicate: Predicate,
        timeout: float | None = None,
    ) -> dict[str, Body]:
        """Poll every actor's view of the swap until all satisfy `predicate`."""
        names = list(locations)
        bodies = await asyncio.gather(
            *(self.actor(name).poll_until(locations[name], predicate, timeout=timeout) for name in names)
        )
        return dict(zip(names, bodies))

    # ------------------------------------------------------------------
    # Step execution
    # ------------------------------------------------------------------

    async def _execute(self, step: ActionStep, locations: dict[str, str]) -> Any:
        actor = self.actor(step.actor)
        location = locations.get(step.actor)
        if location is None:
            raise ConfigurationError(f"No swap location known for {step.actor!r}")
        return await actor.do_action(
            location, step.action, body=step.request_body, query=step.uri_query
        )

    def _fail(self, index: int, step: ActionStep, description: str, exc: BaseException) -> ScenarioError:
        self.records.append(
            StepRecord(
                index=index,
                actor=step.actor,
                action=step.action,
                passed=False,
                background=not step.blocking,
                detail=str(exc),
            )
        )
        display.step_failed(index, description, str(exc) or type(exc).__name__)
        return ScenarioError(index, description, exc)

    def _record_background(self, index: int, step: ActionStep) -> None:
        self.records.append(
            StepRecord(index=index, actor=step.actor, action=step.action, passed=True, background=True)
        )

    async def _check_after_test(self, index: int, step: ActionStep, locations: dict[str, str]) -> None:
        after_test = step.after_test
        display.after_test_start(after_test.description, after_test.timeout)
        try:
            await asyncio.wait_for(after_test.callback(dict(locations)), after_test.timeout)
        except asyncio.TimeoutError as exc:
            timeout = TimeoutError(f"{after_test.description!r} did not complete within {after_test.timeout}s")
            raise self._fail(index, step, after_test.description, timeout) from exc
        except Exception as exc:
            raise self._fail(index, step, after_test.description, exc) from exc
        display.after_test_passed(after_test.description)

    def _reap_background(self) -> None:
        """Surface background tasks that have already failed."""
        still_running = []
        failure: tuple[int, ActionStep, BaseException] | None = None
        for index, step, task in self._background:
            if not task.done():
                still_running.append((index, step, task))
                continue
            exc = task.exception()
            if exc is None:
                self._record_background(index, step)
            elif failure is None:
                failure = (index, step, exc)
        self._background = still_running

        if failure is not None:
            index, step, exc = failure
            raise self._fail(index, step, step.description, exc) from exc

    async def await_background(self) -> None:
        """Synchronisation point: wait for every non-blocking step started so far."""
        while self._background:
            index, step, task = self._background.pop(0)
            try:
                await task
            except Exception as exc:
                raise self._fail(index, step, step.description, exc) from exc
            self._record_background(index, step)

    async def _cancel_background(self) -> None:
        tasks = [task for _, _, task in self._background]
        self._background = []
        for task in tasks:
            task.cancel()
        # Retrieves failures that were never reaped, so none is reported as lost.
        await asyncio.gather(*tasks, return_exceptions=True)

    async def run(self, steps: list[ActionStep], locations: dict[str, str]) -> list[StepRecord]:
        """
        Execute `steps` in order against the swap at `locations`.

        Raises ScenarioError at the first failing action, post-condition or
        background task; no later step runs.
        """
        self.records = []
        total = len(steps)
        display.scenario_start(total)

        try:
            for index, step in enumerate(steps):
                display.step_start(index, total, step.description)

                if not step.blocking:
                    task = asyncio.create_task(self._execute(step, locations), name=step.description)
                    self._background.append((index, step, task))
                    display.step_background(step.description)
                    continue

                try:
                    await self._execute(step, locations)
                except Exception as exc:
                    raise self._fail(index, step, step.description, exc) from exc

                if step.after_test is not None:
                    await self._check_after_test(index, step, locations)

                self.records.append(
                    StepRecord(index=index, actor=step.actor, action=step.action, passed=True)
                )
                display.step_passed(index)
                self._reap_background()

            await self.await_background()
        except ScenarioError:
            await self._cancel_background()
            display.scenario_summary(self.records)
            raise

        display.scenario_summary(self.records)
        return self.records

    async def run_swap(
        self,
        initiator: str,
        counterparty: str,
        request: Body,
        steps: list[ActionStep],
        protocol: str = "rfc003",
        list_url: str = "/swaps",
    ) -> list[StepRecord]:
        locations = await self.create_swap(initiator, counterparty, request, protocol=protocol, list_url=list_url)
        return await self.run(steps, locations)

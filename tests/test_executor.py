"""Tests for the workflow executor orchestration loop."""

import asyncio

import pytest

from automation_engine.core.dispatcher import DispatcherRegistry
from automation_engine.core.builtin_handlers import register_builtin_handlers
from automation_engine.core.exceptions import CancellationError, DispatcherRegistryError, NodeDispatchError
from automation_engine.core.run_registry import ActiveRunRegistry
from automation_engine.models.core import (
    DispatchResult,
    ExecutionOptions,
    ExecutionStatusEnum,
)

from conftest import ScriptedDispatcher, make_node, make_workflow


def linear_workflow():
    return make_workflow(
        [make_node("t", "trigger"), make_node("a", "action"), make_node("b", "action")],
        [("t", "a"), ("a", "b")],
    )


class TestScenarios:
    """End-to-end runs over small graphs."""

    @pytest.mark.asyncio
    async def test_trigger_action_action_propagates_data(self, executor, dispatcher, options):
        """Test T -> A -> B: A sees the trigger payload, B sees A's output."""
        dispatcher.script.update({"t": {"x": 1}, "a": {"sent": True, "to": "ops"}})
        options = options.model_copy(update={"trigger_data": {"x": 1}})

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.success is True
        assert result.error is None
        assert dispatcher.input_for("t") == {"x": 1}
        assert dispatcher.input_for("a") == {"x": 1}
        assert dispatcher.input_for("b") == {"sent": True, "to": "ops"}

        entries = result.execution.node_executions
        assert [entry.node_id for entry in entries] == ["t", "a", "b"]
        assert all(entry.status == ExecutionStatusEnum.COMPLETED for entry in entries)
        assert result.execution.status == ExecutionStatusEnum.COMPLETED

    @pytest.mark.asyncio
    async def test_false_condition_halts_run_as_completed(self, executor, dispatcher, options):
        """Test T -> C -> A where C's predicate is false: the run stops after C."""
        dispatcher.script["c"] = {"ok": True}
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("c", "logic", "condition-logic", condition="output.ok == false"),
                make_node("a", "action"),
            ],
            [("t", "c"), ("c", "a")],
        )

        result = await executor.execute_workflow(workflow, options)

        assert result.success is True
        assert result.execution.status == ExecutionStatusEnum.COMPLETED
        assert [entry.node_id for entry in result.execution.node_executions] == ["t", "c"]
        assert "a" not in dispatcher.dispatched()

    @pytest.mark.asyncio
    async def test_true_condition_continues(self, executor, dispatcher, options):
        """Test a satisfied predicate lets downstream nodes run."""
        dispatcher.script["c"] = {"ok": True}
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("c", "logic", "condition-logic", condition="output.ok == true"),
                make_node("a", "action"),
            ],
            [("t", "c"), ("c", "a")],
        )

        result = await executor.execute_workflow(workflow, options)

        assert result.success is True
        assert dispatcher.dispatched() == ["t", "c", "a"]

    @pytest.mark.asyncio
    async def test_condition_sees_run_variables(self, executor, dispatcher, options):
        """Test the predicate scope includes variables seeded from the trigger."""
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("c", "logic", "condition-logic", condition="amount > 100"),
                make_node("a", "action"),
            ],
            [("t", "c"), ("c", "a")],
        )

        small = await executor.execute_workflow(
            workflow, options.model_copy(update={"trigger_data": {"amount": 5}}))
        large = await executor.execute_workflow(
            workflow, options.model_copy(update={"trigger_data": {"amount": 500}}))

        assert [e.node_id for e in small.execution.node_executions] == ["t", "c"]
        assert [e.node_id for e in large.execution.node_executions] == ["t", "c", "a"]

    @pytest.mark.asyncio
    async def test_condition_evaluation_error_is_treated_as_false(self, executor, dispatcher, options):
        """Test an unevaluable predicate halts the run without failing it."""
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("c", "logic", "condition-logic", condition="missing_variable == 1"),
                make_node("a", "action"),
            ],
            [("t", "c"), ("c", "a")],
        )

        result = await executor.execute_workflow(workflow, options)

        assert result.execution.status == ExecutionStatusEnum.COMPLETED
        assert "a" not in dispatcher.dispatched()

    @pytest.mark.asyncio
    async def test_condition_node_without_condition_passes(self, executor, dispatcher, options):
        """Test a condition node with no configured predicate does not halt."""
        workflow = make_workflow(
            [make_node("t", "trigger"), make_node("c", "logic", "condition-logic"), make_node("a", "action")],
            [("t", "c"), ("c", "a")],
        )

        result = await executor.execute_workflow(workflow, options)

        assert dispatcher.dispatched() == ["t", "c", "a"]
        assert result.success is True


class TestInputResolution:
    """Test cases for how node inputs are assembled."""

    @pytest.mark.asyncio
    async def test_root_node_receives_trigger_payload(self, executor, dispatcher, options):
        """Test a node without incoming edges receives exactly the trigger payload."""
        payload = {"order": {"id": 7}, "items": [1, 2]}
        workflow = make_workflow([make_node("t", "trigger")], [])

        await executor.execute_workflow(workflow, options.model_copy(update={"trigger_data": payload}))

        assert dispatcher.input_for("t") == payload

    @pytest.mark.asyncio
    async def test_root_node_without_payload_receives_empty_mapping(self, executor, dispatcher, options):
        """Test a missing trigger payload becomes an empty mapping."""
        workflow = make_workflow([make_node("t", "trigger")], [])

        await executor.execute_workflow(workflow, options)

        assert dispatcher.input_for("t") == {}

    @pytest.mark.asyncio
    async def test_two_upstream_mappings_are_merged(self, executor, dispatcher, options):
        """Test outputs {a:1} and {b:2} merge into {a:1, b:2}."""
        dispatcher.script.update({"l": {"a": 1}, "r": {"b": 2}})
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("l", "logic"),
                make_node("r", "logic"),
                make_node("j", "action"),
            ],
            [("t", "l"), ("t", "r"), ("l", "j"), ("r", "j")],
        )

        await executor.execute_workflow(workflow, options)

        assert dispatcher.input_for("j") == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_key_collision_last_writer_in_plan_order_wins(self, executor, dispatcher, options):
        """Test colliding keys take the value of the later node in the plan."""
        dispatcher.script.update({"l": {"k": "first"}, "r": {"k": "second"}})
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("l", "logic"),
                make_node("r", "logic"),
                make_node("j", "action"),
            ],
            # Edge order deliberately reversed relative to plan order
            [("t", "l"), ("t", "r"), ("r", "j"), ("l", "j")],
        )

        await executor.execute_workflow(workflow, options)

        assert dispatcher.input_for("j") == {"k": "second"}

    @pytest.mark.asyncio
    async def test_non_mapping_output_is_keyed_by_source_id(self, executor, dispatcher, options):
        """Test scalar and list outputs are inserted under the source node id."""
        dispatcher.script.update({"l": 42, "r": {"b": 2}})
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("l", "logic"),
                make_node("r", "logic"),
                make_node("j", "action"),
            ],
            [("t", "l"), ("t", "r"), ("l", "j"), ("r", "j")],
        )

        await executor.execute_workflow(workflow, options)

        assert dispatcher.input_for("j") == {"l": 42, "b": 2}

    @pytest.mark.asyncio
    async def test_successful_none_output_is_keyed_by_source_id(self, executor, dispatcher, options):
        """Test a node that succeeded with no output still appears in downstream input."""
        dispatcher.script.update({"l": None, "r": {"b": 5}})
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("l", "logic"),
                make_node("r", "logic"),
                make_node("j", "action"),
            ],
            [("t", "l"), ("t", "r"), ("l", "j"), ("r", "j")],
        )

        await executor.execute_workflow(workflow, options)

        assert dispatcher.input_for("j") == {"l": None, "b": 5}

    @pytest.mark.asyncio
    async def test_failed_node_output_is_merged_when_present(self, executor, dispatcher, options):
        """Test a tolerated failure contributes its partial output but not a None placeholder."""
        dispatcher.script.update({
            "l": DispatchResult(success=False, error="partial", output={"partial": True}),
            "r": DispatchResult(success=False, error="nothing"),
        })
        workflow = make_workflow(
            [
                make_node("t", "trigger"),
                make_node("l", "logic", continueOnError=True),
                make_node("r", "logic", continueOnError=True),
                make_node("j", "action"),
            ],
            [("t", "l"), ("t", "r"), ("l", "j"), ("r", "j")],
        )

        await executor.execute_workflow(workflow, options)

        assert dispatcher.input_for("j") == {"partial": True}

    @pytest.mark.asyncio
    async def test_downstream_mutation_does_not_alter_recorded_output(self, executor, options):
        """Test node inputs are copies of upstream outputs."""

        class MutatingDispatcher(ScriptedDispatcher):
            async def execute(self, node, input_data, context):
                if node.id == "a":
                    input_data["mutated"] = True
                return await super().execute(node, input_data, context)

        dispatcher = MutatingDispatcher({"t": {"x": 1}})
        executor.dispatcher = dispatcher

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.execution.node_executions[0].output == {"x": 1}


class TestFailurePolicy:
    """Test cases for node failure handling."""

    @pytest.mark.asyncio
    async def test_fatal_failure_aborts_and_copies_error(self, executor, dispatcher, options):
        """Test a failing node without continueOnError stops the run."""
        dispatcher.script["a"] = DispatchResult(success=False, error="SMTP unavailable")

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.success is False
        assert result.execution.status == ExecutionStatusEnum.FAILED
        assert result.error == "SMTP unavailable"
        assert result.execution.error == "SMTP unavailable"
        assert [entry.node_id for entry in result.execution.node_executions] == ["t", "a"]
        assert result.execution.node_executions[1].status == ExecutionStatusEnum.FAILED
        assert "b" not in dispatcher.dispatched()

    @pytest.mark.asyncio
    async def test_raised_exception_is_treated_as_failure(self, executor, dispatcher, options):
        """Test a dispatcher exception becomes the node and run error."""
        dispatcher.script["a"] = RuntimeError("connection reset")

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.success is False
        assert result.error == "connection reset"
        assert result.execution.node_executions[1].error == "connection reset"

    @pytest.mark.asyncio
    async def test_continue_on_error_proceeds(self, executor, dispatcher, options):
        """Test continueOnError records the failure and runs later nodes."""
        dispatcher.script["a"] = RuntimeError("boom")
        workflow = make_workflow(
            [make_node("t", "trigger"), make_node("a", "action", continueOnError=True), make_node("b", "action")],
            [("t", "a"), ("a", "b")],
        )

        result = await executor.execute_workflow(workflow, options)

        assert result.success is True
        assert result.execution.status == ExecutionStatusEnum.COMPLETED
        statuses = {entry.node_id: entry.status for entry in result.execution.node_executions}
        assert statuses == {
            "t": ExecutionStatusEnum.COMPLETED,
            "a": ExecutionStatusEnum.FAILED,
            "b": ExecutionStatusEnum.COMPLETED,
        }
        # Failed node contributes nothing downstream
        assert dispatcher.input_for("b") == {}

    @pytest.mark.asyncio
    async def test_failure_without_message_gets_default_error(self, executor, dispatcher, options):
        """Test an unsuccessful result without error text still yields a run error."""
        dispatcher.script["a"] = DispatchResult(success=False)

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.error == "Node a execution failed"


class TestRetry:
    """Test cases for bounded dispatch retries."""

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, executor, dispatcher, options):
        """Test a node that fails once then succeeds completes with one retry."""
        dispatcher.script["a"] = [RuntimeError("flaky"), {"sent": True}]

        result = await executor.execute_workflow(
            linear_workflow(), options.model_copy(update={"max_retries": 2}))

        assert result.success is True
        entry = result.execution.get_node_executions("a")[0]
        assert entry.retry_count == 1
        assert entry.output == {"sent": True}
        assert dispatcher.dispatched().count("a") == 2

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, executor, dispatcher, options):
        """Test a permanently failing node is attempted max_retries + 1 times."""
        dispatcher.script["a"] = RuntimeError("down")

        result = await executor.execute_workflow(
            linear_workflow(), options.model_copy(update={"max_retries": 3}))

        assert result.success is False
        assert dispatcher.dispatched().count("a") == 4
        assert result.execution.get_node_executions("a")[0].retry_count == 3

    @pytest.mark.asyncio
    async def test_node_configuration_overrides_max_retries(self, executor, dispatcher, options):
        """Test maxRetries on the node takes precedence over the run option."""
        dispatcher.script["a"] = RuntimeError("down")
        workflow = make_workflow(
            [make_node("t", "trigger"), make_node("a", "action", maxRetries=1)],
            [("t", "a")],
        )

        await executor.execute_workflow(workflow, options.model_copy(update={"max_retries": 5}))

        assert dispatcher.dispatched().count("a") == 2

    @pytest.mark.asyncio
    async def test_non_recoverable_errors_are_not_retried(self, executor, dispatcher, options):
        """Test errors flagged non-recoverable fail immediately."""
        dispatcher.script["a"] = DispatcherRegistryError("Unknown action type: fax-action")

        result = await executor.execute_workflow(
            linear_workflow(), options.model_copy(update={"max_retries": 3}))

        assert dispatcher.dispatched().count("a") == 1
        assert result.error == "Unknown action type: fax-action"

    @pytest.mark.asyncio
    async def test_recoverable_engine_errors_are_retried(self, executor, dispatcher, options):
        """Test recoverable engine errors raised by a dispatcher are retried."""
        dispatcher.script["a"] = [NodeDispatchError("rate limited"), {"ok": True}]

        result = await executor.execute_workflow(
            linear_workflow(), options.model_copy(update={"max_retries": 1}))

        assert result.success is True


class TestGraphFailures:
    """Test cases for runs ending before any node is dispatched."""

    @pytest.mark.asyncio
    async def test_invalid_graph_fails_with_joined_errors(self, executor, dispatcher, options):
        """Test validation errors become the run error and a record still exists."""
        workflow = make_workflow([make_node("t", "trigger")], [("t", "ghost"), ("t", "t")])

        result = await executor.execute_workflow(workflow, options)

        assert result.success is False
        assert result.execution.status == ExecutionStatusEnum.FAILED
        assert result.error.startswith("Workflow validation failed: ")
        assert "non-existent target node: 'ghost'" in result.error
        assert "self-loop" in result.error
        assert result.execution.node_executions == []
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_empty_workflow_fails(self, executor, options):
        """Test a workflow without nodes fails validation."""
        result = await executor.execute_workflow(make_workflow([], []), options)

        assert result.success is False
        assert "Workflow must have at least one node" in result.error

    @pytest.mark.asyncio
    async def test_cycle_fails_without_hanging(self, executor, dispatcher, options):
        """Test a graph with a cycle among connected nodes fails."""
        workflow = make_workflow(
            [make_node("t", "trigger"), make_node("x", "logic"), make_node("y", "logic")],
            [("t", "x"), ("x", "y"), ("y", "x")],
        )

        result = await asyncio.wait_for(executor.execute_workflow(workflow, options), timeout=5)

        assert result.success is False
        assert result.execution.status == ExecutionStatusEnum.FAILED
        assert "cycle" in result.error
        assert dispatcher.calls == []

    @pytest.mark.asyncio
    async def test_fully_cyclic_graph_has_no_executable_nodes(self, executor, options):
        """Test a graph where every node is on a cycle yields no executable nodes."""
        workflow = make_workflow(
            [make_node("x", "logic"), make_node("y", "logic")],
            [("x", "y"), ("y", "x")],
        )

        result = await executor.execute_workflow(workflow, options)

        assert result.success is False
        assert result.error == "No executable nodes found in workflow"

    @pytest.mark.asyncio
    async def test_action_chaining_rejected_by_default(self, executor_factory, dispatcher, options):
        """Test the default validator treats actions as terminal."""
        executor = executor_factory(dispatcher)

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.success is False
        assert "actions cannot have outgoing edges" in result.error


class TestCancellation:
    """Test cases for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_running_execution(self, executor, dispatcher, options):
        """Test cancelling mid-run lets the in-flight node finish and skips the next."""
        release = dispatcher.gate("a")
        task = asyncio.create_task(executor.execute_workflow(linear_workflow(), options))
        await dispatcher.started["a"].wait()

        execution_id = executor.get_active_executions()[0]
        assert executor.get_execution_status(execution_id) == ExecutionStatusEnum.RUNNING

        assert executor.cancel_execution(execution_id) is True
        release.set()
        result = await task

        assert result.success is False
        assert result.error is None
        assert result.execution.status == ExecutionStatusEnum.CANCELLED
        assert result.execution.end_time is not None
        assert [entry.node_id for entry in result.execution.node_executions] == ["t", "a"]
        assert result.execution.node_executions[1].status == ExecutionStatusEnum.COMPLETED
        assert "b" not in dispatcher.dispatched()

    @pytest.mark.asyncio
    async def test_cancelled_status_survives_in_flight_failure(self, executor, dispatcher, options):
        """Test a node failing after cancellation keeps the run cancelled."""
        dispatcher.script["a"] = DispatchResult(success=False, error="late failure")
        release = dispatcher.gate("a")
        task = asyncio.create_task(executor.execute_workflow(linear_workflow(), options))
        await dispatcher.started["a"].wait()

        executor.cancel_execution(executor.get_active_executions()[0])
        release.set()
        result = await task

        assert result.execution.status == ExecutionStatusEnum.CANCELLED
        assert result.execution.error == "late failure"

    @pytest.mark.asyncio
    async def test_cancellation_raised_by_node_is_not_a_failure(self, executor, dispatcher, options):
        """Test a node interrupted by cancellation leaves the run cancelled without an error."""
        dispatcher.script["a"] = CancellationError()
        release = dispatcher.gate("a")
        task = asyncio.create_task(executor.execute_workflow(
            linear_workflow(), options.model_copy(update={"max_retries": 3})))
        await dispatcher.started["a"].wait()

        executor.cancel_execution(executor.get_active_executions()[0])
        release.set()
        result = await task

        assert result.execution.status == ExecutionStatusEnum.CANCELLED
        assert result.error is None
        assert result.execution.error is None
        assert dispatcher.dispatched() == ["t", "a"]
        assert result.execution.node_executions[1].status == ExecutionStatusEnum.CANCELLED
        assert result.execution.node_executions[1].error == "Execution cancelled"

    @pytest.mark.asyncio
    async def test_cancellation_error_without_cancel_fails_run(self, executor, dispatcher, options):
        """Test a stray cancellation error from a handler fails an uncancelled run."""
        dispatcher.script["a"] = CancellationError()

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.execution.status == ExecutionStatusEnum.FAILED
        assert result.error == "Execution cancelled"

    @pytest.mark.asyncio
    async def test_cancel_during_delay_node(self, options):
        """Test cancelling while delay-logic sleeps stops the run as cancelled."""
        from automation_engine.core.executor import WorkflowExecutor

        executor = WorkflowExecutor(register_builtin_handlers(DispatcherRegistry()))
        workflow = make_workflow(
            [make_node("t", "trigger"), make_node("d", "logic", "delay-logic", delayMs=5000),
             make_node("a", "action")],
            [("t", "d"), ("d", "a")],
        )
        task = asyncio.create_task(executor.execute_workflow(workflow, options))
        while not executor.get_active_executions():
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)

        executor.cancel_execution(executor.get_active_executions()[0])
        result = await asyncio.wait_for(task, timeout=2)

        assert result.execution.status == ExecutionStatusEnum.CANCELLED
        assert result.error is None
        assert [entry.node_id for entry in result.execution.node_executions] == ["t", "d"]
        assert result.execution.node_executions[1].status == ExecutionStatusEnum.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_unknown_execution_returns_false(self, executor):
        """Test cancelling an id that was never active."""
        assert executor.cancel_execution("does-not-exist") is False

    @pytest.mark.asyncio
    async def test_cancel_finished_execution_returns_false(self, executor, options):
        """Test cancelling a finished run."""
        result = await executor.execute_workflow(linear_workflow(), options)

        assert executor.cancel_execution(result.execution.id) is False


class TestActiveRuns:
    """Test cases for the active-run registry as seen through the executor."""

    @pytest.mark.asyncio
    async def test_registry_released_on_every_outcome(self, executor, dispatcher, options):
        """Test completed and failed runs leave no registry entries."""
        await executor.execute_workflow(linear_workflow(), options)
        dispatcher.script["a"] = RuntimeError("boom")
        await executor.execute_workflow(linear_workflow(), options)
        await executor.execute_workflow(make_workflow([], []), options)

        assert executor.get_active_executions() == []
        assert len(executor.run_registry) == 0

    @pytest.mark.asyncio
    async def test_status_is_none_once_finished(self, executor, options):
        """Test status lookups only cover active runs."""
        result = await executor.execute_workflow(linear_workflow(), options)

        assert executor.get_execution_status(result.execution.id) is None

    @pytest.mark.asyncio
    async def test_separate_executors_do_not_share_runs(self, dispatcher, executor_factory, options):
        """Test each executor owns its registry."""
        first = executor_factory(dispatcher, allow_action_chaining=True)
        second = executor_factory(ScriptedDispatcher(), allow_action_chaining=True)
        release = dispatcher.gate("a")

        task = asyncio.create_task(first.execute_workflow(linear_workflow(), options))
        await dispatcher.started["a"].wait()

        assert len(first.get_active_executions()) == 1
        assert second.get_active_executions() == []
        assert second.cancel_execution(first.get_active_executions()[0]) is False

        release.set()
        await task

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_isolated(self, dispatcher, executor_factory, options):
        """Test concurrent runs keep their own records and variables."""
        registry = ActiveRunRegistry()
        executor = executor_factory(dispatcher, allow_action_chaining=True, run_registry=registry)

        results = await asyncio.gather(*[
            executor.execute_workflow(linear_workflow(), options.model_copy(update={"trigger_data": {"n": n}}))
            for n in range(5)
        ])

        assert len({result.execution.id for result in results}) == 5
        for n, result in enumerate(results):
            assert result.success is True
            assert result.execution.trigger_data == {"n": n}
            assert result.execution.node_executions[1].input == {"node": "t"}
        assert len(registry) == 0


class TestExecutionRecord:
    """Test cases for the audit record produced by a run."""

    @pytest.mark.asyncio
    async def test_record_fields(self, executor, options):
        """Test attribution, timing and trigger metadata are recorded."""
        options = options.model_copy(update={"trigger_data": {"x": 1}})

        result = await executor.execute_workflow(linear_workflow(), options)
        execution = result.execution

        assert execution.workflow_id == "wf-1"
        assert execution.organization_id == "org-1"
        assert execution.user_id == "user-1"
        assert execution.triggered_by == "trigger"
        assert execution.trigger_data == {"x": 1}
        assert execution.end_time >= execution.start_time
        assert execution.duration >= 0
        for entry in execution.node_executions:
            assert entry.execution_id == execution.id
            assert entry.end_time >= entry.start_time
            assert entry.duration >= 0
            assert entry.node_name == entry.node_id.upper()

    @pytest.mark.asyncio
    async def test_manual_trigger_without_payload(self, executor, options):
        """Test runs without a payload are recorded as manual."""
        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.execution.triggered_by == "manual"

    @pytest.mark.asyncio
    async def test_explicit_triggered_by_is_kept(self, executor, options):
        """Test an explicit trigger source overrides the derived one."""
        options = options.model_copy(update={"triggered_by": "schedule"})

        result = await executor.execute_workflow(linear_workflow(), options)

        assert result.execution.triggered_by == "schedule"

    @pytest.mark.asyncio
    async def test_dry_run_with_registry(self, options):
        """Test dry runs record intent for actions without invoking their handlers."""
        from automation_engine.core.executor import WorkflowExecutor

        calls = []
        registry = register_builtin_handlers(DispatcherRegistry())
        registry.register_handler("action", "email-action", lambda node, data, ctx: calls.append(node.id))
        executor = WorkflowExecutor(registry)
        workflow = make_workflow([make_node("t", "trigger"), make_node("a", "action")], [("t", "a")])

        result = await executor.execute_workflow(
            workflow, ExecutionOptions(organization_id="org-1", dry_run=True, trigger_data={"x": 1}))

        assert result.success is True
        assert calls == []
        assert result.execution.node_executions[1].output == {
            "dryRun": True,
            "action": "email-action",
            "input": {"x": 1},
        }

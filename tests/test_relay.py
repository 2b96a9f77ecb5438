"""Tests for the streaming relay state machine and job lifecycle."""

import asyncio

import pytest

from conformer_web.core.exceptions import ContainerError, JobSlotBusyError, WorkspaceError
from conformer_web.jobs.events import LogEvent, TerminalEvent
from conformer_web.jobs.models import JobStatus, PipelineParameters, RelayState
from conformer_web.pipeline.relay import ReferenceUpload


def params(**overrides):
    values = dict(smiles="CCO", sample_size=1000, max_ensemble_size=20, dielectric=1.0)
    values.update(overrides)
    return PipelineParameters(**values)


async def run_job(relay, upload=None, **overrides):
    job = await relay.prepare(params(**overrides), upload)
    stream = relay.start(job)
    events = [event async for event in stream.events()]
    await stream.task
    return job, events


@pytest.mark.asyncio
async def test_successful_job_streams_logs_then_one_terminal(relay, container):
    container.add_results("conf_0.sdf", "conf_0.xyz", "notes.txt")

    job, events = await run_job(relay)

    assert all(isinstance(e, LogEvent) for e in events[:-1])
    terminal = events[-1]
    assert isinstance(terminal, TerminalEvent)
    assert sum(isinstance(e, TerminalEvent) for e in events) == 1
    assert terminal.status == "completed"
    assert terminal.job_id == job.id
    assert terminal.output_files == [
        f"temp_{job.id}/cluster_rep_conformers/conf_0.sdf",
        f"temp_{job.id}/cluster_rep_conformers/conf_0.xyz",
    ]
    assert "".join(terminal.logs) == "".join(e.log for e in events[:-1])
    assert "clustering" in "".join(terminal.logs)
    assert job.relay_state == RelayState.CLOSED
    assert job.exit_code == 0
    assert not relay.slot.busy


@pytest.mark.asyncio
async def test_no_result_directory_is_completed_with_no_files(relay, container):
    job, events = await run_job(relay)

    assert events[-1].status == "completed"
    assert events[-1].output_files == []
    assert job.status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_result_directory_without_cluster_dir(relay, container):
    container.on_spawn = lambda c: (c.root / "app" / "temp_run").mkdir()

    _, events = await run_job(relay)

    assert events[-1].status == "completed"
    assert events[-1].output_files == []


@pytest.mark.asyncio
async def test_failed_process_keeps_logs_and_drops_files(relay, container):
    container.add_results("conf_0.sdf")
    container.set_program(stdout=["step 1"], stderr=["boom"], exit_code=2)

    job, events = await run_job(relay)

    terminal = events[-1]
    assert terminal.status == "failed"
    assert terminal.output_files == []
    assert "step 1" in "".join(terminal.logs)
    assert "boom" in "".join(terminal.logs)
    assert terminal.error is None
    assert job.exit_code == 2
    assert not (relay.workspace.job_dir(job.id) / "cluster_rep_conformers").exists()


@pytest.mark.asyncio
async def test_reference_file_is_staged_and_listed(relay, container):
    container.add_results("conf_0.sdf")
    upload = ReferenceUpload(filename="ref.sdf", data=b"ref data")

    job, events = await run_job(relay, upload=upload)

    assert (container.root / "app" / "ref.sdf").read_bytes() == b"ref data"
    assert "--ref-confo-path /app/ref.sdf" in container.spawned_scripts[0]
    assert events[-1].output_files[-1] == f"temp_{job.id}/ref.sdf"


@pytest.mark.asyncio
async def test_copy_failure_fails_job_by_default(relay, container):
    container.add_results("conf_0.sdf")
    container.fail_copy_out = True

    job, events = await run_job(relay)

    assert events[-1].status == "failed"
    assert events[-1].error
    assert events[-1].output_files == []
    assert job.exit_code == 0
    assert not relay.slot.busy


@pytest.mark.asyncio
async def test_copy_failure_can_degrade_to_empty(relay, container, test_settings):
    test_settings.artifact_failure_policy = "empty"
    container.add_results("conf_0.sdf")
    container.fail_copy_out = True

    _, events = await run_job(relay)

    assert events[-1].status == "completed"
    assert events[-1].output_files == []


@pytest.mark.asyncio
async def test_timeout_kills_process_and_fails(relay, container, test_settings):
    test_settings.pipeline_timeout_seconds = 0.5
    container.set_program(stdout=["started"], sleep=30)

    job, events = await asyncio.wait_for(run_job(relay), timeout=10)

    assert events[-1].status == "failed"
    assert "timed out" in events[-1].error
    assert "timed out" in "".join(events[-1].logs)


@pytest.mark.asyncio
async def test_second_prepare_is_rejected_while_running(relay, container):
    container.set_program(sleep=0.5)
    first = await relay.prepare(params())
    stream = relay.start(first)

    with pytest.raises(JobSlotBusyError):
        await relay.prepare(params())

    [event async for event in stream.events()]
    await stream.task
    second = await relay.prepare(params())
    assert relay.slot.active is second
    second_stream = relay.start(second)
    events = [event async for event in second_stream.events()]
    await second_stream.task
    assert events[-1].status == "completed"


@pytest.mark.asyncio
async def test_container_cleanup_failure_aborts_before_spawn(relay, container):
    container.fail_remove = True

    with pytest.raises(ContainerError):
        await relay.prepare(params())

    assert container.spawned_scripts == []
    assert not relay.slot.busy


@pytest.mark.asyncio
async def test_workspace_failure_aborts_before_spawn(relay, container, monkeypatch):
    def broken(job_id):
        raise WorkspaceError("disk full")

    monkeypatch.setattr(relay.workspace, "prepare", broken)

    with pytest.raises(WorkspaceError):
        await relay.prepare(params())

    assert container.removed_patterns == []
    assert container.spawned_scripts == []
    assert not relay.slot.busy


@pytest.mark.asyncio
async def test_spawn_error_still_emits_terminal(relay, container):
    async def broken_spawn(script):
        raise OSError("docker not found")

    container.spawn = broken_spawn

    job, events = await run_job(relay)

    assert len(events) == 1
    assert events[0].status == "failed"
    assert "docker not found" in events[0].error
    assert job.relay_state == RelayState.CLOSED


@pytest.mark.asyncio
async def test_consecutive_jobs_clear_previous_workspace(relay, container):
    container.add_results("conf_0.sdf")
    first, _ = await run_job(relay)
    first_dir = relay.workspace.job_dir(first.id)
    assert first_dir.exists()

    second, events = await run_job(relay)

    assert not first_dir.exists()
    assert events[-1].output_files == [f"temp_{second.id}/cluster_rep_conformers/conf_0.sdf"]


async def first_log(stream):
    events = stream.events()
    first = await asyncio.wait_for(events.__anext__(), timeout=10)
    assert isinstance(first, LogEvent)
    return events


@pytest.mark.asyncio
async def test_cancelled_job_reports_failed_and_kills_process(relay, container):
    container.add_results("conf_0.sdf")
    container.set_program(stdout=["sampling"], sleep=30)
    job = await relay.prepare(params())
    stream = relay.start(job)
    events = await first_log(stream)

    stream.task.cancel()
    rest = [event async for event in events]

    with pytest.raises(asyncio.CancelledError):
        await stream.task
    terminals = [e for e in rest if isinstance(e, TerminalEvent)]
    assert len(terminals) == 1
    assert terminals[0].status == "failed"
    assert terminals[0].output_files == []
    assert "cancelled" in terminals[0].error
    assert "sampling" in "".join(terminals[0].logs)
    assert await asyncio.wait_for(stream.process.wait(), timeout=10) != 0
    assert job.status == JobStatus.FAILED
    assert job.relay_state == RelayState.CLOSED
    assert not relay.slot.busy


@pytest.mark.asyncio
async def test_shutdown_drains_running_jobs(relay, container):
    container.set_program(stdout=["sampling"], sleep=30)
    job = await relay.prepare(params())
    stream = relay.start(job)
    events = await first_log(stream)

    await asyncio.wait_for(relay.shutdown(), timeout=10)

    rest = [event async for event in events]
    assert rest[-1].status == "failed"
    assert stream.task.cancelled()
    assert await asyncio.wait_for(stream.process.wait(), timeout=10) != 0
    assert not relay.slot.busy


@pytest.mark.asyncio
async def test_shutdown_without_jobs_is_a_no_op(relay):
    await relay.shutdown()
    assert not relay.slot.busy

import json
import logging

import pytest

from conftest import RecordingSink, make_candidate
from snap_recovery.clients.memory import LoggingTelemetrySink
from snap_recovery.models.telemetry import JobLogEntry, JobOperation, JobStatus
from snap_recovery.services.telemetry import TelemetryRecorder


def entry(**extra) -> JobLogEntry:
    return JobLogEntry.for_snapshot(
        make_candidate("vm-1"),
        job_id="job-1",
        batch_id="batch-1",
        operation=JobOperation.CREATE_START,
        status=JobStatus.IN_PROGRESS,
        message="Creating VM vm-1",
        **extra,
    )


def test_entry_carries_snapshot_details():
    e = entry(ip_address="10.0.0.5")

    assert e.vm_size == "Standard_B2s"
    assert e.disk_profile == "os"
    assert e.snapshot_name == "vm-1-snap"
    assert e.ip_address == "10.0.0.5"


@pytest.mark.asyncio
async def test_flush_waits_for_pending_writes():
    sink = RecordingSink()
    recorder = TelemetryRecorder(sink)

    recorder.emit(entry())
    recorder.emit(entry())
    await recorder.flush()

    assert len(sink.entries) == 2


@pytest.mark.asyncio
async def test_sink_failures_are_swallowed(caplog):
    recorder = TelemetryRecorder(RecordingSink(fail=True))

    recorder.emit(entry())
    with caplog.at_level(logging.WARNING):
        await recorder.flush()

    assert "Telemetry write failed for job job-1" in caplog.text


def test_emit_without_loop_drops_entry():
    sink = RecordingSink()

    TelemetryRecorder(sink).emit(entry())

    assert sink.entries == []


@pytest.mark.asyncio
async def test_logging_sink_writes_camel_case_json(caplog):
    with caplog.at_level(logging.INFO, logger="snap_recovery.telemetry"):
        await LoggingTelemetrySink().record(entry())

    record = json.loads(caplog.records[-1].getMessage())
    assert record["jobOperation"] == "VM Create Start"
    assert record["vmName"] == "vm-1"
    assert "vmId" not in record

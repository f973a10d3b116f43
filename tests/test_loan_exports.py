from datetime import date

import pytest

from loan_console.core.errors import ExportError, RemoteError
from loan_console.services.loan_exports import ExportDispatcher, export_filename

from conftest import FakeDirectory


def test_export_filename_includes_filter_and_date():
    today = date(2026, 3, 14)

    assert export_filename("all", "csv", today) == "loan_applications_all_2026-03-14.csv"
    assert export_filename("overdue", "excel", today) == "loan_applications_overdue_2026-03-14.xlsx"


@pytest.mark.asyncio
async def test_request_export_passes_filter_and_search():
    directory = FakeDirectory()
    dispatcher = ExportDispatcher(directory)

    exported = await dispatcher.request_export("overdue", search="asha", fmt="csv")

    assert directory.export_calls == [("overdue", "asha", "csv")]
    assert exported.content == b"id,status\n"
    assert exported.filename.startswith("loan_applications_overdue_")
    assert exported.media_type == "text/csv"


@pytest.mark.asyncio
async def test_unknown_format_rejected_before_any_call():
    directory = FakeDirectory()

    with pytest.raises(ExportError):
        await ExportDispatcher(directory).request_export("all", fmt="pdf")

    assert directory.export_calls == []


@pytest.mark.asyncio
async def test_remote_failure_becomes_export_error():
    directory = FakeDirectory()
    directory.export_error = RemoteError("Export service down", status_code=503)

    with pytest.raises(ExportError) as excinfo:
        await ExportDispatcher(directory).request_export("all")

    assert excinfo.value.message == "Export service down"
    assert excinfo.value.remote_status == 503

"""Tests for the audit trail."""

import json

import pytest

from shared.models import CallStatus, HttpMethod, ToolDefinition

TOOL = ToolDefinition(
    name="log_food",
    description="Log food",
    endpoint_template="/gpt-food",
    http_method=HttpMethod.POST,
)


class TestAuditLogger:
    """Tests for AuditLogger."""

    def test_create_entry_redacts(self, tmp_path):
        """Test that sensitive argument values are masked, nested ones too."""
        from fastnow_mcp.audit import AuditLogger

        audit = AuditLogger(log_path=str(tmp_path / "audit.log"))
        entry = audit.create_entry(
            TOOL,
            {"name": "Banana", "token": "t", "meta": {"api_key": "k", "note": "ok"}},
            CallStatus.SUCCESS,
            user_id="user-1",
            rpc_id=5,
        )

        assert entry.arguments == {
            "name": "Banana",
            "token": "[REDACTED]",
            "meta": {"api_key": "[REDACTED]", "note": "ok"},
        }
        assert entry.tool_name == "log_food"
        assert entry.http_method == HttpMethod.POST
        assert entry.rpc_id == 5

    @pytest.mark.asyncio
    async def test_buffered_until_flush(self, tmp_path):
        """Test that entries are buffered and written as JSON lines."""
        from fastnow_mcp.audit import AuditLogger

        path = tmp_path / "audit.log"
        audit = AuditLogger(log_path=str(path), buffer_size=10)

        await audit.log(audit.create_entry(TOOL, {}, CallStatus.SUCCESS))
        await audit.log(audit.create_entry(TOOL, {}, CallStatus.INVALID, error="bad"))

        assert audit.pending == 2
        assert not path.exists()

        await audit.flush()

        assert audit.pending == 0
        entries = [json.loads(line) for line in path.read_text().splitlines()]
        assert [e["status"] for e in entries] == ["success", "invalid"]
        assert entries[1]["error"] == "bad"

    @pytest.mark.asyncio
    async def test_disabled(self, tmp_path):
        """Test that a disabled audit trail records nothing."""
        from fastnow_mcp.audit import AuditLogger

        path = tmp_path / "sub" / "audit.log"
        audit = AuditLogger(log_path=str(path), enabled=False)

        await audit.log(audit.create_entry(TOOL, {}, CallStatus.SUCCESS))
        await audit.flush()

        assert audit.pending == 0
        assert not path.parent.exists()

    @pytest.mark.asyncio
    async def test_write_failure_keeps_entries(self, tmp_path):
        """Test that entries survive a failed write."""
        from fastnow_mcp.audit import AuditLogger

        # A directory where the file should be makes the open fail
        path = tmp_path / "audit.log"
        path.mkdir()
        audit = AuditLogger(log_path=str(path), buffer_size=10)

        await audit.log(audit.create_entry(TOOL, {}, CallStatus.SUCCESS))
        await audit.flush()

        assert audit.pending == 1

    @pytest.mark.asyncio
    async def test_backlog_is_capped(self, tmp_path):
        """Test that a failing sink drops the oldest entries past the cap."""
        from structlog.testing import capture_logs

        from fastnow_mcp.audit import AuditLogger

        path = tmp_path / "audit.log"
        path.mkdir()
        audit = AuditLogger(log_path=str(path), buffer_size=2, max_pending=3)

        entries = [audit.create_entry(TOOL, {}, CallStatus.SUCCESS, rpc_id=i) for i in range(4)]
        with capture_logs() as logs:
            for entry in entries:
                await audit.log(entry)

        assert audit.pending == 3
        assert [e.rpc_id for e in audit._buffer] == [1, 2, 3]
        dropped = [e for e in logs if e["event"] == "Dropped audit entries"]
        assert dropped[0]["dropped"] == 1

"""Tests for the layoutsync-inspect command."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest
from rich.console import Console

from layoutsync import cli
from layoutsync.models.session import (
    DraftLock,
    PipelineError,
    PipelineState,
    PipelineStatus,
    SessionSnapshot,
)
from layoutsync.persistence import FileKeyValueStore, global_session_path
from layoutsync.sync.presence import presence_entry
from tests.helpers import EPOCH


def _snapshot() -> SessionSnapshot:
    base = SessionSnapshot(
        session_id="writer-1",
        revision=7,
        updated_at=EPOCH,
        active_frame="tablet",
        draft_id="d1",
        compiled_id="c1",
        pipeline=PipelineState(
            status=PipelineStatus.ERROR,
            draft_id="d1",
            error=PipelineError(code="COMPILE_FAILED", message="bad node"),
        ),
        draft_lock=DraftLock(locked=False),
    )
    return base.model_copy(
        update={
            "presence": {
                "writer-1": presence_entry(base, is_local=True),
                "peer-2": presence_entry(
                    base.model_copy(update={"session_id": "peer-2"}), is_local=False
                ),
            }
        }
    )


def _console() -> Console:
    return Console(record=True, width=160, force_terminal=False)


class TestRenderSession:
    def test_renders_session_pipeline_and_presence(self) -> None:
        """show should render session, pipeline and presence tables."""
        con = _console()

        cli.render_session(_snapshot(), con)

        text = con.export_text()
        assert "Revision 7" in text
        assert "writer-1" in text
        assert "peer-2" in text
        assert "tablet" in text
        assert "COMPILE_FAILED: bad node" in text
        assert "free" in text


class TestInspect:
    @pytest.fixture
    def local_dir(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        monkeypatch.setenv("STORAGE__LOCAL_DIR", str(tmp_path))
        monkeypatch.setenv("STORAGE__APP_ID", "shop")
        return tmp_path

    def test_missing_local_dir_exits(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """show should exit with an error when the local dir is missing."""
        monkeypatch.delenv("STORAGE__LOCAL_DIR", raising=False)
        con = _console()

        with (
            patch.object(cli, "console", con),
            patch("sys.argv", ["layoutsync-inspect"]),
            pytest.raises(SystemExit) as exc,
        ):
            cli.inspect()

        assert exc.value.code == 1
        assert "STORAGE__LOCAL_DIR not set" in con.export_text()

    def test_absent_session_exits(self, local_dir: Path) -> None:
        """show should exit with an error when no session is stored."""
        con = _console()

        with (
            patch.object(cli, "console", con),
            patch("sys.argv", ["layoutsync-inspect"]),
            pytest.raises(SystemExit),
        ):
            cli.inspect()

        assert "No session persisted for app 'shop'" in con.export_text()

    def test_renders_persisted_session(self, local_dir: Path) -> None:
        """show should render a session read from disk."""
        FileKeyValueStore(local_dir).set(
            global_session_path("other"), _snapshot().to_wire()
        )
        con = _console()

        with (
            patch.object(cli, "console", con),
            patch("sys.argv", ["layoutsync-inspect", "other"]),
        ):
            cli.inspect()

        assert "Revision 7" in con.export_text()

    def test_json_dumps_raw_payload(self, local_dir: Path) -> None:
        """show --json should print the raw stored payload."""
        FileKeyValueStore(local_dir).set(
            global_session_path("shop"), _snapshot().to_wire()
        )
        con = _console()

        with (
            patch.object(cli, "console", con),
            patch("sys.argv", ["layoutsync-inspect", "--json"]),
        ):
            cli.inspect()

        assert '"schemaVersion": "global-session.v1"' in con.export_text()

    def test_incompatible_payload_exits(self, local_dir: Path) -> None:
        """show should exit when the stored payload is incompatible."""
        FileKeyValueStore(local_dir).set(
            global_session_path("shop"), {"schemaVersion": "global-session.v0"}
        )
        con = _console()

        with (
            patch.object(cli, "console", con),
            patch("sys.argv", ["layoutsync-inspect"]),
            pytest.raises(SystemExit),
        ):
            cli.inspect()

        assert "global-session.v0" in con.export_text()

from unittest.mock import AsyncMock

import pytest

from leadsync import cli
from leadsync.services.ingestion import IngestionError


class TestCli:
    def test_successful_job_exits_zero(self, monkeypatch, capsys):
        run_job = AsyncMock(return_value={"processed": 2, "success": 2, "failed": 0, "items": []})
        monkeypatch.setattr(cli, "run_job", run_job)

        assert cli.main(["sync"]) == 0

        assert run_job.await_args.args[0] == "sync"
        assert '"processed": 2' in capsys.readouterr().out

    def test_fatal_error_exits_one(self, monkeypatch):
        monkeypatch.setattr(cli, "run_job", AsyncMock(side_effect=IngestionError("No agents found to process")))
        assert cli.main(["ingest"]) == 1

    def test_aborted_run_exits_one(self, monkeypatch):
        report = {"selected": 3, "success": 0, "failed": 0, "aborted": True}
        monkeypatch.setattr(cli, "run_job", AsyncMock(return_value=report))
        assert cli.main(["enrich"]) == 1

    def test_unknown_job_is_rejected(self):
        with pytest.raises(SystemExit):
            cli.main(["reindex"])

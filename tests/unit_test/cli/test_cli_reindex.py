"""
Tests for the pgmaint-reindex entry point: exit codes and log output.
"""

import io

import pytest

from pgmaint.cli.reindex import main
from pgmaint.exceptions import (
    EXIT_COMMAND_FAILED,
    EXIT_INVALID_SCOPE,
    EXIT_OK,
    EXIT_PRECONDITION,
    EXIT_USAGE,
)


@pytest.fixture
def log_file(tmp_path):
    return tmp_path / "log" / "reindex.log"


@pytest.fixture
def run(log_file, client_factory, snapshot):
    """Invoke main() with a fake client; returns (exit code, client, stdout)."""

    def _run(argv, environ=None, **client_kwargs):
        client_kwargs.setdefault("stats", snapshot)
        client = client_factory(**client_kwargs)
        out = io.StringIO()
        env = {"LOG_FILE": str(log_file)}
        env.update(environ or {})
        code = main(argv, environ=env, client_factory=lambda params: client, out=out)
        return code, client, out.getvalue()

    return _run


class TestReindexCli:
    def test_execute_success(self, run, log_file):
        code, client, _ = run([])
        assert code == EXIT_OK
        assert len(client.executed) == 3
        assert client.closed
        text = log_file.read_text()
        assert "Starting filtered reindex" in text
        assert "Reindex complete." in text

    def test_dry_run_logs_commands_and_mutates_nothing(self, run, log_file):
        code, client, stdout = run(["--dry-run", "true"])
        assert code == EXIT_OK
        assert client.executed == []
        assert 'REINDEX INDEX CONCURRENTLY "public"."documents_tag_pkey";' in stdout
        text = log_file.read_text()
        assert 'REINDEX INDEX CONCURRENTLY "public"."documents_tag_pkey";' in text
        assert "documents_tag_pkey\t500000\t150 MB\t55 MB" in text

    def test_log_file_is_appended(self, run, log_file):
        run(["--dry-run", "true"])
        run(["--dry-run", "true"])
        assert log_file.read_text().count("Starting filtered reindex") == 2

    def test_precondition_failure_exit_code(self, run, log_file):
        code, client, _ = run(["--concurrently", "true"], version=110005)
        assert code == EXIT_PRECONDITION
        assert client.executed == []
        assert client.stats_calls == []
        assert "--concurrently false" in log_file.read_text()

    def test_old_server_without_concurrently(self, run):
        code, client, _ = run(["--concurrently", "false"], version=110005)
        assert code == EXIT_OK
        assert client.executed[0] == 'REINDEX INDEX "public"."documents_tag_pkey"'

    def test_invalid_scope_exit_code(self, run, capsys):
        code, client, _ = run(["--scope", "schema"])
        assert code == EXIT_INVALID_SCOPE
        assert client.stats_calls == []
        assert "usage: pgmaint-reindex" in capsys.readouterr().err

    def test_invalid_scope_from_environment(self, run):
        code, _, _ = run([], environ={"REINDEX_SCOPE": "everything"})
        assert code == EXIT_INVALID_SCOPE

    def test_invalid_boolean(self, run, capsys):
        code, _, _ = run(["--dry-run", "maybe"])
        assert code == EXIT_USAGE
        err = capsys.readouterr().err
        assert "ERROR - --dry-run must be" in err
        assert "usage: pgmaint-reindex" in err

    def test_unknown_flag(self, run, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run(["--vacuum", "full"])
        assert exc_info.value.code == EXIT_USAGE
        assert "usage:" in capsys.readouterr().err

    def test_help(self, run, capsys):
        with pytest.raises(SystemExit) as exc_info:
            run(["--help"])
        assert exc_info.value.code == 0
        assert "--min-table-size-mb" in capsys.readouterr().out

    def test_zero_candidates(self, run, log_file):
        code, client, _ = run(["--min-idx-scans", "999999999"])
        assert code == EXIT_OK
        assert client.executed == []
        assert "No candidates matched the filters" in log_file.read_text()

    def test_command_failure_exit_code(self, run, log_file):
        code, client, _ = run([], fail_on="documents_document_pkey")
        assert code == EXIT_COMMAND_FAILED
        assert len(client.executed) == 1
        assert "FAILED" in log_file.read_text()

    def test_table_scope_flag(self, run):
        code, client, _ = run(["--scope", "table", "--concurrently", "false"])
        assert code == EXIT_OK
        assert client.executed == [
            'REINDEX TABLE "public"."documents_document"',
            'REINDEX TABLE "public"."documents_tag"',
        ]

    def test_failure_message_is_not_double_tagged(self, run, log_file):
        run([], fail_on="documents_document_pkey")
        text = log_file.read_text()
        assert "ERROR - REINDEX failed after 1 of 3 statement(s)" in text
        assert "ERROR - ERROR" not in text


class TestDotenv:
    """A .env file in the working directory feeds the environment layer."""

    def test_dotenv_in_working_directory(self, tmp_path, monkeypatch):
        monkeypatch.setenv("REINDEX_SCOPE", "")
        monkeypatch.delenv("REINDEX_SCOPE")
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("REINDEX_SCOPE=bogus\n")

        def refuse(params):
            raise AssertionError("client must not be created")

        code = main(["--dry-run", "true"], client_factory=refuse)

        assert code == EXIT_INVALID_SCOPE

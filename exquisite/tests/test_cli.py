"""
Tests for the command-line interface.
"""

from ..cli import main
from ..rooms.codes import is_valid_room_code


class TestCli:

    def test_code(self, capsys):
        assert main(["code", "--count", "3"]) == 0
        codes = capsys.readouterr().out.split()
        assert len(codes) == 3
        assert all(is_valid_room_code(c) for c in codes)

    def test_moderate_clean(self, capsys):
        assert main(["moderate", "add   a cat"]) == 0
        assert capsys.readouterr().out.strip() == "OK: add a cat"

    def test_moderate_flagged(self, capsys):
        assert main(["moderate", "kill the cat"]) == 1
        assert capsys.readouterr().out.startswith("Flagged:")

    def test_moderate_invalid(self, capsys):
        assert main(["moderate", "ab"]) == 1
        assert capsys.readouterr().out.startswith("Invalid:")

    def test_init_db_without_url(self, capsys, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        assert main(["init-db"]) == 1

    def test_init_db(self, tmp_path, capsys):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        assert main(["init-db", "--database-url", url]) == 0
        assert (tmp_path / "cli.db").exists()

    def test_no_command(self, capsys):
        assert main([]) == 1

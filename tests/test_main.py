import pytest

import main


@pytest.fixture
def cli_store(store, monkeypatch):
    monkeypatch.setattr(main, "get_store", lambda: store)
    return store


def test_backfill_emails_command(cli_store, capsys):
    cli_store.set("users/a", {"email": "A@Example.com"})
    assert main.main(["backfill-emails"]) == 0
    assert "Backfilled emailLower on 1 user documents." in capsys.readouterr().out
    assert cli_store.get("users/a").get("emailLower") == "a@example.com"


def test_sweep_index_command(cli_store, capsys):
    cli_store.set("users/u1/classIndex/gone", {"classId": "gone", "role": "student"})
    assert main.main(["sweep-index"]) == 0
    assert "Deleted 1 orphaned classIndex rows." in capsys.readouterr().out


def test_unknown_command():
    with pytest.raises(SystemExit):
        main.main(["explode"])

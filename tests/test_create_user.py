import pytest

import create_user
from app import check_password
from store import JsonStore


def test_main_creates_hashed_user(tmp_path, monkeypatch, capsys):
    path = tmp_path / "blog.json"
    monkeypatch.setattr(create_user.getpass, "getpass", lambda prompt: "s3cret")

    create_user.main(["--name", "Ada", "--email", "ada@example.com", "--store", str(path)])

    user = JsonStore(path).find_user_by_email("ada@example.com")
    assert user["name"] == "Ada"
    assert user["password"] != "s3cret"
    assert check_password("s3cret", user["password"])
    assert "User created successfully!" in capsys.readouterr().out


def test_main_prompts_for_missing_fields(tmp_path, monkeypatch):
    path = tmp_path / "blog.json"
    answers = iter(["Grace", "grace@example.com"])
    monkeypatch.setattr("builtins.input", lambda prompt: next(answers))
    monkeypatch.setattr(create_user.getpass, "getpass", lambda prompt: "hopper")

    create_user.main(["--store", str(path)])

    assert JsonStore(path).find_user_by_email("grace@example.com")["name"] == "Grace"


def test_main_rejects_duplicate_email(tmp_path, monkeypatch):
    path = tmp_path / "blog.json"
    monkeypatch.setattr(create_user.getpass, "getpass", lambda prompt: "pw")
    args = ["--name", "Ada", "--email", "ada@example.com", "--store", str(path)]
    create_user.main(args)

    with pytest.raises(SystemExit, match="already exists"):
        create_user.main(args)


def test_main_rejects_empty_password(tmp_path, monkeypatch):
    monkeypatch.setattr(create_user.getpass, "getpass", lambda prompt: "")
    with pytest.raises(SystemExit):
        create_user.main(["--name", "Ada", "--email", "a@b.c", "--store", str(tmp_path / "b.json")])

from datetime import date
from pathlib import Path

import pytest
from conftest import FakeGateway, product_record

from novapos.application.container import build_container
from novapos.domain.errors import NotFoundError
from novapos.main import build_parser, run


def _container(tmp_path: Path, gateway: FakeGateway):
    return build_container(tmp_path / "cli.db", gateway=gateway)


def test_parser_accepts_subcommands():
    parser = build_parser()
    args = parser.parse_args(["close", "--date", "2024-05-01"])
    assert args.command == "close"
    assert args.date == date(2024, 5, 1)
    assert parser.parse_args(["kardex", "P1"]).product_id == "P1"
    with pytest.raises(SystemExit):
        parser.parse_args(["close", "--date", "yesterday"])


def test_sync_then_kardex(tmp_path: Path, capsys):
    container = _container(tmp_path, FakeGateway({"products": [product_record("P1", stock=4)]}))
    parser = build_parser()
    try:
        assert run(parser.parse_args(["sync"]), container) == 0
        assert run(parser.parse_args(["kardex", "P1"]), container) == 0
        with pytest.raises(NotFoundError):
            run(parser.parse_args(["kardex", "NOPE"]), container)
    finally:
        container.store.close()

    out = capsys.readouterr().out
    assert "snapshot applied" in out
    assert "opening balance 4" in out


def test_sync_reports_offline(tmp_path: Path, capsys):
    gateway = FakeGateway()
    gateway.fail_fetch = True
    container = _container(tmp_path, gateway)
    try:
        assert run(build_parser().parse_args(["sync"]), container) == 1
    finally:
        container.store.close()
    assert "remote unavailable" in capsys.readouterr().out


def test_close_uses_stored_rate(tmp_path: Path, capsys):
    container = _container(tmp_path, FakeGateway())
    container.fx.set_rate_for_date(date(2024, 5, 1), 40.0, 44.0)
    try:
        assert run(build_parser().parse_args(["close", "--date", "2024-05-01"]), container) == 0
    finally:
        container.store.close()
    assert "Cash close 2024-05-01" in capsys.readouterr().out
